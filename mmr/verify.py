"""
Stateless MMR proof verification.

Given only a claimed root, a leaf and a `Proof`, recompute the root and
compare. No storage, no shared state: safe to call from any thread, and the
same inputs always give the same answer.

    from mmr.verify import verify, is_valid

    verify(root, leaf, proof)          # raises MalformedProof / RootMismatch
    ok = is_valid(root, leaf, proof)   # bool
"""

from __future__ import annotations

import hmac
from typing import Any, List, Optional

from .errors import MalformedProof, RootMismatch, VerificationError
from .hasher import Hasher, get_hasher
from .metrics import MMRMetrics
from .node import as_node, digest_of
from .positions import expected_proof_length, locate_leaf
from .proofs import Proof, bag_peaks


def _check_shape(proof: Proof, digest_size: int) -> None:
    if proof.leaf_count == 0:
        raise MalformedProof("proof against an empty range", data={"leaf_index": proof.leaf_index})
    if not (0 <= proof.leaf_index < proof.leaf_count):
        raise MalformedProof(
            "leaf index outside the proven range",
            data={"leaf_index": proof.leaf_index, "leaf_count": proof.leaf_count},
        )
    want = expected_proof_length(proof.leaf_index, proof.leaf_count)
    if len(proof.items) != want:
        raise MalformedProof(
            "unexpected number of proof items",
            data={"expected": want, "got": len(proof.items), "leaf_index": proof.leaf_index, "leaf_count": proof.leaf_count},
        )
    for i, item in enumerate(proof.items):
        if len(item) != digest_size:
            raise MalformedProof(
                "proof item has the wrong size",
                data={"index": i, "expected": digest_size, "got": len(item)},
            )


def compute_root(leaf: Any, proof: Proof, *, hasher: Optional[Hasher] = None) -> bytes:
    """
    Root implied by `leaf` and `proof`. Raises MalformedProof if the proof's
    shape does not match its (leaf_index, leaf_count).
    """
    h = get_hasher(hasher)
    _check_shape(proof, h.digest_size)

    loc = locate_leaf(proof.leaf_index, proof.leaf_count)
    acc = digest_of(as_node(leaf), h)
    for level in range(loc.height):
        sibling = proof.items[level]
        if (loc.local_index >> level) & 1:
            acc = h.combine(sibling, acc)
        else:
            acc = h.combine(acc, sibling)

    peaks: List[bytes] = list(proof.items[loc.height : loc.height + loc.peak_offset])
    peaks.append(acc)
    peaks.extend(proof.items[loc.height + loc.peak_offset :])
    return bag_peaks(peaks, h)


def verify(
    root: bytes,
    leaf: Any,
    proof: Proof,
    *,
    hasher: Optional[Hasher] = None,
    metrics: Optional[MMRMetrics] = None,
) -> None:
    """
    Check that `leaf` is the `proof.leaf_index`-th leaf of the range whose
    root is `root`. `leaf` is a Node, or a raw payload taken as ``Data``.

    Raises:
        MalformedProof: the proof is inconsistent with its own (index, count).
        RootMismatch: well-formed, but it does not lead to `root`.
    """
    if metrics is None:
        _verify(root, leaf, proof, hasher)
        return
    with metrics.time_verify() as mark:
        try:
            _verify(root, leaf, proof, hasher)
        except VerificationError as e:
            mark.fail(e.code)
            raise


def _verify(root: bytes, leaf: Any, proof: Proof, hasher: Optional[Hasher]) -> None:
    computed = compute_root(leaf, proof, hasher=hasher)
    if not hmac.compare_digest(computed, bytes(root)):
        raise RootMismatch(
            "recomputed root differs from the claimed root",
            data={"leaf_index": proof.leaf_index, "leaf_count": proof.leaf_count, "computed": computed},
        )


def is_valid(
    root: bytes,
    leaf: Any,
    proof: Proof,
    *,
    hasher: Optional[Hasher] = None,
    metrics: Optional[MMRMetrics] = None,
) -> bool:
    """Boolean form of `verify`."""
    try:
        verify(root, leaf, proof, hasher=hasher, metrics=metrics)
    except VerificationError:
        return False
    return True


__all__ = ["verify", "is_valid", "compute_root"]
