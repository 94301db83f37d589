"""
MMR inclusion proofs: model, peak bagging and the proof builder.

Proof layout
------------
For leaf ``i`` of a range with ``N`` leaves, ``items`` holds, in order:

1. the sibling digest at every level from the leaf up to its peak,
2. the digest of every peak left of the leaf's peak, left to right,
3. if peaks exist right of the leaf's peak, their bag as one digest.

The item count is therefore fully determined by ``(i, N)``
(see `mmr.positions.expected_proof_length`).

Bagging
-------
Peaks are bagged right to left, tallest peak outermost:

    bag([p0, p1, ..., pk]) = combine(p0, combine(p1, ... combine(pk-1, pk)))

so the bag of every peak right of the proven one is a suffix of the same fold.
Root after 3 leaves: ``combine(combine(d0, d1), d2)``.

Wire formats
------------
- `Proof.to_bytes()`  : canonical CBOR map ``{"leafIndex", "leafCount", "items"}``
- `Proof.to_json()`   : the same map as JSON with 0x-hex items
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import cbor2

from .errors import MalformedProof, MissingArchivedData
from .hasher import Hasher, empty_root, get_hasher
from .node import Data, Node, digest_of
from .positions import (leaf_index_to_position, locate_leaf, parent_offset,
                        peaks_for, position_to_height, sibling_offset)
from .utils.bytes import bytes_to_hex, hex_to_bytes

# --------------------------------------------------------------------------- #
# Model
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class Proof:
    leaf_index: int
    leaf_count: int
    items: Tuple[bytes, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(bytes(x) for x in self.items))

    # ----------------------------------------------------------------- dicts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leafIndex": self.leaf_index,
            "leafCount": self.leaf_count,
            "items": [bytes_to_hex(x) for x in self.items],
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Proof":
        if not isinstance(d, Mapping):
            raise MalformedProof("proof must be a map")
        items = d.get("items")
        if not isinstance(items, list):
            raise MalformedProof("proof.items must be a list")
        try:
            decoded = [x if isinstance(x, bytes) else hex_to_bytes(x) for x in items]
        except (ValueError, TypeError, AttributeError) as e:
            raise MalformedProof.from_exc(e, message="proof item is not hex") from e
        return cls(
            leaf_index=_uint(d, "leafIndex"),
            leaf_count=_uint(d, "leafCount"),
            items=tuple(decoded),
        )

    # ------------------------------------------------------------------ json

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, s: Union[str, bytes]) -> "Proof":
        try:
            obj = json.loads(s)
        except ValueError as e:
            raise MalformedProof.from_exc(e, message="proof is not valid JSON") from e
        return cls.from_dict(obj)

    # ------------------------------------------------------------------ cbor

    def to_bytes(self) -> bytes:
        return cbor2.dumps(
            {"leafIndex": self.leaf_index, "leafCount": self.leaf_count, "items": list(self.items)},
            canonical=True,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "Proof":
        try:
            obj = cbor2.loads(bytes(data))
        except (cbor2.CBORDecodeError, ValueError, TypeError, EOFError) as e:
            raise MalformedProof.from_exc(e, message="proof is not valid CBOR") from e
        if not isinstance(obj, dict):
            raise MalformedProof("proof must be a CBOR map")
        items = obj.get("items")
        if not isinstance(items, list) or not all(isinstance(x, bytes) for x in items):
            raise MalformedProof("proof.items must be an array of byte strings")
        return cls.from_dict(obj)


def _uint(d: Mapping[str, Any], key: str) -> int:
    v = d.get(key)
    if not isinstance(v, int) or isinstance(v, bool) or v < 0:
        raise MalformedProof(f"proof.{key} must be a non-negative integer", data={key: repr(v)})
    return v


# --------------------------------------------------------------------------- #
# Bagging
# --------------------------------------------------------------------------- #


def bag_peaks(digests: Sequence[bytes], hasher: Optional[Hasher] = None) -> bytes:
    """Fold peak digests from the right. No peaks gives the empty root."""
    h = get_hasher(hasher)
    if not digests:
        return empty_root(h)
    acc = digests[-1]
    for d in reversed(digests[:-1]):
        acc = h.combine(d, acc)
    return acc


# --------------------------------------------------------------------------- #
# Builder
# --------------------------------------------------------------------------- #

NodeReader = Callable[[int], Optional[Node]]


def build_proof(
    read: NodeReader,
    read_leaf: Callable[[int], Data],
    leaf_index: int,
    leaf_count: int,
    hasher: Optional[Hasher] = None,
) -> Tuple[Data, Proof]:
    """
    Build the proof of `leaf_index` against the range as it was at
    `leaf_count` leaves.

    `read(position)` returns the node at a position from wherever it is
    available; `read_leaf(position)` returns the full leaf payload. Missing
    nodes raise MissingArchivedData. Bounds are the caller's job.
    """
    h = get_hasher(hasher)

    def digest_at(position: int) -> bytes:
        node = read(position)
        if node is None:
            raise MissingArchivedData(
                "node needed for proof is neither stored nor archived",
                data={"position": position, "leaf_index": leaf_index},
            )
        return digest_of(node, h)

    loc = locate_leaf(leaf_index, leaf_count)
    peaks = peaks_for(leaf_count)
    pos = leaf_index_to_position(leaf_index)
    leaf = read_leaf(pos)

    items: List[bytes] = []
    for height in range(loc.height):
        if position_to_height(pos + 1) > height:
            # right child: sibling on the left, parent right after us
            items.append(digest_at(pos - sibling_offset(height)))
            pos += 1
        else:
            items.append(digest_at(pos + sibling_offset(height)))
            pos += parent_offset(height)

    if pos != peaks[loc.peak_offset]:
        raise AssertionError(f"path ended at {pos}, expected peak {peaks[loc.peak_offset]}")

    for peak in peaks[: loc.peak_offset]:
        items.append(digest_at(peak))
    right = peaks[loc.peak_offset + 1 :]
    if right:
        items.append(bag_peaks([digest_at(p) for p in right], h))

    return leaf, Proof(leaf_index=leaf_index, leaf_count=leaf_count, items=tuple(items))


__all__ = ["Proof", "bag_peaks", "build_proof", "NodeReader"]
