"""
Animica MMR package.

An append-only Merkle Mountain Range accumulator:
- commit to an ordered sequence of leaves under one root digest,
- keep node digests in a primary store and leaf payloads in a side archive,
- produce compact inclusion proofs for any historical leaf,
- verify those proofs with nothing but (root, leaf, proof).

    from mmr import MountainRange, verify

    mmr = MountainRange()
    mmr.append(b"hello")
    leaf, proof = mmr.generate_proof(0)
    verify(mmr.root(), leaf, proof)
"""

from __future__ import annotations

from .version import __version__, get_version
from .accumulator import MountainRange, rebuild
from .errors import (LeafIndexOutOfRange, MalformedProof, MissingArchivedData,
                     MMRError, RootMismatch, StorageError)
from .hasher import Hasher, get_hasher
from .node import CompactLeaf, Data, Hash
from .proofs import Proof
from .verify import is_valid, verify

__all__ = [
    "__version__",
    "get_version",
    "MountainRange",
    "rebuild",
    "Proof",
    "verify",
    "is_valid",
    "Hash",
    "Data",
    "CompactLeaf",
    "Hasher",
    "get_hasher",
    "MMRError",
    "LeafIndexOutOfRange",
    "MalformedProof",
    "RootMismatch",
    "MissingArchivedData",
    "StorageError",
]
