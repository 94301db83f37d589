"""
Block-driven leaf source.

`BlockIndexer` feeds one leaf per block into a `MountainRange`, so that any
past block can later be proven against the latest root. The leaf content
comes from a `LeafProvider`; the default `ParentLeafProvider` commits to the
parent block, ``[parent_height, parent_hash]``, optionally extended with
caller data as a `CompactLeaf`.

    idx = BlockIndexer(MountainRange())
    for height, parent_hash in blocks:
        idx.on_block(height, parent_hash)
    leaf, proof = idx.mmr.generate_proof(idx.leaf_index_for(42))
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from .accumulator import MountainRange
from .errors import BlockSequenceError, LeafIndexOutOfRange
from .logging import get_logger
from .node import CompactLeaf, Data

log = get_logger("mmr.indexer")


@runtime_checkable
class LeafProvider(Protocol):
    def leaf_data(self, height: int, parent_hash: bytes) -> Any:
        ...


class ParentLeafProvider:
    """
    Leaf = ``[parent_height, parent_hash]``.

    With `extra` set, the leaf becomes ``CompactLeaf(Data([...]), Data(extra(height)))``
    so the parent part can later be disclosed on its own.
    """

    def __init__(self, extra: Optional[Callable[[int], Any]] = None) -> None:
        self.extra = extra

    def leaf_data(self, height: int, parent_hash: bytes) -> Any:
        parent = [height - 1, bytes(parent_hash)]
        if self.extra is None:
            return parent
        return CompactLeaf((Data(parent), Data(self.extra(height))))


class BlockIndexer:
    """
    Appends exactly one leaf per block, at consecutive heights.

    `first_height` is the height of the block that produced leaf 0. When the
    wrapped range already holds leaves it must be given, otherwise it is
    taken from the first `on_block` call.
    """

    def __init__(
        self,
        mmr: MountainRange,
        provider: Optional[LeafProvider] = None,
        *,
        first_height: Optional[int] = None,
    ) -> None:
        if first_height is None and mmr.leaf_count() > 0:
            raise BlockSequenceError(
                "first_height is required for a range that already holds leaves",
                data={"leaf_count": mmr.leaf_count()},
            )
        if first_height is not None and first_height < 0:
            raise BlockSequenceError("first_height must be >= 0")
        self.mmr = mmr
        self.provider: LeafProvider = provider or ParentLeafProvider()
        self.first_height = first_height
        self._lock = threading.Lock()

    @property
    def next_height(self) -> Optional[int]:
        if self.first_height is None:
            return None
        return self.first_height + self.mmr.leaf_count()

    def on_block(self, height: int, parent_hash: bytes) -> int:
        """Append the leaf for block `height`; returns the leaf's position."""
        with self._lock:
            if height < 1:
                raise BlockSequenceError("block height must be >= 1 (leaf commits to its parent)")
            expected = self.next_height
            if expected is not None and height != expected:
                raise BlockSequenceError(
                    "blocks must be indexed at consecutive heights",
                    data={"expected": expected, "got": height},
                )
            payload = self.provider.leaf_data(height, parent_hash)
            pos = self.mmr.append(payload)
            if self.first_height is None:
                self.first_height = height
            log.debug("block indexed", extra={"height": height, "leaf_position": pos})
            return pos

    def leaf_index_for(self, height: int) -> int:
        if self.first_height is None or not (
            self.first_height <= height < self.first_height + self.mmr.leaf_count()
        ):
            raise LeafIndexOutOfRange("no leaf for that block height", data={"height": height})
        return height - self.first_height

    def height_for(self, leaf_index: int) -> int:
        if self.first_height is None or not (0 <= leaf_index < self.mmr.leaf_count()):
            raise LeafIndexOutOfRange("leaf index out of range", data={"leaf_index": leaf_index})
        return self.first_height + leaf_index


__all__ = ["LeafProvider", "ParentLeafProvider", "BlockIndexer"]
