"""
MMR accumulator engine.

`MountainRange` appends leaves, maintains the committed root and hands out
inclusion proofs for any historical leaf.

    from mmr.accumulator import MountainRange

    mmr = MountainRange()
    mmr.append(b"block-0")
    mmr.append(b"block-1")
    leaf, proof = mmr.generate_proof(0)
    verify(mmr.root(), leaf, proof)

Storage split
-------------
The primary `NodeStore` holds every node's digest (``Hash``); full leaf
payloads go to the side archive, together with a copy of each inner hash.
With ``keep_leaf_data=True`` the primary store keeps ``Data`` leaves as well
and proofs never need the archive for the leaf itself.

Append protocol
---------------
All new nodes are computed in memory first. The archive is written, then the
primary store commits nodes + leaf count + root in one batch. If either
write fails the range is left exactly as it was and `StorageError` is raised.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .db.memory import MemoryKV
from .errors import (InvalidInput, LeafIndexOutOfRange, MalformedProof, MissingArchivedData,
                     MMRError, NodeCodecError, StorageError)
from .hasher import Hasher, empty_root, get_hasher
from .logging import get_logger
from .metrics import MMRMetrics
from .node import Data, Hash, Node, as_hash, as_node, digest_of
from .positions import parent_offset, peaks_for, position_to_height, sibling_offset
from .proofs import Proof, bag_peaks, build_proof
from .storage import KVArchive, NodeStore, OffchainArchive
from .utils.bytes import short_hex
from .verify import verify

log = get_logger("mmr.accumulator")

RootCallback = Callable[[int, bytes], None]


class MountainRange:
    """
    Append-only Merkle Mountain Range.

    Args:
        store: primary node store (default: fresh in-memory store).
        archive: side archive (default: fresh in-memory archive).
        hasher: Hasher instance or registered name (default sha3_256).
        keep_leaf_data: keep full leaves in the primary store.
        on_new_root: callbacks run after each successful append with
            ``(leaf_count, root)``.
        metrics: optional MMRMetrics sink.
    """

    def __init__(
        self,
        store: Optional[NodeStore] = None,
        *,
        archive: Optional[OffchainArchive] = None,
        hasher: Any = None,
        keep_leaf_data: bool = False,
        on_new_root: Iterable[RootCallback] = (),
        metrics: Optional[MMRMetrics] = None,
    ) -> None:
        self.hasher: Hasher = get_hasher(hasher)
        self.store = store if store is not None else NodeStore(MemoryKV(), hasher_name=self.hasher.name)
        self.archive: OffchainArchive = archive if archive is not None else KVArchive(MemoryKV())
        self.keep_leaf_data = keep_leaf_data
        self.metrics = metrics
        self._callbacks: List[RootCallback] = list(on_new_root)
        self._lock = threading.RLock()

    # --------------------------------------------------------------- queries

    def leaf_count(self) -> int:
        return self.store.leaf_count()

    def size(self) -> int:
        return self.store.size()

    def __len__(self) -> int:
        return self.leaf_count()

    def root(self) -> bytes:
        """Bag of the current peaks, or the all-zero digest when empty."""
        if self.store.leaf_count() == 0:
            return empty_root(self.hasher)
        r = self.store.root()
        return r if r is not None else self.root_at(self.store.leaf_count())

    def root_at(self, leaf_count: int) -> bytes:
        """Root the range had when it held `leaf_count` leaves."""
        self._check_count(leaf_count)
        return bag_peaks([self._digest(p) for p in peaks_for(leaf_count)], self.hasher)

    def peaks(self) -> List[int]:
        return peaks_for(self.store.leaf_count())

    def peak_digests(self) -> List[bytes]:
        return [self._digest(p) for p in self.peaks()]

    def node(self, position: int) -> Optional[Node]:
        """Node at `position` from the primary store (None if never written)."""
        return self.store.get(position)

    def subscribe(self, callback: RootCallback) -> None:
        self._callbacks.append(callback)

    # ---------------------------------------------------------------- append

    def append(self, payload: Any) -> int:
        """
        Append one leaf and return its position.

        `payload` is any CBOR-serializable value, a `CompactLeaf`, or a
        ready-made ``Data`` node.
        """
        node = as_node(payload)
        if isinstance(node, Hash):
            raise InvalidInput("leaves must carry data, not a bare Hash")

        if self.metrics is None:
            return self._append(node)
        with self.metrics.time_append() as mark:
            try:
                pos = self._append(node)
            except MMRError as e:
                mark.fail(e.code)
                raise
            self.metrics.note_state(leaf_count=self.store.leaf_count(), size=self.store.size())
            return pos

    def extend(self, payloads: Iterable[Any]) -> List[int]:
        return [self.append(p) for p in payloads]

    def _append(self, node: Data) -> int:
        h = self.hasher
        with self._lock:
            leaf_digest = digest_of(node, h)
            leaf_pos = self.store.size()
            new_count = self.store.leaf_count() + 1

            pending: Dict[int, bytes] = {leaf_pos: leaf_digest}
            primary: List[Node] = [node if self.keep_leaf_data else Hash(leaf_digest)]
            archived: List[Tuple[int, Node]] = [(leaf_pos, node)]

            pos, height = leaf_pos, 0
            while position_to_height(pos + 1) > height:
                pos += 1
                left = pos - parent_offset(height)
                right = left + sibling_offset(height)
                parent = h.combine(self._digest(left, pending), self._digest(right, pending))
                pending[pos] = parent
                primary.append(Hash(parent))
                archived.append((pos, Hash(parent)))
                height += 1

            root = bag_peaks([self._digest(p, pending) for p in peaks_for(new_count)], h)

            try:
                self._archive(archived)
                self.store.append_batch(primary, leaf_count=new_count, root=root)
            except StorageError as e:
                log.error(
                    "append failed; range unchanged",
                    extra={"leaf_position": leaf_pos, "code": e.code, "detail": e.message},
                )
                raise

            log.debug(
                "leaf appended",
                extra={"leaf_index": new_count - 1, "leaf_position": leaf_pos, "nodes": len(primary), "root": short_hex(root)},
            )
            for cb in list(self._callbacks):
                try:
                    cb(new_count, root)
                except Exception:
                    log.exception("on_new_root callback failed", extra={"leaf_count": new_count})
            return leaf_pos

    def _archive(self, entries: Sequence[Tuple[int, Node]]) -> None:
        put_many = getattr(self.archive, "put_many", None)
        if put_many is not None:
            put_many(entries)
            return
        for position, n in entries:
            self.archive.put(position, n)

    def _digest(self, position: int, pending: Optional[Dict[int, bytes]] = None) -> bytes:
        if pending is not None and position in pending:
            return pending[position]
        node = self.store.get(position)
        if node is None:
            raise StorageError(
                "node store is missing a committed node",
                data={"position": position, "size": self.store.size()},
            )
        return digest_of(node, self.hasher)

    # ---------------------------------------------------------------- proofs

    def _check_count(self, leaf_count: int) -> None:
        current = self.store.leaf_count()
        if not (0 <= leaf_count <= current):
            raise LeafIndexOutOfRange(
                "leaf count beyond the committed range",
                data={"leaf_count": leaf_count, "committed": current},
            )

    def _archived(self, position: int) -> Optional[Node]:
        try:
            return self.archive.get(position)
        except NodeCodecError as e:
            raise MissingArchivedData(
                "archived node is corrupt", data={"position": position, "detail": e.message}
            ) from e

    def _read(self, position: int) -> Optional[Node]:
        node = self.store.get(position)
        if node is None:
            node = self._archived(position)
        return node

    def _read_leaf(self, position: int) -> Data:
        stored = self.store.get(position)
        if isinstance(stored, Data):
            return stored
        archived = self._archived(position)
        if not isinstance(archived, Data):
            raise MissingArchivedData(
                "leaf payload is not available in the store or the archive",
                data={"position": position},
            )
        if stored is not None and as_hash(archived, self.hasher) != stored:
            raise MissingArchivedData(
                "archived leaf does not match the committed digest",
                data={"position": position},
            )
        return archived

    def generate_proof(self, leaf_index: int, *, at_leaf_count: Optional[int] = None) -> Tuple[Data, Proof]:
        """
        Leaf payload and inclusion proof for `leaf_index`.

        By default the proof is against the current root; `at_leaf_count`
        proves against the root the range had at that size instead.

        Raises:
            LeafIndexOutOfRange: no such leaf (yet).
            MissingArchivedData: a node or the leaf payload is unavailable.
        """
        with self._lock:
            committed = self.store.leaf_count()
        leaf_count = committed if at_leaf_count is None else at_leaf_count
        try:
            if not (0 <= leaf_count <= committed):
                raise LeafIndexOutOfRange(
                    "leaf count beyond the committed range",
                    data={"leaf_count": leaf_count, "committed": committed},
                )
            if not (0 <= leaf_index < leaf_count):
                raise LeafIndexOutOfRange(
                    "leaf index out of range",
                    data={"leaf_index": leaf_index, "leaf_count": leaf_count},
                )
            leaf, proof = build_proof(self._read, self._read_leaf, leaf_index, leaf_count, self.hasher)
        except MMRError as e:
            if self.metrics is not None:
                self.metrics.note_proof(e.code)
            raise
        if self.metrics is not None:
            self.metrics.note_proof("ok")
        log.debug(
            "proof generated",
            extra={"leaf_index": leaf_index, "leaf_count": leaf_count, "items": len(proof.items)},
        )
        return leaf, proof

    def verify_leaf(self, leaf: Any, proof: Proof) -> None:
        """
        Check `proof` against the root this range had at ``proof.leaf_count``.

        Raises:
            MalformedProof: the proof claims no leaves, or more than are committed.
            RootMismatch: the proof does not lead to that root.
        """
        committed = self.store.leaf_count()
        if not (0 < proof.leaf_count <= committed):
            raise MalformedProof(
                "proof leaf count is outside the committed range",
                data={"leaf_count": proof.leaf_count, "committed": committed},
            )
        verify(self.root_at(proof.leaf_count), as_node(leaf), proof, hasher=self.hasher, metrics=self.metrics)

    def __repr__(self) -> str:
        return f"<MountainRange leaves={self.leaf_count()} size={self.size()} hasher={self.hasher.name}>"


def rebuild(payloads: Iterable[Any], hasher: Any = None, **kwargs: Any) -> MountainRange:
    """Fresh in-memory range holding `payloads`, appended in order."""
    mmr = MountainRange(hasher=hasher, **kwargs)
    mmr.extend(payloads)
    return mmr


__all__ = ["MountainRange", "rebuild", "RootCallback"]
