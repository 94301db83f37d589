"""
Node storage for the accumulator.

Two stores back a range:

- `NodeStore` (primary, authenticated path): every node by position plus the
  committed size, leaf count and root. Usually holds only `Hash` nodes.
- an `OffchainArchive` (side archive, untrusted): full `Data` leaves and inner
  hashes keyed by ``(indexing_prefix, position)``, read back when building
  proofs.

Both sit on the `KV` protocol from `mmr.db`, so either can be in memory or
in SQLite, separately or in one file.

Atomicity
---------
`NodeStore.append_batch` writes all nodes of one append together with the
new leaf count and root inside a single KV batch. Cached counters move only
after the batch committed. Any backend failure surfaces as `StorageError`.
"""

from __future__ import annotations

import threading
from typing import Iterable, List, Optional, Protocol, Sequence, runtime_checkable

from .db.kv import KV, META, NODES, be_u64, from_be_u64
from .errors import ConfigError, StorageError
from .logging import get_logger
from .node import Node, decode_node, encode_node

log = get_logger("mmr.storage")

_K_SIZE = META.key(b"size")
_K_LEAVES = META.key(b"leaves")
_K_ROOT = META.key(b"root")
_K_HASHER = META.key(b"hasher")


class NodeStore:
    """
    Append-only node store over a KV backend.

    `namespace` lets several ranges share one database; every key this store
    writes starts with it.

    If `hasher_name` is given it is recorded with the first write, and
    reopening the store with a different hasher raises ConfigError.
    """

    def __init__(self, kv: KV, *, namespace: bytes = b"", hasher_name: Optional[str] = None) -> None:
        self.kv = kv
        self.namespace = bytes(namespace)
        self.hasher_name = hasher_name
        self._lock = threading.Lock()
        self._size = 0
        self._leaf_count = 0
        self._root: Optional[bytes] = None
        self._load()

    # ------------------------------------------------------------------ keys

    def _k(self, key: bytes) -> bytes:
        return self.namespace + key

    def _node_key(self, position: int) -> bytes:
        return self._k(NODES.key(be_u64(position)))

    # ------------------------------------------------------------------ load

    def _read(self, key: bytes) -> Optional[bytes]:
        try:
            return self.kv.get(self._k(key))
        except Exception as e:
            raise StorageError.from_exc(e, message="node store read failed") from e

    def _load(self) -> None:
        raw_size = self._read(_K_SIZE)
        raw_leaves = self._read(_K_LEAVES)
        if (raw_size is None) != (raw_leaves is None):
            raise StorageError("node store meta is incomplete (size/leaves)")
        if raw_size is not None and raw_leaves is not None:
            self._size = from_be_u64(raw_size)
            self._leaf_count = from_be_u64(raw_leaves)
            self._root = self._read(_K_ROOT)

        stored = self._read(_K_HASHER)
        if stored is not None and self.hasher_name is not None:
            if stored.decode("utf-8") != self.hasher_name:
                raise ConfigError(
                    "store was built with a different hasher",
                    data={"stored": stored.decode("utf-8", "replace"), "requested": self.hasher_name},
                )
        if self._size:
            log.debug("node store loaded", extra={"size": self._size, "leaf_count": self._leaf_count})

    # --------------------------------------------------------------- queries

    def size(self) -> int:
        return self._size

    def leaf_count(self) -> int:
        return self._leaf_count

    def root(self) -> Optional[bytes]:
        """Root committed with the last append, None if nothing was appended."""
        return self._root

    def get(self, position: int) -> Optional[Node]:
        """Node at `position`, or None if that position was never written."""
        if position < 0:
            raise ValueError("position must be >= 0")
        raw = self._read(NODES.key(be_u64(position)))
        return decode_node(raw) if raw is not None else None

    # ---------------------------------------------------------------- writes

    def append(self, node: Node) -> int:
        """Write `node` at the next free position; counters other than size stay put."""
        with self._lock:
            pos = self._size
            self._commit([node], leaf_count=self._leaf_count, root=self._root)
            return pos

    def append_batch(self, nodes: Sequence[Node], *, leaf_count: int, root: bytes) -> int:
        """
        Write `nodes` at consecutive positions together with the new leaf
        count and root, all in one KV batch. Returns the first position.
        """
        if not nodes:
            raise ValueError("append_batch needs at least one node")
        with self._lock:
            pos = self._size
            self._commit(nodes, leaf_count=leaf_count, root=root)
            return pos

    def _commit(self, nodes: Sequence[Node], *, leaf_count: int, root: Optional[bytes]) -> None:
        encoded = [encode_node(n) for n in nodes]
        new_size = self._size + len(encoded)
        try:
            with self.kv.batch() as b:
                for i, blob in enumerate(encoded):
                    b.put(self._node_key(self._size + i), blob)
                b.put(self._k(_K_SIZE), be_u64(new_size))
                b.put(self._k(_K_LEAVES), be_u64(leaf_count))
                if root is not None:
                    b.put(self._k(_K_ROOT), bytes(root))
                if self.hasher_name is not None and self._size == 0:
                    b.put(self._k(_K_HASHER), self.hasher_name.encode("utf-8"))
        except Exception as e:
            log.error(
                "node store commit failed",
                extra={"first_position": self._size, "nodes": len(encoded), "error": repr(e)},
            )
            raise StorageError.from_exc(
                e, message="node store commit failed", first_position=self._size, nodes=len(encoded)
            ) from e
        self._size = new_size
        self._leaf_count = leaf_count
        if root is not None:
            self._root = bytes(root)


# ---------------------------------------------------------------------------
# Side archive
# ---------------------------------------------------------------------------


@runtime_checkable
class OffchainArchive(Protocol):
    """Untrusted side store for leaf payloads and inner hashes, keyed by position."""

    def put(self, position: int, node: Node) -> None:
        ...

    def get(self, position: int) -> Optional[Node]:
        ...


DEFAULT_INDEXING_PREFIX = b"mmr-"


class KVArchive:
    """
    `OffchainArchive` over a KV backend. Keys are
    ``indexing_prefix || be_u64(position)``.
    """

    def __init__(self, kv: KV, *, indexing_prefix: bytes = DEFAULT_INDEXING_PREFIX) -> None:
        if not indexing_prefix:
            raise ValueError("indexing_prefix must be non-empty")
        self.kv = kv
        self.indexing_prefix = bytes(indexing_prefix)

    def key(self, position: int) -> bytes:
        return self.indexing_prefix + be_u64(position)

    def put(self, position: int, node: Node) -> None:
        self.put_many([(position, node)])

    def put_many(self, items: Iterable[tuple]) -> None:
        encoded: List[tuple] = [(self.key(p), encode_node(n)) for p, n in items]
        try:
            with self.kv.batch() as b:
                for k, v in encoded:
                    b.put(k, v)
        except Exception as e:
            raise StorageError.from_exc(e, message="archive write failed", entries=len(encoded)) from e

    def get(self, position: int) -> Optional[Node]:
        try:
            raw = self.kv.get(self.key(position))
        except Exception as e:
            raise StorageError.from_exc(e, message="archive read failed", position=position) from e
        return decode_node(raw) if raw is not None else None


__all__ = [
    "NodeStore",
    "OffchainArchive",
    "KVArchive",
    "DEFAULT_INDEXING_PREFIX",
]
