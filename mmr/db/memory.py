from __future__ import annotations

"""
In-memory KV store
==================

Dict-backed implementation of the `KV` protocol for tests, the CLI's
``memory://`` URI and throwaway ranges. Batches are staged in a private
buffer and applied under a lock on commit, so readers never observe a
half-written batch.
"""

import threading
from typing import Dict, Iterator, List, Optional, Tuple

from .kv import KV, Batch

_DELETED = object()


class MemoryBatch:
    __slots__ = ("_kv", "_ops", "_open")

    def __init__(self, kv: "MemoryKV") -> None:
        self._kv = kv
        self._ops: List[Tuple[bytes, object]] = []
        self._open = False

    def __enter__(self) -> "MemoryBatch":
        if self._open:
            raise RuntimeError("batch already open (nested batches not supported)")
        self._open = True
        return self

    def put(self, key: bytes, value: bytes) -> None:
        if not self._open:
            raise RuntimeError("batch not open")
        self._ops.append((bytes(key), bytes(value)))

    def delete(self, key: bytes) -> None:
        if not self._open:
            raise RuntimeError("batch not open")
        self._ops.append((bytes(key), _DELETED))

    def commit(self) -> None:
        if not self._open:
            return
        self._kv._apply(self._ops)
        self._ops = []
        self._open = False

    def rollback(self) -> None:
        self._ops = []
        self._open = False

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            self._open = False
        return None


class MemoryKV:
    """Process-local KV. Not persistent."""

    def __init__(self) -> None:
        self._data: Dict[bytes, bytes] = {}
        self._lock = threading.Lock()
        self._closed = False

    def _check(self) -> None:
        if self._closed:
            raise RuntimeError("MemoryKV is closed")

    def _apply(self, ops: List[Tuple[bytes, object]]) -> None:
        self._check()
        with self._lock:
            for k, v in ops:
                if v is _DELETED:
                    self._data.pop(k, None)
                else:
                    self._data[k] = v  # type: ignore[assignment]

    # --- ReadOnlyKV ---

    def get(self, key: bytes) -> Optional[bytes]:
        self._check()
        return self._data.get(bytes(key))

    def has(self, key: bytes) -> bool:
        self._check()
        return bytes(key) in self._data

    def iter_prefix(self, prefix: bytes) -> Iterator[Tuple[bytes, bytes]]:
        self._check()
        with self._lock:
            items = sorted((k, v) for k, v in self._data.items() if k.startswith(prefix))
        yield from items

    def close(self) -> None:
        self._closed = True

    # --- KV ---

    def put(self, key: bytes, value: bytes) -> None:
        self._apply([(bytes(key), bytes(value))])

    def delete(self, key: bytes) -> None:
        self._apply([(bytes(key), _DELETED)])

    def batch(self) -> Batch:
        return MemoryBatch(self)

    def __len__(self) -> int:
        return len(self._data)


def open_memory_kv() -> KV:
    return MemoryKV()


__all__ = ["MemoryKV", "MemoryBatch", "open_memory_kv"]
