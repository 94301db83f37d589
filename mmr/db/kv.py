from __future__ import annotations

"""
KV interface & key layout
=========================

Backend-agnostic key/value surface used by the MMR node store and the side
archive. Backends (memory, sqlite) implement these protocols; this module
holds no I/O.

Key layout
----------
Everything the accumulator persists lives under a short namespace:

- NODES (b"n:") : encoded nodes by big-endian position
- META  (b"m:") : size / leaf count / root of the committed range

The side archive keys nodes by ``indexing_prefix + be_u64(position)`` so that
several ranges can share one archive database (``b"mmr-"`` by default).

Batching
--------
`KV.batch()` returns a context manager. Writes inside it become visible all
at once when the block exits cleanly; if an exception escapes, nothing is
written.

>>> with kv.batch() as b:
...     b.put(NODES.key(be_u64(0)), b"...")
...     b.put(META.key(b"size"), be_u64(1))
"""

from typing import (Iterable, Iterator, Optional, Protocol, Tuple, Union,
                    runtime_checkable)

NS_SEP = b":"


class Prefix:
    """
    A logical namespace prefix such as b"n:".

    .raw is the raw prefix bytes.
    .key(*parts) concatenates the prefix with each part. Parts are expected
    to be fixed width (be_u64) or to be the final component, so no length
    framing is applied.
    """

    __slots__ = ("_raw",)

    def __init__(self, ns: Union[bytes, bytearray, memoryview, str]) -> None:
        ns_b = ns.encode("ascii") if isinstance(ns, str) else bytes(ns)
        if len(ns_b) == 0:
            raise ValueError("namespace must be non-empty")
        self._raw = ns_b.rstrip(NS_SEP) + NS_SEP

    @property
    def raw(self) -> bytes:
        return self._raw

    def key(self, *parts: Union[bytes, bytearray, memoryview, str]) -> bytes:
        out = bytearray(self._raw)
        for p in parts:
            out.extend(p.encode("utf-8") if isinstance(p, str) else bytes(p))
        return bytes(out)

    def __repr__(self) -> str:
        return f"Prefix({self._raw!r})"


def be_u64(n: int) -> bytes:
    if not (0 <= n < (1 << 64)):
        raise ValueError("be_u64 out of range")
    return n.to_bytes(8, "big")


def from_be_u64(b: bytes) -> int:
    if len(b) != 8:
        raise ValueError(f"expected 8 bytes, got {len(b)}")
    return int.from_bytes(b, "big")


NODES = Prefix(b"n")  # position -> encoded node
META = Prefix(b"m")   # size, leaves, root


# ---------------------------------------------------------------------------
# KV protocols & Batch
# ---------------------------------------------------------------------------


@runtime_checkable
class ReadOnlyKV(Protocol):
    """Minimal read-only KV surface."""

    def get(self, key: bytes) -> Optional[bytes]:
        """Fetch value or None if missing."""
        ...

    def has(self, key: bytes) -> bool:
        ...

    def iter_prefix(self, prefix: bytes) -> Iterator[Tuple[bytes, bytes]]:
        """
        Iterate (key, value) pairs whose key begins with `prefix`, in
        lexicographic key order.
        """
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class Batch(Protocol):
    """
    A write-batch context manager. Exiting without exception commits
    atomically; an escaping exception rolls the batch back.
    """

    def put(self, key: bytes, value: bytes) -> None: ...
    def delete(self, key: bytes) -> None: ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...

    def __enter__(self) -> "Batch": ...
    def __exit__(self, exc_type, exc, tb) -> Optional[bool]: ...


@runtime_checkable
class KV(ReadOnlyKV, Protocol):
    """Full RW KV surface."""

    def put(self, key: bytes, value: bytes) -> None:
        """Persist (key, value). Overwrites if present."""
        ...

    def delete(self, key: bytes) -> None:
        """Remove key if present (idempotent)."""
        ...

    def batch(self) -> Batch:
        ...


def put_many(kv: KV, items: Iterable[Tuple[bytes, bytes]]) -> None:
    """Write many keys using a single batch."""
    with kv.batch() as b:
        for k, v in items:
            b.put(k, v)


__all__ = [
    "ReadOnlyKV",
    "KV",
    "Batch",
    "Prefix",
    "NODES",
    "META",
    "put_many",
    "be_u64",
    "from_be_u64",
]
