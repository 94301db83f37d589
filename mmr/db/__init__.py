"""
mmr.db
======

Facade for the key/value backends behind the node store and side archive.

URIs
----
- "memory://"                 → dict-backed MemoryKV (not persistent)
- "sqlite:///path/to/mmr.db"  → SQLite file
- "sqlite:///:memory:"        → private in-memory SQLite
- bare path ending in ".db"   → SQLite file

>>> from mmr.db import open_kv
>>> kv = open_kv("memory://")
>>> with kv.batch() as b:
...     b.put(b"n:key", b"hello")
>>> kv.get(b"n:key")
b'hello'
"""

from __future__ import annotations

from typing import Tuple

from .kv import KV, Batch, Prefix, ReadOnlyKV, be_u64, from_be_u64
from .memory import MemoryKV
from .sqlite import SQLiteKV, open_sqlite_kv


def _parse_uri(uri: str) -> Tuple[str, str]:
    u = uri.strip()
    if u.startswith("sqlite:///"):
        return ("sqlite", u[len("sqlite:///") :])
    if u.startswith("memory://"):
        return ("memory", "")
    if u.endswith(".db"):
        return ("sqlite", u)
    raise ValueError(f"Unsupported DB URI: {uri!r}")


def open_kv(uri: str, create: bool = True) -> KV:
    """
    Open a KV database by URI. See module docstring for supported forms.

    Raises:
        ValueError for unsupported URIs.
        FileNotFoundError if `create` is False and the SQLite file is missing.
    """
    backend, target = _parse_uri(uri)
    if backend == "memory":
        return MemoryKV()
    return open_sqlite_kv(target or ":memory:", create=create)


__all__ = [
    "KV",
    "ReadOnlyKV",
    "Batch",
    "Prefix",
    "be_u64",
    "from_be_u64",
    "MemoryKV",
    "SQLiteKV",
    "open_kv",
    "open_sqlite_kv",
]
