from __future__ import annotations

import hashlib

import cbor2

from mmr.accumulator import MountainRange
from mmr.db.memory import MemoryKV


def sha3(data: bytes) -> bytes:
    return hashlib.sha3_256(data).digest()


def leaf(i: int) -> bytes:
    return f"leaf-{i}".encode()


def leaf_digest(payload) -> bytes:
    """Digest of a plain Data leaf, computed independently of mmr.node."""
    return sha3(cbor2.dumps(payload, canonical=True))


def filled(n: int, **kwargs) -> MountainRange:
    m = MountainRange(**kwargs)
    for i in range(n):
        m.append(leaf(i))
    return m


def flip_bit(b: bytes, bit: int = 0) -> bytes:
    arr = bytearray(b)
    arr[bit // 8 % len(arr)] ^= 1 << (bit % 8)
    return bytes(arr)


class FlakyKV(MemoryKV):
    """MemoryKV whose writes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail = False

    def _apply(self, ops):
        if self.fail:
            raise OSError("disk full")
        super()._apply(ops)
