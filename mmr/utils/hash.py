"""
mmr.utils.hash
==============

Thin wrappers for the digests the accumulator can be configured with.
All functions take bytes-like input and return raw 32-byte digests.

- sha3_256(data)       # hashlib, default accumulator hash
- blake2b_256(data)    # hashlib, BLAKE2b with a 32-byte digest
- keccak_256(data)     # pycryptodome, Ethereum-style Keccak-256

"""

from __future__ import annotations

import hashlib

from Crypto.Hash import keccak as _keccak

from .bytes import BytesLike
from .bytes import b as _b

def sha3_256(data: BytesLike) -> bytes:
    """SHA3-256 digest."""
    return hashlib.sha3_256(_b(data)).digest()


def blake2b_256(data: BytesLike) -> bytes:
    """BLAKE2b digest truncated at the parameter level to 32 bytes."""
    return hashlib.blake2b(_b(data), digest_size=32).digest()


def keccak_256(data: BytesLike) -> bytes:
    """Keccak-256 digest (pre-standard SHA-3 padding, as used by Ethereum)."""
    h = _keccak.new(digest_bits=256)
    h.update(_b(data))
    return h.digest()


__all__ = [
    "sha3_256",
    "blake2b_256",
    "keccak_256",
]
