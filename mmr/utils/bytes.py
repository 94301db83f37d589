"""
MMR utilities: byte and hex helpers

  • Coercion of bytes-like values to immutable `bytes`
  • Hex helpers with a lowercase "0x" prefix (lenient parsing for CLI input)

All functions are deterministic and side-effect free.
"""
from __future__ import annotations

from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]

HEX_PREFIX = "0x"


# -----------------------------------------------------------------------------
# Coercion
# -----------------------------------------------------------------------------

def b(x: BytesLike) -> bytes:
    """Coerce to `bytes` without unnecessary copies."""
    if isinstance(x, bytes):
        return x
    if isinstance(x, bytearray):
        return bytes(x)
    if isinstance(x, memoryview):
        return x.tobytes()
    raise TypeError(f"expected bytes-like value, got {type(x).__name__}")


# -----------------------------------------------------------------------------
# Hex helpers
# -----------------------------------------------------------------------------

def strip_0x(h: str) -> str:
    """Remove a leading '0x' or '0X' (if present)."""
    return h[2:] if h[:2].lower() == HEX_PREFIX else h


def bytes_to_hex(x: BytesLike) -> str:
    """Return '0x' + lowercase hex for the given bytes."""
    return HEX_PREFIX + b(x).hex()


def hex_to_bytes(s: str) -> bytes:
    """
    Parse a hex string, with or without '0x'. Case-insensitive; underscores
    and surrounding whitespace are ignored.

    Raises ValueError on malformed input or odd-length hex.
    """
    h = strip_0x(s.strip()).replace("_", "")
    if len(h) % 2 != 0:
        raise ValueError("hex payload length must be even")
    try:
        return bytes.fromhex(h)
    except ValueError as e:
        raise ValueError(f"invalid hex string: {s!r}") from e


def short_hex(x: BytesLike, n: int = 10) -> str:
    """Abbreviated hex for logs: '0x1234abcd…'."""
    h = bytes_to_hex(x)
    return h if len(h) <= n + 2 else h[: n + 2] + "…"


__all__ = [
    "BytesLike",
    "HEX_PREFIX",
    "b",
    "strip_0x",
    "bytes_to_hex",
    "hex_to_bytes",
    "short_hex",
]
