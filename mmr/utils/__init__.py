"""
MMR utilities package

Small, reusable helpers used across the accumulator:

  - mmr.utils.bytes : byte/hex coercion helpers
  - mmr.utils.hash  : SHA3 / BLAKE2b / Keccak digest wrappers

Submodules are loaded lazily so importing `mmr.utils` stays cheap.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

_SUBMODULES = ("bytes", "hash")


def __getattr__(name: str) -> Any:
    """Lazily import and return one of the known utility submodules."""
    if name in _SUBMODULES:
        return import_module(f"{__name__}.{name}")
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + list(_SUBMODULES))


__all__ = list(_SUBMODULES)
