"""
Hashing abstraction for the accumulator.

A `Hasher` turns leaf bytes into digests and merges two child digests into
a parent digest. The accumulator, the proof generator and the verifier only
ever talk to this protocol, so swapping the hash function is a one-argument
change:

    from mmr.hasher import get_hasher
    h = get_hasher("keccak_256")
    parent = h.combine(left, right)  # == h.hash(left + right)

Bundled hashers: ``sha3_256`` (default), ``blake2b_256``, ``keccak_256``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Union, runtime_checkable

from .errors import ConfigError
from .utils.hash import blake2b_256, keccak_256, sha3_256


@runtime_checkable
class Hasher(Protocol):
    name: str
    digest_size: int

    def hash(self, data: bytes) -> bytes:
        ...

    def combine(self, left: bytes, right: bytes) -> bytes:
        ...


@dataclass(frozen=True)
class FunctionHasher:
    """
    Hasher backed by a plain ``bytes -> digest`` function.

    `combine` is order sensitive and refuses operands that are not digests
    of this hasher.
    """
    name: str
    fn: Callable[[bytes], bytes]
    digest_size: int = 32

    def hash(self, data: bytes) -> bytes:
        return self.fn(bytes(data))

    def combine(self, left: bytes, right: bytes) -> bytes:
        if len(left) != self.digest_size or len(right) != self.digest_size:
            raise ValueError(
                f"{self.name}: combine expects two {self.digest_size}-byte digests "
                f"(got {len(left)} and {len(right)})"
            )
        return self.fn(bytes(left) + bytes(right))

    def empty_root(self) -> bytes:
        return b"\x00" * self.digest_size

    def __repr__(self) -> str:
        return f"<Hasher {self.name}>"


SHA3_256 = FunctionHasher("sha3_256", sha3_256)
BLAKE2B_256 = FunctionHasher("blake2b_256", blake2b_256)
KECCAK_256 = FunctionHasher("keccak_256", keccak_256)

DEFAULT_HASHER: Hasher = SHA3_256

_REGISTRY: Dict[str, Hasher] = {h.name: h for h in (SHA3_256, BLAKE2B_256, KECCAK_256)}
_ALIASES = {"sha3": "sha3_256", "blake2b": "blake2b_256", "keccak": "keccak_256"}


def register_hasher(hasher: Hasher, *, replace: bool = False) -> None:
    """Make `hasher` resolvable by name through `get_hasher`."""
    if not isinstance(hasher, Hasher):
        raise TypeError(f"not a Hasher: {hasher!r}")
    if hasher.name in _REGISTRY and not replace:
        raise ConfigError(f"hasher {hasher.name!r} already registered")
    _REGISTRY[hasher.name] = hasher


def available_hashers() -> List[str]:
    return sorted(_REGISTRY)


def get_hasher(name: Union[str, Hasher, None] = None) -> Hasher:
    """Resolve a hasher by name (or pass one through). None gives the default."""
    if name is None:
        return DEFAULT_HASHER
    if not isinstance(name, str):
        if isinstance(name, Hasher):
            return name
        raise TypeError(f"expected hasher name or Hasher, got {type(name).__name__}")
    key = name.strip().lower().replace("-", "_")
    key = _ALIASES.get(key, key)
    try:
        return _REGISTRY[key]
    except KeyError:
        raise ConfigError(
            f"unknown hasher {name!r}",
            data={"hasher": name, "available": available_hashers()},
        ) from None


def empty_root(hasher: Optional[Hasher] = None) -> bytes:
    """Root of a range with no leaves: an all-zero digest."""
    return b"\x00" * get_hasher(hasher).digest_size


__all__ = [
    "Hasher",
    "FunctionHasher",
    "SHA3_256",
    "BLAKE2B_256",
    "KECCAK_256",
    "DEFAULT_HASHER",
    "register_hasher",
    "available_hashers",
    "get_hasher",
    "empty_root",
]
