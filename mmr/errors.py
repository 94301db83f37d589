"""
MMR errors.

Lightweight, typed exception hierarchy with structured metadata suitable for
callers that need to tell failure classes apart:

    (a) input validity: LeafIndexOutOfRange, MalformedProof, RootMismatch
    (b) data availability: MissingArchivedData
    (c) storage I/O: StorageError (fatal to one append, retryable)

Usage:

    from mmr.errors import LeafIndexOutOfRange

    raise LeafIndexOutOfRange("leaf index out of range", data={"leaf_index": 9, "leaf_count": 7})

All errors expose:
- .code      : stable machine-readable code (snake_case)
- .data      : optional structured payload (dict-like, JSON-safe)
- .retryable : whether the same call may succeed later without new inputs
- .to_dict() : plain dict for logs and JSON output
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


class MMRError(Exception):
    """
    Base class for MMR errors.

    Subclasses set `default_code` and, when relevant, `retryable`.
    """
    default_code = "mmr_error"
    retryable = False

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        # Store a shallow copy to prevent accidental external mutation
        self.data: Dict[str, Any] = {k: _coerce_json(v) for k, v in (data or {}).items()}

    def __str__(self) -> str:  # pragma: no cover - trivial
        if self.message:
            return f"{self.code}: {self.message}"
        return self.code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message or None,
            "retryable": self.retryable,
            "data": self.data or None,
        }

    @classmethod
    def from_exc(cls, exc: BaseException, *, message: Optional[str] = None, **data: Any) -> "MMRError":
        """
        Wrap an arbitrary exception, keeping it as ``__cause__``.
        """
        err = cls(message or f"{exc.__class__.__name__}: {exc}", data=data)
        err.__cause__ = exc
        return err


# --------------------------------------------------------------------------- #
# Input validity
# --------------------------------------------------------------------------- #


class InvalidInput(MMRError):
    default_code = "invalid_input"


class LeafIndexOutOfRange(InvalidInput):
    """
    A proof was requested for a leaf that does not exist (yet).
    """
    default_code = "leaf_index_out_of_range"


class VerificationError(InvalidInput):
    """
    Base for proof verification failures.
    """
    default_code = "verification_failed"


class MalformedProof(VerificationError):
    """
    Proof is structurally inconsistent with its (leaf_index, leaf_count),
    or could not be decoded.
    """
    default_code = "malformed_proof"


class RootMismatch(VerificationError):
    """
    The root recomputed from leaf and proof differs from the claimed root.
    """
    default_code = "root_mismatch"


# --------------------------------------------------------------------------- #
# Data availability
# --------------------------------------------------------------------------- #


class MissingArchivedData(MMRError):
    """
    A node needed for proof generation is absent from both the node store and
    the side archive. The leaf exists; the proof is impossible right now.
    """
    default_code = "missing_archived_data"
    retryable = True


# --------------------------------------------------------------------------- #
# Storage / codec / config
# --------------------------------------------------------------------------- #


class StorageError(MMRError):
    """
    Backend read/write failure. An append that raises this left the
    accumulator unchanged.
    """
    default_code = "storage_error"
    retryable = True


class NodeCodecError(MMRError, ValueError):
    """Malformed node or payload encoding."""
    default_code = "node_codec_error"


class ConfigError(MMRError, ValueError):
    """Invalid configuration value."""
    default_code = "config_error"


class BlockSequenceError(InvalidInput):
    """Blocks were fed to the indexer out of order."""
    default_code = "block_sequence_error"


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #


def _coerce_json(v: Any) -> Any:
    if v is None or isinstance(v, (bool, int, float, str)):
        return v
    if isinstance(v, (bytes, bytearray, memoryview)):
        return "0x" + bytes(v).hex()
    if isinstance(v, (list, tuple)):
        return [_coerce_json(x) for x in v]
    if isinstance(v, Mapping):
        return {str(k): _coerce_json(x) for k, x in v.items()}
    return str(v)


__all__ = [
    "MMRError",
    "InvalidInput",
    "LeafIndexOutOfRange",
    "VerificationError",
    "MalformedProof",
    "RootMismatch",
    "MissingArchivedData",
    "StorageError",
    "NodeCodecError",
    "ConfigError",
    "BlockSequenceError",
]
