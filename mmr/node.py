"""
MMR node model & codec.

A node is either
- ``Hash(digest)``  : an opaque digest (every inner node, and pruned leaves), or
- ``Data(payload)`` : a full leaf payload, hashed on demand.

``Data(x)`` and ``Hash(digest_of(Data(x)))`` are interchangeable wherever a
digest is needed, which is what lets the primary store keep only hashes while
the side archive keeps payloads.

Payload bytes
-------------
Payloads are serialized with canonical CBOR (cbor2, ``canonical=True``) so the
same value always hashes to the same digest. A `CompactLeaf` (a leaf built
from several parts, each possibly pruned to its Hash) travels as CBOR tag
``COMPACT_LEAF_TAG`` wrapping the encoded parts, and its digest is the digest
of the list of its parts' digests.

Persisted layout
----------------
    0x00 || canonical_cbor(payload)   Data
    0x01 || digest                    Hash
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple, Union

import cbor2

from .errors import NodeCodecError
from .hasher import Hasher, get_hasher

TAG_DATA = 0x00
TAG_HASH = 0x01

# CBOR semantic tag carrying a CompactLeaf (first-come-first-served range).
COMPACT_LEAF_TAG = 27001


@dataclass(frozen=True)
class Hash:
    digest: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.digest, (bytes, bytearray, memoryview)):
            raise TypeError(f"Hash digest must be bytes, got {type(self.digest).__name__}")
        d = bytes(self.digest)
        if not d:
            raise ValueError("Hash digest must be non-empty")
        object.__setattr__(self, "digest", d)

    def __repr__(self) -> str:
        return f"Hash(0x{self.digest.hex()})"


@dataclass(frozen=True)
class Data:
    payload: Any


@dataclass(frozen=True)
class CompactLeaf:
    """
    A composite leaf payload. Any part may be swapped for its Hash without
    changing the leaf digest.
    """
    parts: Tuple["Node", ...]

    def __post_init__(self) -> None:
        parts = tuple(self.parts)
        if not parts:
            raise ValueError("CompactLeaf needs at least one part")
        for p in parts:
            if not isinstance(p, (Hash, Data)):
                raise TypeError(f"CompactLeaf parts must be Hash or Data, got {type(p).__name__}")
        object.__setattr__(self, "parts", parts)

    @classmethod
    def of(cls, *payloads: Any) -> "CompactLeaf":
        """Build from raw payloads (or nodes, kept as given)."""
        return cls(tuple(as_node(p) for p in payloads))

    def pruned(self, keep: Iterable[int], hasher: Optional[Hasher] = None) -> "CompactLeaf":
        """Copy with every part not listed in `keep` replaced by its Hash."""
        keep_set = set(keep)
        return CompactLeaf(
            tuple(p if i in keep_set else as_hash(p, hasher) for i, p in enumerate(self.parts))
        )


Node = Union[Hash, Data]


def as_node(value: Any) -> Node:
    """Nodes pass through; anything else becomes ``Data(value)``."""
    if isinstance(value, (Hash, Data)):
        return value
    return Data(value)


# ---------------------------------------------------------------------------
# Payload serialization
# ---------------------------------------------------------------------------


def _cbor_default(encoder: Any, value: Any) -> None:
    if isinstance(value, CompactLeaf):
        encoder.encode(cbor2.CBORTag(COMPACT_LEAF_TAG, [encode_node(p) for p in value.parts]))
        return
    raise TypeError(f"cannot serialize {type(value).__name__} in a leaf payload")


def _restore_tags(value: Any) -> Any:
    """Turn decoded ``CBORTag(COMPACT_LEAF_TAG, ...)`` items back into CompactLeaf, at any depth."""
    if isinstance(value, cbor2.CBORTag):
        if value.tag != COMPACT_LEAF_TAG:
            return value
        if not isinstance(value.value, list):
            raise NodeCodecError("CompactLeaf tag must wrap an array")
        try:
            return CompactLeaf(tuple(decode_node(bytes(x)) for x in value.value))
        except NodeCodecError:
            raise
        except (TypeError, ValueError) as e:
            raise NodeCodecError.from_exc(e, message=f"bad CompactLeaf part: {e}") from e
    if isinstance(value, list):
        return [_restore_tags(x) for x in value]
    if isinstance(value, dict):
        return {k: _restore_tags(v) for k, v in value.items()}
    return value


def serialize(payload: Any) -> bytes:
    """Canonical CBOR bytes of a leaf payload."""
    try:
        return cbor2.dumps(payload, canonical=True, default=_cbor_default)
    except NodeCodecError:
        raise
    except (TypeError, ValueError, cbor2.CBOREncodeError) as e:
        raise NodeCodecError.from_exc(e, message=f"unserializable payload: {e}") from e


def deserialize(data: bytes) -> Any:
    """Inverse of `serialize`. The whole buffer must hold exactly one item."""
    buf = io.BytesIO(bytes(data))
    try:
        value = cbor2.CBORDecoder(buf).decode()
    except NodeCodecError:
        raise
    except (cbor2.CBORDecodeError, TypeError, ValueError, EOFError) as e:
        raise NodeCodecError.from_exc(e, message=f"bad payload encoding: {e}") from e
    if buf.tell() != len(data):
        raise NodeCodecError("trailing bytes after payload", data={"extra": len(data) - buf.tell()})
    return _restore_tags(value)


# ---------------------------------------------------------------------------
# Digests
# ---------------------------------------------------------------------------


def payload_digest(payload: Any, hasher: Optional[Hasher] = None) -> bytes:
    h = get_hasher(hasher)
    if isinstance(payload, CompactLeaf):
        return h.hash(serialize([digest_of(p, h) for p in payload.parts]))
    return h.hash(serialize(payload))


def digest_of(node: Node, hasher: Optional[Hasher] = None) -> bytes:
    """``Hash(d) -> d``; ``Data(x) -> hasher.hash(serialize(x))``."""
    if isinstance(node, Hash):
        return node.digest
    if isinstance(node, Data):
        return payload_digest(node.payload, hasher)
    raise TypeError(f"expected Hash or Data, got {type(node).__name__}")


def as_hash(node: Node, hasher: Optional[Hasher] = None) -> Hash:
    if isinstance(node, Hash):
        return node
    return Hash(digest_of(node, hasher))


# ---------------------------------------------------------------------------
# Persisted codec
# ---------------------------------------------------------------------------


def encode_node(node: Node) -> bytes:
    if isinstance(node, Hash):
        return bytes([TAG_HASH]) + node.digest
    if isinstance(node, Data):
        return bytes([TAG_DATA]) + serialize(node.payload)
    raise NodeCodecError(f"cannot encode {type(node).__name__} as a node")


def decode_node(data: bytes) -> Node:
    if not data:
        raise NodeCodecError("empty node encoding")
    tag, body = data[0], bytes(data[1:])
    if tag == TAG_HASH:
        if not body:
            raise NodeCodecError("Hash node without digest")
        return Hash(body)
    if tag == TAG_DATA:
        if not body:
            raise NodeCodecError("Data node without payload")
        return Data(deserialize(body))
    raise NodeCodecError(f"unknown node tag 0x{tag:02x}", data={"tag": tag})


__all__ = [
    "TAG_DATA",
    "TAG_HASH",
    "COMPACT_LEAF_TAG",
    "Hash",
    "Data",
    "CompactLeaf",
    "Node",
    "as_node",
    "serialize",
    "deserialize",
    "payload_digest",
    "digest_of",
    "as_hash",
    "encode_node",
    "decode_node",
]
