import cbor2
import pytest

from mmr.errors import NodeCodecError
from mmr.hasher import KECCAK_256
from mmr.node import (COMPACT_LEAF_TAG, TAG_DATA, TAG_HASH, CompactLeaf, Data, Hash, as_hash,
                      as_node, decode_node, deserialize, digest_of, encode_node, serialize)
from mmr.tests.util import leaf_digest, sha3


def test_data_digest_is_hash_of_canonical_cbor():
    payload = {"b": 2, "a": [1, b"\x01"]}
    assert digest_of(Data(payload)) == leaf_digest(payload)
    # canonical: key order does not matter
    assert digest_of(Data({"a": [1, b"\x01"], "b": 2})) == digest_of(Data(payload))


def test_hash_and_data_are_interchangeable():
    d = Data(b"payload")
    assert digest_of(as_hash(d)) == digest_of(d)
    assert as_hash(as_hash(d)) == as_hash(d)


def test_digest_respects_hasher():
    d = Data(b"x")
    assert digest_of(d, KECCAK_256) != digest_of(d)
    assert digest_of(d, KECCAK_256) == KECCAK_256.hash(serialize(b"x"))


def test_as_node():
    h = Hash(b"\x01" * 32)
    assert as_node(h) is h
    assert as_node(b"raw") == Data(b"raw")


def test_hash_requires_bytes():
    with pytest.raises(TypeError):
        Hash("00" * 32)  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        Hash(b"")
    assert Hash(bytearray(b"\x02" * 32)).digest == b"\x02" * 32


def test_encode_layout():
    digest = sha3(b"d")
    assert encode_node(Hash(digest)) == bytes([TAG_HASH]) + digest
    assert encode_node(Data(b"ab")) == bytes([TAG_DATA]) + cbor2.dumps(b"ab", canonical=True)


@pytest.mark.parametrize(
    "node",
    [
        Hash(b"\x07" * 32),
        Data(b"bytes"),
        Data("text"),
        Data([1, 2, [b"\x00"]]),
        Data({"height": 5, "parent": b"\xaa" * 32}),
    ],
)
def test_codec_preserves_variant_and_value(node):
    out = decode_node(encode_node(node))
    assert type(out) is type(node)
    assert out == node


@pytest.mark.parametrize("blob", [b"", b"\x02abc", b"\x01", b"\x00", b"\x00\xff\xff"])
def test_decode_rejects_malformed(blob):
    with pytest.raises(NodeCodecError):
        decode_node(blob)


def test_deserialize_rejects_trailing_bytes():
    with pytest.raises(NodeCodecError):
        deserialize(serialize(1) + b"\x00")


def test_serialize_rejects_unknown_objects():
    with pytest.raises(NodeCodecError):
        serialize(object())


# ---------------------------------------------------------------------------
# CompactLeaf
# ---------------------------------------------------------------------------


def test_compact_leaf_digest_is_digest_of_part_digests():
    c = CompactLeaf.of([1, b"parent"], b"extra")
    parts = [leaf_digest([1, b"parent"]), leaf_digest(b"extra")]
    assert digest_of(Data(c)) == sha3(cbor2.dumps(parts, canonical=True))


def test_compact_leaf_digest_survives_pruning():
    c = CompactLeaf.of([1, b"parent"], b"extra", {"k": "v"})
    full = digest_of(Data(c))
    assert digest_of(Data(c.pruned(keep=[0]))) == full
    assert digest_of(Data(c.pruned(keep=[]))) == full
    assert isinstance(c.pruned(keep=[0]).parts[1], Hash)


def test_compact_leaf_roundtrips_through_codec():
    c = CompactLeaf((Data(b"a"), Hash(b"\x05" * 32)))
    encoded = encode_node(Data(c))
    assert cbor2.loads(encoded[1:]).tag == COMPACT_LEAF_TAG
    out = decode_node(encoded)
    assert out == Data(c)


def test_compact_leaf_nested_in_payload():
    c = CompactLeaf.of(b"a", {"k": 1})
    payload = {"leaf": c, "others": [c, 7]}
    out = deserialize(serialize(payload))
    assert out == payload
    assert isinstance(out["others"][0], CompactLeaf)


def test_foreign_tags_are_left_alone():
    out = deserialize(cbor2.dumps(cbor2.CBORTag(4242, [1, 2])))
    assert isinstance(out, cbor2.CBORTag) and out.tag == 4242


@pytest.mark.parametrize("inner", [b"\x01", ["not-bytes"], [b"\x07abc"]])
def test_compact_leaf_tag_with_bad_parts(inner):
    with pytest.raises(NodeCodecError):
        deserialize(cbor2.dumps(cbor2.CBORTag(COMPACT_LEAF_TAG, inner)))


def test_compact_leaf_validation():
    with pytest.raises(ValueError):
        CompactLeaf(())
    with pytest.raises(TypeError):
        CompactLeaf((b"raw",))  # type: ignore[arg-type]
