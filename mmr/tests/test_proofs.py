import json

import cbor2
import pytest

from mmr.accumulator import MountainRange
from mmr.errors import (LeafIndexOutOfRange, MalformedProof, MissingArchivedData, NodeCodecError,
                        RootMismatch)
from mmr.hasher import SHA3_256
from mmr.node import Data, Hash
from mmr.proofs import Proof, bag_peaks
from mmr.storage import KVArchive
from mmr.db.memory import MemoryKV
from mmr.tests.util import filled, leaf, leaf_digest
from mmr.verify import verify

c = SHA3_256.combine


def d(i: int) -> bytes:
    return leaf_digest(leaf(i))


@pytest.fixture
def seven():
    return filled(7)


def test_bag_peaks_folds_from_the_right():
    a, b, e = d(0), d(1), d(2)
    assert bag_peaks([]) == b"\x00" * 32
    assert bag_peaks([a]) == a
    assert bag_peaks([a, b]) == c(a, b)
    assert bag_peaks([a, b, e]) == c(a, c(b, e))


def test_seven_leaves_leaf0(seven):
    n5, n9 = c(d(2), d(3)), c(d(4), d(5))
    leaf_node, proof = seven.generate_proof(0)
    assert leaf_node == Data(leaf(0))
    assert (proof.leaf_index, proof.leaf_count) == (0, 7)
    assert proof.items == (d(1), n5, c(n9, d(6)))


def test_seven_leaves_leaf4(seven):
    n6 = c(c(d(0), d(1)), c(d(2), d(3)))
    _, proof = seven.generate_proof(4)
    assert proof.items == (d(5), n6, d(6))


def test_seven_leaves_leaf6(seven):
    n6 = c(c(d(0), d(1)), c(d(2), d(3)))
    n9 = c(d(4), d(5))
    leaf_node, proof = seven.generate_proof(6)
    assert leaf_node == Data(leaf(6))
    assert proof.items == (n6, n9)


def test_single_leaf_proof_is_empty():
    m = filled(1)
    leaf_node, proof = m.generate_proof(0)
    assert proof.items == ()
    verify(m.root(), leaf_node, proof)


@pytest.mark.parametrize("index,count", [(0, 0), (7, 7), (100, 7), (-1, 7)])
def test_leaf_index_out_of_range(index, count):
    m = filled(count)
    with pytest.raises(LeafIndexOutOfRange):
        m.generate_proof(index)


def test_at_leaf_count_beyond_range(seven):
    with pytest.raises(LeafIndexOutOfRange):
        seven.generate_proof(0, at_leaf_count=8)
    with pytest.raises(LeafIndexOutOfRange):
        seven.generate_proof(5, at_leaf_count=5)


def test_historical_proofs_stay_valid():
    m = MountainRange()
    snapshots = []
    for i in range(12):
        m.append(leaf(i))
        snapshots.append((m.leaf_count(), m.root(), m.generate_proof(i // 2)))
    for n, root, (leaf_node, proof) in snapshots:
        assert proof.leaf_count == n
        verify(root, leaf_node, proof)
        # a proof generated later against that size is the same proof
        assert m.generate_proof(proof.leaf_index, at_leaf_count=n) == (leaf_node, proof)


def test_missing_archive_raises(seven):
    blind = MountainRange(seven.store, archive=KVArchive(MemoryKV()))
    with pytest.raises(MissingArchivedData) as ei:
        blind.generate_proof(3)
    assert ei.value.retryable


def test_keep_leaf_data_needs_no_archive():
    m = MountainRange(keep_leaf_data=True)
    for i in range(5):
        m.append(leaf(i))
    blind = MountainRange(m.store, archive=KVArchive(MemoryKV()))
    leaf_node, proof = blind.generate_proof(3)
    verify(m.root(), leaf_node, proof)


def test_archive_leaf_must_match_committed_digest(seven):
    seven.archive.put(0, Data(b"forged"))
    with pytest.raises(MissingArchivedData):
        seven.generate_proof(0)


def test_corrupt_archived_leaf_is_unavailable_data(seven):
    seven.archive.kv.put(seven.archive.key(0), b"\x00\xff\xff")
    with pytest.raises(MissingArchivedData) as ei:
        seven.generate_proof(0)
    assert isinstance(ei.value.__cause__, NodeCodecError)
    assert ei.value.data["position"] == 0


def test_corrupt_archived_inner_node_is_unavailable_data():
    m = filled(4)
    m.store.kv.delete(m.store._node_key(2))
    m.archive.kv.put(m.archive.key(2), b"\x07junk")
    with pytest.raises(MissingArchivedData):
        m.generate_proof(3)


def test_inner_nodes_fall_back_to_archive():
    m = filled(4)
    # drop inner node 2 from the primary store; the archive still has it
    m.store.kv.delete(m.store._node_key(2))
    assert m.node(2) is None
    assert isinstance(m.archive.get(2), Hash)
    leaf_node, proof = m.generate_proof(3)
    verify(m.root(), leaf_node, proof)


def test_proof_metrics(metrics):
    m = MountainRange(metrics=metrics)
    m.append(leaf(0))
    m.generate_proof(0)
    with pytest.raises(LeafIndexOutOfRange):
        m.generate_proof(1)
    assert metrics.sample("mmr_proofs_generated_total", {"outcome": "ok"}) == 1
    assert metrics.sample("mmr_proofs_generated_total", {"outcome": "leaf_index_out_of_range"}) == 1


# ---------------------------------------------------------------------------
# Wire formats
# ---------------------------------------------------------------------------


def test_cbor_wire_format(seven):
    _, proof = seven.generate_proof(0)
    raw = proof.to_bytes()
    assert cbor2.loads(raw) == {"leafIndex": 0, "leafCount": 7, "items": list(proof.items)}
    assert Proof.from_bytes(raw) == proof


def test_json_wire_format(seven):
    _, proof = seven.generate_proof(4)
    obj = json.loads(proof.to_json())
    assert obj["leafIndex"] == 4 and obj["leafCount"] == 7
    assert all(x.startswith("0x") and len(x) == 66 for x in obj["items"])
    assert Proof.from_json(proof.to_json()) == proof
    assert Proof.from_dict(obj) == proof


@pytest.mark.parametrize(
    "raw",
    [
        b"",
        b"\xff\xfe",
        cbor2.dumps([1, 2, 3]),
        cbor2.dumps({"leafIndex": 0, "leafCount": 1}),
        cbor2.dumps({"leafIndex": -1, "leafCount": 1, "items": []}),
        cbor2.dumps({"leafIndex": 0, "leafCount": 1, "items": ["00"]}),
        cbor2.dumps({"leafIndex": True, "leafCount": 1, "items": []}),
    ],
)
def test_from_bytes_rejects_garbage(raw):
    with pytest.raises(MalformedProof):
        Proof.from_bytes(raw)


@pytest.mark.parametrize(
    "text",
    ["not json", "[]", '{"leafIndex": 0, "leafCount": 1, "items": ["zz"]}', '{"leafIndex": "0", "leafCount": 1, "items": []}'],
)
def test_from_json_rejects_garbage(text):
    with pytest.raises(MalformedProof):
        Proof.from_json(text)


def test_verify_leaf_against_current_root(seven):
    leaf_node, proof = seven.generate_proof(5)
    seven.verify_leaf(leaf_node, proof)
    seven.verify_leaf(leaf(5), proof)
    with pytest.raises(RootMismatch):
        seven.verify_leaf(Data(b"other"), proof)


def test_verify_leaf_after_more_appends(seven):
    leaf_node, proof = seven.generate_proof(5)
    seven.append(leaf(7))
    assert proof.leaf_count == 7
    seven.verify_leaf(leaf_node, proof)


@pytest.mark.parametrize("count", [0, 8])
def test_verify_leaf_rejects_counts_outside_range(seven, count):
    leaf_node, proof = seven.generate_proof(0)
    with pytest.raises(MalformedProof):
        seven.verify_leaf(leaf_node, Proof(proof.leaf_index, count, proof.items))
