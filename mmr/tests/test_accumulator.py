import threading

import pytest

from mmr.accumulator import MountainRange, rebuild
from mmr.db import open_kv
from mmr.errors import InvalidInput, StorageError
from mmr.hasher import KECCAK_256, SHA3_256
from mmr.node import CompactLeaf, Data, Hash
from mmr.storage import KVArchive, NodeStore
from mmr.tests.util import FlakyKV, filled, leaf, leaf_digest
from mmr.verify import verify

c = SHA3_256.combine


def d(i: int) -> bytes:
    return leaf_digest(leaf(i))


def test_empty_range(mmr):
    assert mmr.leaf_count() == 0
    assert mmr.size() == 0
    assert mmr.root() == b"\x00" * 32
    assert mmr.peaks() == []
    assert mmr.peak_digests() == []


def test_single_leaf_root_is_leaf_digest(mmr):
    assert mmr.append(leaf(0)) == 0
    assert mmr.root() == d(0)
    assert mmr.peaks() == [0]


def test_two_leaves(mmr):
    mmr.append(leaf(0))
    assert mmr.append(leaf(1)) == 1
    assert mmr.size() == 3
    assert mmr.root() == c(d(0), d(1))
    assert mmr.node(2) == Hash(c(d(0), d(1)))


def test_three_leaves(mmr):
    for i in range(3):
        mmr.append(leaf(i))
    assert mmr.size() == 4
    assert mmr.peaks() == [2, 3]
    assert mmr.root() == c(c(d(0), d(1)), d(2))


def test_seven_leaves_structure(mmr):
    positions = [mmr.append(leaf(i)) for i in range(7)]
    assert positions == [0, 1, 3, 4, 7, 8, 10]
    assert mmr.size() == 11
    assert mmr.peaks() == [6, 9, 10]

    n2 = c(d(0), d(1))
    n5 = c(d(2), d(3))
    n6 = c(n2, n5)
    n9 = c(d(4), d(5))
    assert mmr.peak_digests() == [n6, n9, d(6)]
    assert mmr.root() == c(n6, c(n9, d(6)))
    assert mmr.node(5) == Hash(n5)


def test_primary_store_keeps_hashes_archive_keeps_data(mmr):
    for i in range(7):
        mmr.append(leaf(i))
    # primary: every node is a Hash
    assert all(isinstance(mmr.node(p), Hash) for p in range(mmr.size()))
    # archive: leaves as Data, inner nodes as Hash
    assert mmr.archive.get(0) == Data(leaf(0))
    assert mmr.archive.get(10) == Data(leaf(6))
    assert isinstance(mmr.archive.get(2), Hash)
    assert isinstance(mmr.archive.get(6), Hash)


def test_keep_leaf_data_stores_data_in_primary():
    m = MountainRange(keep_leaf_data=True)
    m.append(leaf(0))
    m.append(leaf(1))
    assert m.node(0) == Data(leaf(0))
    assert isinstance(m.node(2), Hash)
    assert m.root() == filled(2).root()


def test_incremental_equals_rebuild():
    m = MountainRange()
    for i in range(40):
        m.append(leaf(i))
        assert m.root() == rebuild([leaf(j) for j in range(i + 1)]).root()


def test_root_at_history():
    m = filled(20)
    for n in range(21):
        assert m.root_at(n) == filled(n).root()


def test_hasher_changes_root():
    assert filled(5, hasher=KECCAK_256).root() != filled(5).root()
    assert filled(5, hasher="keccak_256").root() == filled(5, hasher=KECCAK_256).root()


def test_hash_leaf_rejected(mmr):
    with pytest.raises(InvalidInput):
        mmr.append(Hash(b"\x00" * 32))
    assert mmr.leaf_count() == 0


def test_compact_leaf_append():
    m = MountainRange()
    m.append(CompactLeaf.of([0, b"\x11" * 32], b"extra"))
    leaf_node, proof = m.generate_proof(0)
    assert isinstance(leaf_node.payload, CompactLeaf)
    verify(m.root(), leaf_node, proof)
    verify(m.root(), Data(leaf_node.payload.pruned(keep=[0])), proof)


def test_on_new_root_callbacks():
    seen = []
    m = MountainRange(on_new_root=[lambda n, r: seen.append((n, r))])
    m.append(leaf(0))
    m.append(leaf(1))
    assert seen == [(1, filled(1).root()), (2, filled(2).root())]


def test_failed_store_write_leaves_range_unchanged():
    kv = FlakyKV()
    m = MountainRange(NodeStore(kv))
    for i in range(3):
        m.append(leaf(i))
    before = (m.leaf_count(), m.size(), m.root())

    kv.fail = True
    with pytest.raises(StorageError):
        m.append(leaf(3))
    assert (m.leaf_count(), m.size(), m.root()) == before

    kv.fail = False
    assert m.append(leaf(3)) == 4
    assert m.root() == filled(4).root()


def test_failed_archive_write_leaves_range_unchanged():
    arch_kv = FlakyKV()
    m = MountainRange(archive=KVArchive(arch_kv))
    m.append(leaf(0))
    arch_kv.fail = True
    with pytest.raises(StorageError):
        m.append(leaf(1))
    assert m.leaf_count() == 1
    assert m.root() == filled(1).root()


def test_failing_callback_does_not_fail_append(mmr, caplog):
    seen = []

    def boom(n, r):
        raise RuntimeError("listener failed")

    mmr.subscribe(boom)
    mmr.subscribe(lambda n, r: seen.append(n))
    with caplog.at_level("ERROR", logger="mmr.accumulator"):
        assert mmr.append(leaf(0)) == 0
    assert mmr.leaf_count() == 1
    assert seen == [1]
    assert any("callback failed" in r.getMessage() for r in caplog.records)


def test_failing_callback_counts_as_successful_append(metrics):
    def boom(n, r):
        raise RuntimeError("listener failed")

    m = MountainRange(on_new_root=[boom], metrics=metrics)
    m.append(leaf(0))
    assert metrics.sample("mmr_appends_total", {"outcome": "ok"}) == 1


def test_reopen_sqlite_range(tmp_path):
    uri = f"sqlite:///{tmp_path / 'mmr.db'}"
    kv = open_kv(uri)
    m = MountainRange(NodeStore(kv, hasher_name="sha3_256"), archive=KVArchive(kv))
    for i in range(5):
        m.append(leaf(i))
    root5 = m.root()
    kv.close()

    kv2 = open_kv(uri)
    m2 = MountainRange(NodeStore(kv2, hasher_name="sha3_256"), archive=KVArchive(kv2))
    assert m2.leaf_count() == 5 and m2.root() == root5
    m2.append(leaf(5))
    assert m2.root() == filled(6).root()
    leaf_node, proof = m2.generate_proof(2)
    assert leaf_node == Data(leaf(2))
    verify(m2.root(), leaf_node, proof)


def test_metrics_recorded(metrics):
    m = MountainRange(metrics=metrics)
    m.append(leaf(0))
    m.append(leaf(1))
    assert metrics.sample("mmr_appends_total", {"outcome": "ok"}) == 2
    assert metrics.sample("mmr_leaf_count") == 2
    assert metrics.sample("mmr_size") == 3
    assert metrics.sample("mmr_append_duration_seconds_count") == 2


def test_concurrent_appends_serialize():
    m = MountainRange()

    def worker(tag):
        for i in range(25):
            m.append(f"{tag}-{i}".encode())

    threads = [threading.Thread(target=worker, args=(t,)) for t in "abcd"]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert m.leaf_count() == 100
    assert m.size() == 2 * 100 - bin(100).count("1")
    for i in (0, 37, 99):
        leaf_node, proof = m.generate_proof(i)
        verify(m.root(), leaf_node, proof)
