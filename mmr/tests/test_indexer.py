import pytest

from mmr.accumulator import MountainRange
from mmr.errors import BlockSequenceError, LeafIndexOutOfRange
from mmr.indexer import BlockIndexer, LeafProvider, ParentLeafProvider
from mmr.node import CompactLeaf, Data
from mmr.verify import verify


def parent_hash(h: int) -> bytes:
    return bytes([h % 256]) * 32


def index_blocks(idx: BlockIndexer, first: int, count: int) -> None:
    for h in range(first, first + count):
        idx.on_block(h, parent_hash(h - 1))


def test_default_leaf_commits_to_parent():
    idx = BlockIndexer(MountainRange())
    index_blocks(idx, 1, 7)
    assert idx.first_height == 1
    leaf_node, proof = idx.mmr.generate_proof(idx.leaf_index_for(5))
    assert leaf_node == Data([4, parent_hash(4)])
    verify(idx.mmr.root(), leaf_node, proof)


def test_height_leaf_mapping():
    idx = BlockIndexer(MountainRange())
    index_blocks(idx, 10, 5)
    assert idx.leaf_index_for(10) == 0
    assert idx.leaf_index_for(14) == 4
    assert idx.height_for(3) == 13
    assert idx.next_height == 15
    with pytest.raises(LeafIndexOutOfRange):
        idx.leaf_index_for(15)
    with pytest.raises(LeafIndexOutOfRange):
        idx.leaf_index_for(9)
    with pytest.raises(LeafIndexOutOfRange):
        idx.height_for(5)


def test_heights_must_be_consecutive():
    idx = BlockIndexer(MountainRange())
    index_blocks(idx, 1, 3)
    with pytest.raises(BlockSequenceError) as ei:
        idx.on_block(5, parent_hash(4))
    assert ei.value.data == {"expected": 4, "got": 5}
    with pytest.raises(BlockSequenceError):
        idx.on_block(3, parent_hash(2))
    assert idx.mmr.leaf_count() == 3


def test_genesis_has_no_parent_leaf():
    idx = BlockIndexer(MountainRange())
    with pytest.raises(BlockSequenceError):
        idx.on_block(0, b"\x00" * 32)


def test_resume_requires_first_height():
    m = MountainRange()
    BlockIndexer(m).on_block(1, parent_hash(0))
    with pytest.raises(BlockSequenceError):
        BlockIndexer(m)
    resumed = BlockIndexer(m, first_height=1)
    assert resumed.on_block(2, parent_hash(1)) == 1


def test_extra_data_makes_compact_leaf():
    provider = ParentLeafProvider(extra=lambda h: {"height": h})
    idx = BlockIndexer(MountainRange(), provider)
    index_blocks(idx, 1, 4)
    leaf_node, proof = idx.mmr.generate_proof(2)
    assert isinstance(leaf_node.payload, CompactLeaf)
    assert leaf_node.payload.parts[0] == Data([2, parent_hash(2)])
    # disclose only the parent part
    verify(idx.mmr.root(), Data(leaf_node.payload.pruned(keep=[0])), proof)


def test_custom_provider():
    class HeightOnly:
        def leaf_data(self, height, parent_hash):
            return height

    assert isinstance(HeightOnly(), LeafProvider)
    idx = BlockIndexer(MountainRange(), HeightOnly())
    index_blocks(idx, 1, 2)
    leaf_node, _ = idx.mmr.generate_proof(1)
    assert leaf_node == Data(2)
