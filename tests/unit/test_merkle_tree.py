"""Tests for Merkle Tree implementation."""

import pytest

from zkpool.core.merkle_tree import MerkleTree
from zkpool.utils.hash import ZERO_VALUE
from zkpool.exceptions import IndexOutOfRangeError, TreeFullError


@pytest.fixture
def merkle_tree(hasher):
    """Create a test Merkle tree."""
    return MerkleTree(tree_height=8, hasher=hasher)


class TestMerkleTreeInitialization:
    """Tests for tree initialization."""

    def test_tree_creation_default(self):
        """Test creating tree with default height."""
        tree = MerkleTree()
        assert tree.height == 20
        assert len(tree) == 0

    def test_tree_creation_custom_height(self, hasher):
        for height in [1, 4, 8]:
            tree = MerkleTree(tree_height=height, hasher=hasher)
            assert tree.height == height
            assert tree.capacity == 2 ** height

    def test_tree_invalid_height(self):
        """Test that invalid heights raise errors."""
        with pytest.raises(ValueError):
            MerkleTree(tree_height=0)
        with pytest.raises(ValueError):
            MerkleTree(tree_height=-1)
        with pytest.raises(ValueError):
            MerkleTree(tree_height=100)

    def test_empty_root_is_zero_subtree(self, hasher):
        tree = MerkleTree(tree_height=2, hasher=hasher)
        level1 = hasher.hash(ZERO_VALUE, ZERO_VALUE)
        assert tree.root == hasher.hash(level1, level1)
        assert tree.zeros[0] == ZERO_VALUE


class TestMerkleTreeInsertion:
    """Tests for leaf insertion."""

    def test_insert_returns_sequential_indices(self, merkle_tree):
        assert [merkle_tree.insert(v) for v in (5, 6, 7)] == [0, 1, 2]
        assert merkle_tree.leaves == [5, 6, 7]

    def test_root_changes_on_insert(self, merkle_tree):
        before = merkle_tree.root
        merkle_tree.insert(42)
        assert merkle_tree.root != before

    def test_root_matches_manual_computation(self, hasher):
        tree = MerkleTree(tree_height=2, leaves=[1, 2, 3], hasher=hasher)
        left = hasher.hash(1, 2)
        right = hasher.hash(3, ZERO_VALUE)
        assert tree.root == hasher.hash(left, right)

    def test_root_history(self, merkle_tree):
        empty = merkle_tree.root
        merkle_tree.insert(1)
        one = merkle_tree.root
        merkle_tree.insert(2)
        assert merkle_tree.root_history == [empty, one, merkle_tree.root]
        assert merkle_tree.root_at(1) == one

    def test_root_at_out_of_range(self, merkle_tree):
        with pytest.raises(IndexOutOfRangeError):
            merkle_tree.root_at(1)

    def test_tree_full(self, hasher):
        tree = MerkleTree(tree_height=2, leaves=[1, 2, 3, 4], hasher=hasher)
        with pytest.raises(TreeFullError):
            tree.insert(5)
        with pytest.raises(TreeFullError):
            tree.insertion_path(5)

    def test_insert_rejects_non_field_values(self, merkle_tree):
        with pytest.raises(ValueError):
            merkle_tree.insert(-1)
        with pytest.raises(ValueError):
            merkle_tree.insert(b"\x00" * 32)


class TestMerklePaths:
    """Tests for authentication paths."""

    def test_every_path_verifies(self, merkle_tree, hasher):
        merkle_tree.bulk_insert(range(1, 12))
        for index in range(11):
            path = merkle_tree.path(index)
            assert path.root == merkle_tree.root
            assert path.leaf == index + 1
            assert path.verify(hasher)

    def test_path_indices_encode_position(self, merkle_tree):
        merkle_tree.bulk_insert(range(1, 7))
        path = merkle_tree.path(5)
        assert path.path_indices == 5
        assert len(path.path_elements) == merkle_tree.height

    def test_wrong_leaf_fails(self, merkle_tree, hasher):
        merkle_tree.bulk_insert([10, 20])
        path = merkle_tree.path(0)
        assert path.compute_root(hasher, leaf=99) != merkle_tree.root

    def test_invalid_index(self, merkle_tree):
        merkle_tree.insert(1)
        with pytest.raises(IndexOutOfRangeError):
            merkle_tree.path(1)
        with pytest.raises(IndexOutOfRangeError):
            merkle_tree.path(-1)

    def test_insertion_path_predicts_root(self, merkle_tree):
        merkle_tree.bulk_insert([1, 2, 3])
        predicted = merkle_tree.insertion_path(77)
        assert len(merkle_tree) == 3
        merkle_tree.insert(77)
        assert predicted.root == merkle_tree.root
        assert predicted.index == 3

    def test_insertion_siblings_remembered(self, merkle_tree):
        seen = []
        for leaf in range(1, 12):
            seen.append(merkle_tree.insertion_path(leaf).path_elements)
            merkle_tree.insert(leaf)
        for index, siblings in enumerate(seen):
            assert merkle_tree.insertion_siblings(index) == tuple(siblings)

    def test_insertion_siblings_out_of_range(self, merkle_tree):
        merkle_tree.bulk_insert([1, 2])
        assert merkle_tree.insertion_siblings(2) == merkle_tree.insertion_path(3).path_elements
        with pytest.raises(IndexOutOfRangeError):
            merkle_tree.insertion_siblings(3)
        with pytest.raises(IndexOutOfRangeError):
            merkle_tree.insertion_siblings(-1)

    def test_copy_is_independent(self, merkle_tree):
        merkle_tree.insert(1)
        clone = merkle_tree.copy()
        clone.insert(2)
        assert len(merkle_tree) == 1
        assert clone.root != merkle_tree.root

    def test_index_of(self, merkle_tree):
        merkle_tree.bulk_insert([4, 5])
        assert merkle_tree.index_of(5) == 1
        assert merkle_tree.index_of(6) is None

    def test_get_state(self, merkle_tree):
        merkle_tree.insert(9)
        state = merkle_tree.get_state()
        assert state["num_leaves"] == 1
        assert state["root"] == merkle_tree.root
