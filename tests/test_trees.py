"""Tests for the incremental tree, accumulator queue and sparse Merkle tree."""

import pytest

from trees import AccQueue, IncrementalTree, SparseMerkleTree, calc_depth_from_num_leaves
from utils.errors import InputValidationError, ProofPreconditionError, ProtocolViolation
from zk import NOTHING_UP_MY_SLEEVE, hash2, hash3, hash5


def build_tree(depth, zero, arity, leaves):
    tree = IncrementalTree(depth, zero, arity)
    for leaf in leaves:
        tree.insert(leaf)
    return tree


class TestIncrementalTree:
    def test_empty_root_is_zero_subtree(self):
        tree = IncrementalTree(2, 0, 5)
        level1 = hash5([0] * 5)
        assert tree.root == hash5([level1] * 5)

    def test_insert_returns_index_and_updates_root(self):
        tree = IncrementalTree(1, 0, 5)
        assert tree.insert(7) == 0
        assert tree.insert(8) == 1
        assert tree.root == hash5([7, 8, 0, 0, 0])

    def test_binary_tree(self):
        tree = build_tree(1, 0, 2, [3, 4])
        assert tree.root == hash2([3, 4])

    def test_from_leaves_matches_inserts(self):
        leaves = list(range(1, 13))
        assert IncrementalTree.from_leaves(2, 0, 5, None, leaves).root == build_tree(2, 0, 5, leaves).root

    def test_update(self):
        tree = build_tree(2, 0, 5, [1, 2, 3])
        tree.update(1, 20)
        assert tree.root == build_tree(2, 0, 5, [1, 20, 3]).root
        assert tree.get_leaf(1) == 20

    def test_update_before_insert_rejected(self):
        tree = build_tree(2, 0, 5, [1])
        with pytest.raises(InputValidationError):
            tree.update(3, 9)

    def test_full_tree_rejects_insert(self):
        tree = build_tree(1, 0, 2, [1, 2])
        with pytest.raises(InputValidationError):
            tree.insert(3)

    def test_merkle_path_verifies(self):
        tree = build_tree(3, 0, 5, list(range(1, 30)))
        for index in (0, 4, 5, 28, 100):
            path = tree.gen_merkle_path(index)
            assert IncrementalTree.verify_merkle_path(path, hash5)

    def test_tampered_path_fails(self):
        tree = build_tree(2, 0, 5, [1, 2, 3])
        path = tree.gen_merkle_path(1)
        path.leaf = 99
        assert not IncrementalTree.verify_merkle_path(path, hash5)

    def test_subroot_path(self):
        tree = build_tree(3, 0, 5, list(range(1, 8)))
        path = tree.gen_merkle_subroot_path(5, 10)
        assert path.leaf == hash5([6, 7, 0, 0, 0])
        assert IncrementalTree.verify_merkle_path(path, hash5)

    def test_subroot_path_past_last_leaf(self):
        tree = build_tree(2, 0, 5, [1, 2])
        path = tree.gen_merkle_subroot_path(10, 15)
        assert path.leaf == hash5([0] * 5)
        assert IncrementalTree.verify_merkle_path(path, hash5)

    def test_misaligned_subroot_path_rejected(self):
        tree = build_tree(2, 0, 5, [1, 2])
        with pytest.raises(InputValidationError):
            tree.gen_merkle_subroot_path(2, 7)

    def test_copy_is_independent(self):
        tree = build_tree(2, 0, 5, [1, 2])
        copied = tree.copy()
        copied.insert(3)
        assert copied.root != tree.root
        assert tree.next_index == 2


class TestAccQueue:
    @pytest.mark.parametrize("arity,sub_depth,depth", [(2, 2, 4), (5, 1, 3), (5, 2, 3)])
    @pytest.mark.parametrize("num_leaves", [1, 4, 5, 7, 26])
    def test_merged_root_equals_tree_root(self, arity, sub_depth, depth, num_leaves):
        if num_leaves > arity ** depth:
            pytest.skip("more leaves than the tree holds")
        leaves = [i + 1 for i in range(num_leaves)]
        queue = AccQueue(sub_depth, arity, 0)
        for leaf in leaves:
            queue.enqueue(leaf)
        queue.merge_sub_roots(0)
        root = queue.merge(depth)

        assert root == build_tree(depth, 0, arity, leaves).root
        assert queue.has_root(depth)
        assert queue.get_root(depth) == root

    def test_merge_matches_merge_direct(self):
        queue = AccQueue(1, 5, NOTHING_UP_MY_SLEEVE)
        for i in range(12):
            queue.enqueue(i)
        direct = queue.copy().merge_direct(3)
        queue.merge_sub_roots(0)
        assert queue.merge(3) == direct

    def test_fill_on_empty_subtree_gives_zero_root(self):
        queue = AccQueue(2, 5, 0)
        queue.fill()
        queue.merge_sub_roots(0)
        assert queue.merge(3) == IncrementalTree(3, 0, 5).root
        assert queue.get_sub_root(0) == queue.zeros[2]

    def test_progressive_merge(self):
        leaves = list(range(1, 40))
        queue = AccQueue(1, 5, 0)
        for leaf in leaves:
            queue.enqueue(leaf)

        queue.merge_sub_roots(2)
        assert not queue.sub_roots_merged
        while not queue.sub_roots_merged:
            queue.merge_sub_roots(2)
        assert queue.merge(3) == build_tree(3, 0, 5, leaves).root

    def test_new_leaf_invalidates_merge(self):
        queue = AccQueue(1, 5, 0)
        for leaf in range(1, 6):
            queue.enqueue(leaf)
        queue.merge_sub_roots(0)
        queue.merge(2)

        queue.enqueue(6)
        assert not queue.has_root(2)
        queue.merge_sub_roots(0)
        assert queue.merge(2) == build_tree(2, 0, 5, range(1, 7)).root

    def test_insert_sub_tree(self):
        queue = AccQueue(1, 5, 0)
        sub_root = hash5([1, 2, 3, 4, 5])
        queue.insert_sub_tree(sub_root)
        queue.merge_sub_roots(0)
        assert queue.merge(2) == build_tree(2, 0, 5, [1, 2, 3, 4, 5]).root

    def test_insert_sub_tree_requires_filled_subtree(self):
        queue = AccQueue(1, 5, 0)
        queue.enqueue(1)
        with pytest.raises(ProtocolViolation):
            queue.insert_sub_tree(123)

    def test_merge_empty_queue_rejected(self):
        with pytest.raises(ProtocolViolation):
            AccQueue(1, 5, 0).merge_sub_roots(0)

    def test_merge_before_sub_roots_rejected(self):
        queue = AccQueue(1, 5, 0)
        queue.enqueue(1)
        with pytest.raises(ProtocolViolation):
            queue.merge(2)

    def test_merge_depth_too_small_rejected(self):
        queue = AccQueue(1, 5, 0)
        for leaf in range(30):
            queue.enqueue(leaf)
        queue.merge_sub_roots(0)
        with pytest.raises(InputValidationError):
            queue.merge(2)

    def test_reading_unmerged_root_rejected(self):
        queue = AccQueue(1, 5, 0)
        with pytest.raises(ProofPreconditionError):
            queue.get_root(2)
        with pytest.raises(ProofPreconditionError):
            queue.get_sub_root(0)

    def test_unsupported_arity_rejected(self):
        with pytest.raises(InputValidationError):
            AccQueue(1, 3, 0)

    def test_calc_depth_from_num_leaves(self):
        assert calc_depth_from_num_leaves(5, 1) == 1
        assert calc_depth_from_num_leaves(5, 5) == 1
        assert calc_depth_from_num_leaves(5, 6) == 2
        assert calc_depth_from_num_leaves(2, 9) == 4


class TestSparseMerkleTree:
    def test_single_leaf_root(self):
        tree = SparseMerkleTree()
        tree.insert(0, 0)
        assert tree.root == hash3([0, 0, 1])

    def test_find_inserted_and_missing_keys(self):
        tree = SparseMerkleTree()
        tree.insert(0, 0)
        tree.insert(5, 1)
        tree.insert(12, 1)

        found = tree.find(5)
        assert found.found
        assert found.found_value == 1
        assert not tree.find(7).found

    def test_two_leaves_split_on_first_differing_bit(self):
        tree = SparseMerkleTree()
        tree.insert(2, 10)
        tree.insert(3, 20)
        # keys differ in bit 0: 2 goes left, 3 goes right
        assert tree.root == hash2([hash3([2, 10, 1]), hash3([3, 20, 1])])

    def test_root_is_independent_of_insertion_order(self):
        a = SparseMerkleTree()
        b = SparseMerkleTree()
        for key in (1, 4, 9, 16):
            a.insert(key, 1)
        for key in (16, 9, 4, 1):
            b.insert(key, 1)
        assert a.root == b.root

    def test_duplicate_key_rejected(self):
        tree = SparseMerkleTree()
        tree.insert(5, 1)
        with pytest.raises(InputValidationError):
            tree.insert(5, 1)

    def test_copy_is_independent(self):
        tree = SparseMerkleTree()
        tree.insert(1, 1)
        copied = tree.copy()
        copied.insert(2, 1)
        assert copied.root != tree.root
        assert not tree.find(2).found
