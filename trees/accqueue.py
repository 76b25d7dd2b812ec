"""
Accumulator queue: batched front end for an incremental Merkle tree.

Leaves are buffered into subtrees of depth ``sub_depth``. Archived subtree
roots are later folded into a small tree (``merge_sub_roots``, possibly
across several calls) and padded with zeros to a main root of any depth
(``merge``). ``merge_direct`` rebuilds the same root from scratch and is
only meant as a reference.
"""

import logging
from typing import Dict, List

from utils.errors import InputValidationError, ProofPreconditionError, ProtocolViolation
from zk import hash2, hash5
from .incremental import IncrementalTree

logger = logging.getLogger(__name__)


def calc_depth_from_num_leaves(arity: int, num_leaves: int) -> int:
    """Smallest depth >= 1 whose capacity holds num_leaves"""
    depth = 1
    while arity ** depth < num_leaves:
        depth += 1
    return depth


class _LevelQueue:
    """Per-level buffers of (arity - 1) pending nodes"""

    def __init__(self, arity: int, num_levels: int):
        self.arity = arity
        self.levels: List[List[int]] = [[0] * (arity - 1) for _ in range(num_levels)]
        self.indices: List[int] = [0] * num_levels

    def reset(self):
        for level in self.levels:
            for i in range(len(level)):
                level[i] = 0
        for i in range(len(self.indices)):
            self.indices[i] = 0

    def copy(self) -> '_LevelQueue':
        q = _LevelQueue(self.arity, len(self.levels))
        q.levels = [list(level) for level in self.levels]
        q.indices = list(self.indices)
        return q


class AccQueue:
    """Accumulator queue over Poseidon hashes of arity 2 or 5"""

    MAX_DEPTH = 32

    def __init__(self, sub_depth: int, arity: int, zero_value: int):
        if arity not in (2, 5):
            raise InputValidationError("only binary and quinary trees are supported")
        if not 0 <= sub_depth <= self.MAX_DEPTH:
            raise InputValidationError(f"invalid sub depth {sub_depth}")

        self.sub_depth = sub_depth
        self.arity = arity
        self.zero_value = zero_value
        self.hash_func = hash2 if arity == 2 else hash5
        self.sub_tree_capacity = arity ** sub_depth

        self.zeros: List[int] = [zero_value]
        for _ in range(self.MAX_DEPTH):
            self.zeros.append(self.hash_func([self.zeros[-1]] * arity))

        self._leaf_queue = _LevelQueue(arity, sub_depth + 1)
        self._sub_root_queue = _LevelQueue(arity, self.MAX_DEPTH + 1)

        self.sub_roots: List[int] = []
        self.main_roots: Dict[int, int] = {}
        self.current_subtree_index = 0
        self.num_leaves = 0
        self.next_sr_index_to_queue = 0
        self.small_srt_root = 0
        self.small_srt_depth = 0
        self.sub_roots_merged = False

    # ------------------------------------------------------------------
    # leaf insertion
    # ------------------------------------------------------------------

    def _invalidate_merge(self):
        # any new leaf changes every derived root
        if not (self.sub_roots_merged or self.next_sr_index_to_queue or self.main_roots):
            return
        self.sub_roots_merged = False
        self.small_srt_root = 0
        self.small_srt_depth = 0
        self.next_sr_index_to_queue = 0
        self._sub_root_queue.reset()
        self.main_roots.clear()

    def _enqueue(self, leaf: int, level: int):
        queue = self._leaf_queue
        while True:
            n = queue.indices[level]
            if n != self.arity - 1:
                queue.levels[level][n] = leaf
                # the subroot slot never advances
                if level != self.sub_depth:
                    queue.indices[level] += 1
                return
            leaf = self.hash_func(queue.levels[level] + [leaf])
            queue.indices[level] = 0
            level += 1

    def enqueue(self, leaf: int) -> int:
        """Add a leaf and return its index"""
        leaf_index = self.num_leaves
        self._enqueue(leaf, 0)
        self.num_leaves += 1
        self._invalidate_merge()

        if self.num_leaves % self.sub_tree_capacity == 0:
            self.sub_roots.append(self._leaf_queue.levels[self.sub_depth][0])
            self._leaf_queue.levels[self.sub_depth][0] = 0
            self.current_subtree_index += 1

        return leaf_index

    def fill(self):
        """Zero-pad and archive the current subtree"""
        if self.num_leaves % self.sub_tree_capacity == 0:
            self.sub_roots.append(self.zeros[self.sub_depth])
        else:
            for level in range(self.sub_depth):
                n = self._leaf_queue.indices[level]
                if n != 0:
                    inputs = self._leaf_queue.levels[level][:n] + \
                        [self.zeros[level]] * (self.arity - n)
                    hashed = self.hash_func(inputs)
                    self._leaf_queue.indices[level] = 0
                    self._enqueue(hashed, level + 1)
            self.sub_roots.append(self._leaf_queue.levels[self.sub_depth][0])
            self._leaf_queue.reset()

        self.current_subtree_index += 1
        self.num_leaves = self.current_subtree_index * self.sub_tree_capacity
        self._invalidate_merge()

    def insert_sub_tree(self, sub_root: int):
        """Archive a precomputed full subtree root"""
        if self.num_leaves % self.sub_tree_capacity != 0:
            raise ProtocolViolation("the current subtree must be filled first")
        self.sub_roots.append(sub_root)
        self.current_subtree_index += 1
        self.num_leaves += self.sub_tree_capacity
        self._invalidate_merge()

    # ------------------------------------------------------------------
    # merging
    # ------------------------------------------------------------------

    def _queue_sub_root(self, leaf: int, level: int, max_depth: int):
        queue = self._sub_root_queue
        while level <= max_depth:
            n = queue.indices[level]
            if n != self.arity - 1:
                queue.levels[level][n] = leaf
                queue.indices[level] += 1
                return
            leaf = self.hash_func(queue.levels[level] + [leaf])
            queue.indices[level] = 0
            level += 1

    def merge_sub_roots(self, num_sr_queue_ops: int = 0):
        """
        Fold archived subtree roots into the small subroot tree.

        At most ``num_sr_queue_ops`` subroots are queued per call (0 means
        no limit); call repeatedly until ``sub_roots_merged`` is set.
        """
        if self.sub_roots_merged:
            raise ProtocolViolation("the subroots are already merged")
        if self.num_leaves == 0:
            raise ProtocolViolation("cannot merge an empty queue")

        if self.num_leaves % self.sub_tree_capacity > 0:
            self.fill()

        if self.current_subtree_index == 1:
            self.small_srt_root = self.sub_roots[0]
            self.small_srt_depth = 0
            self.sub_roots_merged = True
            return

        depth = calc_depth_from_num_leaves(self.arity, self.current_subtree_index)

        num_queue_ops = 0
        while self.next_sr_index_to_queue < self.current_subtree_index:
            if num_sr_queue_ops and num_queue_ops == num_sr_queue_ops:
                logger.debug(
                    f"Queued {self.next_sr_index_to_queue}/{self.current_subtree_index} subroots")
                return
            self._queue_sub_root(self.sub_roots[self.next_sr_index_to_queue], 0, depth)
            self.next_sr_index_to_queue += 1
            num_queue_ops += 1

        for _ in range(self.current_subtree_index, self.arity ** depth):
            self._queue_sub_root(self.zeros[self.sub_depth], 0, depth)

        self.small_srt_root = self._sub_root_queue.levels[depth][0]
        self.small_srt_depth = depth
        self.sub_roots_merged = True

    def merge(self, depth: int):
        """Pad the small subroot tree with zeros up to a main root of the given depth"""
        if not self.sub_roots_merged:
            raise ProtocolViolation("merge_sub_roots must complete before merge")
        min_depth = self.sub_depth + self.small_srt_depth
        if not min_depth <= depth <= self.MAX_DEPTH:
            raise InputValidationError(
                f"depth {depth} must be between {min_depth} and {self.MAX_DEPTH}")

        root = self.small_srt_root
        for level in range(min_depth, depth):
            root = self.hash_func([root] + [self.zeros[level]] * (self.arity - 1))
        self.main_roots[depth] = root
        return root

    def merge_direct(self, depth: int):
        """Rebuild the main root of the given depth directly from the subroots"""
        if self.num_leaves == 0:
            raise ProtocolViolation("cannot merge an empty queue")
        if depth < self.sub_depth:
            raise InputValidationError("depth must be at least the subtree depth")

        if self.num_leaves % self.sub_tree_capacity > 0:
            self.fill()

        tree = IncrementalTree.from_leaves(
            depth - self.sub_depth,
            self.zeros[self.sub_depth],
            self.arity,
            self.hash_func,
            self.sub_roots,
        )
        self.main_roots[depth] = tree.root
        return tree.root

    # ------------------------------------------------------------------
    # accessors
    # ------------------------------------------------------------------

    def has_root(self, depth: int) -> bool:
        return depth in self.main_roots

    def get_root(self, depth: int) -> int:
        if depth not in self.main_roots:
            raise ProofPreconditionError(f"no merged root at depth {depth}")
        return self.main_roots[depth]

    def get_sub_root(self, index: int) -> int:
        if not 0 <= index < len(self.sub_roots):
            raise ProofPreconditionError(f"subtree {index} has not been archived")
        return self.sub_roots[index]

    def get_sub_roots(self) -> List[int]:
        return list(self.sub_roots)

    def copy(self) -> 'AccQueue':
        new_queue = AccQueue.__new__(AccQueue)
        new_queue.__dict__.update(self.__dict__)
        new_queue.zeros = list(self.zeros)
        new_queue._leaf_queue = self._leaf_queue.copy()
        new_queue._sub_root_queue = self._sub_root_queue.copy()
        new_queue.sub_roots = list(self.sub_roots)
        new_queue.main_roots = dict(self.main_roots)
        return new_queue
