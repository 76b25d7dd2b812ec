"""
Append-only fixed-arity Merkle tree with lazily evaluated zero subtrees.

Only non-zero nodes are stored, so paths can be generated for positions
beyond the last inserted leaf.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from utils.errors import InputValidationError
from zk import hash2, hash5, hash_n

HashFunc = Callable[[Sequence[int]], int]


def default_hash_func(arity: int) -> HashFunc:
    if arity == 2:
        return hash2
    if arity == 5:
        return hash5
    return lambda elements: hash_n(arity, elements)


@dataclass
class MerklePath:
    path_elements: List[List[int]]
    indices: List[int]
    depth: int
    root: int
    leaf: int


class IncrementalTree:
    """Incremental quinary (or n-ary) Merkle tree"""

    def __init__(self, depth: int, zero_value: int, arity: int = 5,
                 hash_func: Optional[HashFunc] = None):
        if depth < 0 or arity < 2:
            raise InputValidationError("invalid tree shape")

        self.depth = depth
        self.zero_value = zero_value
        self.arity = arity
        self.hash_func = hash_func or default_hash_func(arity)
        self.capacity = arity ** depth
        self.next_index = 0

        self.zeros: List[int] = [zero_value]
        for _ in range(depth):
            self.zeros.append(self.hash_func([self.zeros[-1]] * arity))

        # _nodes[level][index]; level 0 holds leaves, level depth the root
        self._nodes: List[Dict[int, int]] = [{} for _ in range(depth + 1)]
        self.root = self.zeros[depth]

    @classmethod
    def from_leaves(cls, depth: int, zero_value: int, arity: int,
                    hash_func: Optional[HashFunc], leaves: Sequence[int]) -> 'IncrementalTree':
        """Build a tree in one pass, hashing every internal node once"""
        tree = cls(depth, zero_value, arity, hash_func)
        if len(leaves) > tree.capacity:
            raise InputValidationError(
                f"{len(leaves)} leaves exceed the tree capacity {tree.capacity}")

        tree._nodes[0] = dict(enumerate(leaves))
        for level in range(depth):
            parents = sorted({i // arity for i in tree._nodes[level]})
            for parent in parents:
                tree._nodes[level + 1][parent] = tree._hash_children(level, parent)
        tree.next_index = len(leaves)
        tree.root = tree._node(depth, 0)
        return tree

    def _node(self, level: int, index: int) -> int:
        return self._nodes[level].get(index, self.zeros[level])

    def _hash_children(self, level: int, parent: int) -> int:
        start = parent * self.arity
        return self.hash_func([self._node(level, start + i) for i in range(self.arity)])

    def _recompute_path(self, index: int):
        for level in range(self.depth):
            index //= self.arity
            self._nodes[level + 1][index] = self._hash_children(level, index)
        self.root = self._node(self.depth, 0)

    def insert(self, leaf: int) -> int:
        """Append a leaf and return its index"""
        if self.next_index >= self.capacity:
            raise InputValidationError("the tree is full")
        index = self.next_index
        self._nodes[0][index] = leaf
        self._recompute_path(index)
        self.next_index += 1
        return index

    def update(self, index: int, leaf: int):
        if not 0 <= index < self.next_index:
            raise InputValidationError(f"cannot update leaf {index}: not inserted yet")
        self._nodes[0][index] = leaf
        self._recompute_path(index)

    def get_leaf(self, index: int) -> int:
        if not 0 <= index < self.capacity:
            raise InputValidationError(f"leaf index {index} is out of range")
        return self._node(0, index)

    def _path_from(self, level: int, index: int) -> Tuple[List[List[int]], List[int]]:
        path_elements: List[List[int]] = []
        indices: List[int] = []
        for lvl in range(level, self.depth):
            position = index % self.arity
            start = index - position
            path_elements.append([self._node(lvl, start + i)
                                  for i in range(self.arity) if i != position])
            indices.append(position)
            index //= self.arity
        return path_elements, indices

    def gen_merkle_path(self, index: int) -> MerklePath:
        if not 0 <= index < self.capacity:
            raise InputValidationError(
                f"leaf index {index} is out of range for capacity {self.capacity}")
        path_elements, indices = self._path_from(0, index)
        return MerklePath(path_elements, indices, self.depth, self.root, self._node(0, index))

    def gen_merkle_subroot_path(self, start_index: int, end_index: int) -> MerklePath:
        """Path from the root of the aligned subtree spanning [start, end) to the root"""
        span = end_index - start_index
        if span <= 0 or end_index > self.capacity:
            raise InputValidationError(f"invalid range [{start_index}, {end_index})")

        level = 0
        width = 1
        while width < span:
            width *= self.arity
            level += 1
        if width != span or start_index % span:
            raise InputValidationError(
                f"range [{start_index}, {end_index}) is not aligned to a subtree")

        subroot_index = start_index // span
        path_elements, indices = self._path_from(level, subroot_index)
        return MerklePath(path_elements, indices, self.depth - level, self.root,
                          self._node(level, subroot_index))

    @staticmethod
    def verify_merkle_path(path: MerklePath, hash_func: HashFunc) -> bool:
        current = path.leaf
        for siblings, position in zip(path.path_elements, path.indices):
            level = list(siblings)
            level.insert(position, current)
            current = hash_func(level)
        return current == path.root

    def copy(self) -> 'IncrementalTree':
        new_tree = IncrementalTree.__new__(IncrementalTree)
        new_tree.depth = self.depth
        new_tree.zero_value = self.zero_value
        new_tree.arity = self.arity
        new_tree.hash_func = self.hash_func
        new_tree.capacity = self.capacity
        new_tree.next_index = self.next_index
        new_tree.zeros = list(self.zeros)
        new_tree._nodes = [dict(level) for level in self._nodes]
        new_tree.root = self.root
        return new_tree

    def __eq__(self, other):
        if not isinstance(other, IncrementalTree):
            return NotImplemented
        return (self.depth == other.depth and self.arity == other.arity
                and self.zero_value == other.zero_value
                and self.next_index == other.next_index
                and self.root == other.root)
