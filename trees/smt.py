"""
Sparse binary Merkle tree keyed by field elements (circomlib layout).

Used as the nullifier tree. Leaves are ``hash3(key, value, 1)``, internal
nodes ``hash2(left, right)``; key bits are consumed least significant
first and a leaf sits at the shallowest level where its key is unique.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from utils.errors import InputValidationError
from zk import hash2, hash3


def _key_bits(key: int) -> List[int]:
    return [(key >> i) & 1 for i in range(256)]


@dataclass
class SMTFindResult:
    found: bool
    siblings: List[int] = field(default_factory=list)
    found_value: int = 0
    not_found_key: int = 0
    not_found_value: int = 0
    is_old0: bool = False


@dataclass
class SMTInsertResult:
    old_root: int
    new_root: int
    siblings: List[int]
    old_key: int
    old_value: int
    is_old0: bool


class SparseMerkleTree:
    """Synchronous in-memory sparse Merkle tree"""

    def __init__(self):
        self.root = 0
        # leaf hash -> (1, key, value); node hash -> (left, right)
        self._db: Dict[int, Tuple[int, ...]] = {}

    @staticmethod
    def hash_leaf(key: int, value: int) -> int:
        return hash3([key, value, 1])

    @staticmethod
    def hash_node(left: int, right: int) -> int:
        return hash2([left, right])

    def find(self, key: int) -> SMTFindResult:
        bits = _key_bits(key)
        siblings: List[int] = []
        node = self.root
        level = 0
        while True:
            if node == 0:
                return SMTFindResult(found=False, siblings=siblings,
                                     not_found_key=key, is_old0=True)
            record = self._db[node]
            if len(record) == 3:
                if record[1] == key:
                    return SMTFindResult(found=True, siblings=siblings, found_value=record[2])
                return SMTFindResult(found=False, siblings=siblings,
                                     not_found_key=record[1],
                                     not_found_value=record[2])
            left, right = record
            if bits[level]:
                siblings.append(left)
                node = right
            else:
                siblings.append(right)
                node = left
            level += 1

    def insert(self, key: int, value: int) -> SMTInsertResult:
        """Insert a new key; an existing key is an InputValidationError"""
        res = self.find(key)
        if res.found:
            raise InputValidationError(f"key {key} already exists in the tree")

        old_root = self.root
        new_bits = _key_bits(key)
        siblings = list(res.siblings)
        added_one = False

        if not res.is_old0:
            old_bits = _key_bits(res.not_found_key)
            i = len(siblings)
            while old_bits[i] == new_bits[i]:
                siblings.append(0)
                i += 1
            siblings.append(self.hash_leaf(res.not_found_key, res.not_found_value))
            added_one = True

        node = self.hash_leaf(key, value)
        self._db[node] = (1, key, value)

        for i in reversed(range(len(siblings))):
            if new_bits[i]:
                parent = self.hash_node(siblings[i], node)
                self._db[parent] = (siblings[i], node)
            else:
                parent = self.hash_node(node, siblings[i])
                self._db[parent] = (node, siblings[i])
            node = parent

        if added_one:
            siblings.pop()
        while siblings and siblings[-1] == 0:
            siblings.pop()

        self.root = node
        return SMTInsertResult(
            old_root=old_root,
            new_root=node,
            siblings=siblings,
            old_key=res.not_found_key if not res.is_old0 else 0,
            old_value=res.not_found_value if not res.is_old0 else 0,
            is_old0=res.is_old0,
        )

    def copy(self) -> 'SparseMerkleTree':
        tree = SparseMerkleTree()
        tree.root = self.root
        tree._db = dict(self._db)
        return tree

    def __eq__(self, other):
        if not isinstance(other, SparseMerkleTree):
            return NotImplemented
        return self.root == other.root
