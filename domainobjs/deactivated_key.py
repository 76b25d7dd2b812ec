"""
Leaves of the deactivated-keys tree.
"""

from dataclasses import dataclass
from typing import List

from zk import Point, gen_random_salt, hash3, hash5
from .keys import Keypair, PublicKey
from .state_leaf import BLANK_LEAF_PUB_KEY


@dataclass
class DeactivatedKeyLeaf:
    pub_key: PublicKey
    c1: Point
    c2: Point
    salt: int

    def key_hash(self) -> int:
        return hash3([*self.pub_key.as_array(), self.salt])

    def as_array(self) -> List[int]:
        return [self.key_hash(), *self.c1, *self.c2]

    def as_circuit_inputs(self) -> List[int]:
        return self.as_array()

    def hash(self) -> int:
        return hash5(self.as_array())

    def copy(self) -> 'DeactivatedKeyLeaf':
        return DeactivatedKeyLeaf(self.pub_key.copy(), tuple(self.c1), tuple(self.c2), self.salt)

    @staticmethod
    def gen_blank_leaf() -> 'DeactivatedKeyLeaf':
        return DeactivatedKeyLeaf(BLANK_LEAF_PUB_KEY, (0, 0), (0, 0), 0)

    @staticmethod
    def gen_random_leaf() -> 'DeactivatedKeyLeaf':
        return DeactivatedKeyLeaf(Keypair().pub_key, (0, 0), (0, 0), gen_random_salt())
