"""
Signup leaves of the state tree.
"""

from dataclasses import dataclass
from typing import List

from zk import gen_random_babyjub_value, hash4
from .keys import Keypair, PublicKey

# First Pedersen base point of circomlib; nobody knows its private key.
BLANK_LEAF_PUB_KEY = PublicKey((
    10457101036533406547632367118273992217979173478358440826365724437999023779287,
    19824078218392094440610104313265183977899662750282163392862422243483260492317,
))


@dataclass
class StateLeaf:
    pub_key: PublicKey
    voice_credit_balance: int
    timestamp: int

    def as_array(self) -> List[int]:
        return [*self.pub_key.as_array(), self.voice_credit_balance, self.timestamp]

    def as_circuit_inputs(self) -> List[int]:
        return self.as_array()

    def hash(self) -> int:
        return hash4(self.as_array())

    def copy(self) -> 'StateLeaf':
        return StateLeaf(self.pub_key.copy(), self.voice_credit_balance, self.timestamp)

    @staticmethod
    def gen_blank_leaf() -> 'StateLeaf':
        return StateLeaf(BLANK_LEAF_PUB_KEY, 0, 0)

    @staticmethod
    def gen_random_leaf() -> 'StateLeaf':
        return StateLeaf(Keypair().pub_key, gen_random_babyjub_value(), 0)
