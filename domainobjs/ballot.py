"""
Per-signup ballots: a vote vector plus a replay-protection nonce.
"""

from typing import List

from trees import IncrementalTree
from utils.errors import InputValidationError
from zk import hash5, hash_left_right

VOTE_OPTION_TREE_ARITY = 5


class Ballot:
    def __init__(self, num_vote_options: int, vote_option_tree_depth: int):
        if VOTE_OPTION_TREE_ARITY ** vote_option_tree_depth < num_vote_options:
            raise InputValidationError(
                f"{num_vote_options} vote options do not fit a tree of depth {vote_option_tree_depth}")
        if num_vote_options <= 0:
            raise InputValidationError("a ballot needs at least one vote option")

        self.votes: List[int] = [0] * num_vote_options
        self.nonce = 0
        self.vote_option_tree_depth = vote_option_tree_depth

    def vote_option_tree(self) -> IncrementalTree:
        return IncrementalTree.from_leaves(
            self.vote_option_tree_depth, 0, VOTE_OPTION_TREE_ARITY, hash5, self.votes)

    def as_array(self) -> List[int]:
        return [self.nonce, self.vote_option_tree().root]

    def as_circuit_inputs(self) -> List[int]:
        return self.as_array()

    def hash(self) -> int:
        return hash_left_right(*self.as_array())

    def copy(self) -> 'Ballot':
        ballot = Ballot(len(self.votes), self.vote_option_tree_depth)
        ballot.votes = list(self.votes)
        ballot.nonce = self.nonce
        return ballot

    def __eq__(self, other):
        if not isinstance(other, Ballot):
            return NotImplemented
        return (self.votes == other.votes and self.nonce == other.nonce
                and self.vote_option_tree_depth == other.vote_option_tree_depth)

    def __repr__(self):
        return f"Ballot(nonce={self.nonce}, votes={self.votes})"

    @staticmethod
    def gen_blank_ballot(num_vote_options: int, vote_option_tree_depth: int) -> 'Ballot':
        return Ballot(num_vote_options, vote_option_tree_depth)
