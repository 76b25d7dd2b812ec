"""Domain value types: keys, signup leaves, ballots, messages and commands."""

from .keys import PrivateKey, PublicKey, Keypair
from .state_leaf import StateLeaf, BLANK_LEAF_PUB_KEY
from .ballot import Ballot, VOTE_OPTION_TREE_ARITY
from .message import Message, MessageType
from .commands import Command, VoteCommand, TopupCommand, KeyGenCommand
from .deactivated_key import DeactivatedKeyLeaf

__all__ = [
    'PrivateKey',
    'PublicKey',
    'Keypair',
    'StateLeaf',
    'BLANK_LEAF_PUB_KEY',
    'Ballot',
    'VOTE_OPTION_TREE_ARITY',
    'Message',
    'MessageType',
    'Command',
    'VoteCommand',
    'TopupCommand',
    'KeyGenCommand',
    'DeactivatedKeyLeaf',
]
