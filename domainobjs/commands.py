"""
Decrypted command payloads.

``Command`` is a closed union of VoteCommand, TopupCommand and
KeyGenCommand; each maps to exactly one MessageType.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from utils.errors import InputValidationError
from zk import Point, Signature, decrypt, encrypt, gen_random_salt, hash4, sign, verify_signature
from .keys import PrivateKey, PublicKey
from .message import Message, MessageType
from .state_leaf import BLANK_LEAF_PUB_KEY

SHARED_KEY_NONCE = 0
LIMIT_50_BITS = 1 << 50


def _extract_50_bits(value: int, position: int) -> int:
    return (value >> position) & (LIMIT_50_BITS - 1)


@dataclass
class VoteCommand:
    """Vote (or key change) signed by the signup's current key"""

    state_index: int
    new_pub_key: PublicKey
    vote_option_index: int
    new_vote_weight: int
    nonce: int
    poll_id: int
    salt: int = field(default_factory=gen_random_salt)

    cmd_type = MessageType.VOTE

    PLAINTEXT_LENGTH = 7

    def __post_init__(self):
        for name in ('state_index', 'vote_option_index', 'new_vote_weight', 'nonce', 'poll_id'):
            value = getattr(self, name)
            if not 0 <= value < LIMIT_50_BITS:
                raise InputValidationError(f"{name} must fit in 50 bits")

    def packed(self) -> int:
        """state index, vote option, weight, nonce and poll id in 50-bit slots"""
        return (self.state_index
                + (self.vote_option_index << 50)
                + (self.new_vote_weight << 100)
                + (self.nonce << 150)
                + (self.poll_id << 200))

    def as_array(self) -> List[int]:
        return [self.packed(), *self.new_pub_key.as_array(), self.salt]

    def as_circuit_inputs(self) -> List[int]:
        return self.as_array()

    def hash(self) -> int:
        return hash4(self.as_array())

    def sign(self, priv_key: PrivateKey) -> Signature:
        return sign(priv_key.raw, self.hash())

    def verify_signature(self, signature: Optional[Signature], pub_key: PublicKey) -> bool:
        return verify_signature(self.hash(), signature, pub_key.raw)

    def encrypt(self, signature: Signature, shared_key: Point) -> Message:
        plaintext = [*self.as_array(), signature.r8[0], signature.r8[1], signature.s]
        return Message(MessageType.VOTE, encrypt(plaintext, shared_key, SHARED_KEY_NONCE))

    @classmethod
    def decrypt(cls, message: Message, shared_key: Point) -> Tuple['VoteCommand', Signature]:
        """Raises DecryptionError when the ciphertext does not authenticate"""
        decrypted = decrypt(message.data, shared_key, SHARED_KEY_NONCE, cls.PLAINTEXT_LENGTH)
        packed = decrypted[0]
        command = cls(
            state_index=_extract_50_bits(packed, 0),
            new_pub_key=PublicKey((decrypted[1], decrypted[2])),
            vote_option_index=_extract_50_bits(packed, 50),
            new_vote_weight=_extract_50_bits(packed, 100),
            nonce=_extract_50_bits(packed, 150),
            poll_id=_extract_50_bits(packed, 200),
            salt=decrypted[3],
        )
        signature = Signature(r8=(decrypted[4], decrypted[5]), s=decrypted[6])
        return command, signature

    def copy(self) -> 'VoteCommand':
        return VoteCommand(self.state_index, self.new_pub_key.copy(), self.vote_option_index,
                           self.new_vote_weight, self.nonce, self.poll_id, self.salt)

    @classmethod
    def placeholder(cls) -> 'VoteCommand':
        """Canonical no-op stand-in for a message that fails to decrypt"""
        return cls(0, BLANK_LEAF_PUB_KEY, 0, 0, 0, 0, 0)


@dataclass
class TopupCommand:
    state_index: int
    amount: int
    poll_id: int

    cmd_type = MessageType.TOPUP

    def copy(self) -> 'TopupCommand':
        return TopupCommand(self.state_index, self.amount, self.poll_id)


@dataclass
class KeyGenCommand:
    """New key registration backed by a rerandomized deactivation ciphertext"""

    new_pub_key: PublicKey
    new_credit_balance: int
    nullifier: int
    c1r: Point
    c2r: Point
    poll_id: int
    new_state_index: int = 0

    cmd_type = MessageType.KEYGEN

    PLAINTEXT_LENGTH = 9

    def as_array(self) -> List[int]:
        return [
            *self.new_pub_key.as_array(),
            self.new_credit_balance,
            self.nullifier,
            *self.c1r,
            *self.c2r,
            self.poll_id,
        ]

    def as_circuit_inputs(self) -> List[int]:
        return self.as_array()

    def encrypt(self, shared_key: Point) -> Message:
        return Message(MessageType.KEYGEN, encrypt(self.as_array(), shared_key, SHARED_KEY_NONCE))

    @classmethod
    def decrypt(cls, message: Message, shared_key: Point) -> 'KeyGenCommand':
        d = decrypt(message.data, shared_key, SHARED_KEY_NONCE, cls.PLAINTEXT_LENGTH)
        return cls(
            new_pub_key=PublicKey((d[0], d[1])),
            new_credit_balance=d[2],
            nullifier=d[3],
            c1r=(d[4], d[5]),
            c2r=(d[6], d[7]),
            poll_id=d[8],
        )

    def copy(self) -> 'KeyGenCommand':
        return KeyGenCommand(self.new_pub_key.copy(), self.new_credit_balance, self.nullifier,
                             tuple(self.c1r), tuple(self.c2r), self.poll_id, self.new_state_index)

    @classmethod
    def placeholder(cls) -> 'KeyGenCommand':
        return cls(BLANK_LEAF_PUB_KEY, 0, 0, (0, 0), (0, 0), 0, 0)


Command = Union[VoteCommand, TopupCommand, KeyGenCommand]
