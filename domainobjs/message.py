"""
Encrypted messages published to a poll.
"""

from enum import IntEnum
from typing import List, Sequence

from utils.errors import InputValidationError
from zk import hash13
from .keys import PublicKey


class MessageType(IntEnum):
    """Message type tags"""
    VOTE = 1
    TOPUP = 2
    KEYGEN = 3


class Message:
    DATA_LENGTH = 10

    def __init__(self, msg_type: int, data: Sequence[int]):
        if len(data) != self.DATA_LENGTH:
            raise InputValidationError(
                f"message data must have {self.DATA_LENGTH} elements, got {len(data)}")
        self.msg_type = int(msg_type)
        self.data: List[int] = [int(d) for d in data]

    def as_array(self) -> List[int]:
        return [self.msg_type, *self.data]

    def as_circuit_inputs(self) -> List[int]:
        return self.as_array()

    def hash(self, enc_pub_key: PublicKey) -> int:
        return hash13([*self.as_array(), *enc_pub_key.as_array()])

    def copy(self) -> 'Message':
        return Message(self.msg_type, self.data)

    def __eq__(self, other):
        if not isinstance(other, Message):
            return NotImplemented
        return self.msg_type == other.msg_type and self.data == other.data

    def __repr__(self):
        return f"Message(type={self.msg_type}, data={self.data})"

    @staticmethod
    def padding(msg_type: int = MessageType.VOTE) -> 'Message':
        return Message(msg_type, [0] * Message.DATA_LENGTH)
