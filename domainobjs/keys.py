"""
Key types for users and the coordinator.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from utils.errors import InputValidationError
from zk import (
    SNARK_FIELD_SIZE,
    format_priv_key_for_babyjub,
    gen_ecdh_shared_key,
    gen_priv_key,
    gen_pub_key,
    hash_left_right,
)


@dataclass(frozen=True)
class PrivateKey:
    raw: int

    def __post_init__(self):
        if not 0 <= self.raw < SNARK_FIELD_SIZE:
            raise InputValidationError("private key must be a field element")

    def as_circuit_inputs(self) -> int:
        return format_priv_key_for_babyjub(self.raw)

    def copy(self) -> 'PrivateKey':
        return PrivateKey(self.raw)


@dataclass(frozen=True)
class PublicKey:
    raw: Tuple[int, int]

    def __post_init__(self):
        raw = tuple(int(v) for v in self.raw)
        if len(raw) != 2:
            raise InputValidationError("public key must have two coordinates")
        if not all(0 <= v < SNARK_FIELD_SIZE for v in raw):
            raise InputValidationError("public key coordinates must be field elements")
        object.__setattr__(self, 'raw', raw)

    @property
    def x(self) -> int:
        return self.raw[0]

    @property
    def y(self) -> int:
        return self.raw[1]

    def as_array(self) -> List[int]:
        return [self.raw[0], self.raw[1]]

    def as_circuit_inputs(self) -> List[int]:
        return self.as_array()

    def hash(self) -> int:
        return hash_left_right(self.raw[0], self.raw[1])

    def copy(self) -> 'PublicKey':
        return PublicKey(self.raw)


class Keypair:
    """A private key with its derived public key"""

    def __init__(self, priv_key: Optional[PrivateKey] = None):
        if priv_key is None:
            priv_key = PrivateKey(gen_priv_key())
        self.priv_key = priv_key
        self.pub_key = PublicKey(gen_pub_key(priv_key.raw))

    @staticmethod
    def gen_ecdh_shared_key(priv_key: PrivateKey, pub_key: PublicKey) -> Tuple[int, int]:
        return gen_ecdh_shared_key(priv_key.raw, pub_key.raw)

    def copy(self) -> 'Keypair':
        return Keypair(self.priv_key.copy())

    def __eq__(self, other):
        if not isinstance(other, Keypair):
            return NotImplemented
        return self.priv_key == other.priv_key and self.pub_key == other.pub_key

    def __repr__(self):
        return f"Keypair(pub_key={self.pub_key.raw})"
