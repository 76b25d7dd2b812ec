"""
BN254 scalar field helpers shared by every primitive in the engine.
"""

import hashlib
import secrets
from functools import lru_cache
from typing import List, Sequence

import galois
import numpy as np

from utils.errors import InputValidationError

# BN254 scalar field prime
SNARK_FIELD_SIZE = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# keccak256("Maci") % SNARK_FIELD_SIZE
NOTHING_UP_MY_SLEEVE = 8370432830353022751713833565135785980866757267633941821328460903436894336785

# Smallest value accepted by gen_random_babyjub_value; removes modulo bias
# when reducing a 256-bit integer into the field.
_RANDOM_MIN = 6350874878119819312338956282401532410528162663560392320966563075034087161851


class SnarkField:
    """Field arithmetic over the SNARK scalar field using galois"""

    def __init__(self):
        self.prime = SNARK_FIELD_SIZE
        # p - 1 is not factored; 5 is a known generator of the BN254 scalar field
        self.field = galois.GF(self.prime, primitive_element=5, verify=False)

    def inverse(self, a: int) -> int:
        if a % self.prime == 0:
            raise InputValidationError("zero has no multiplicative inverse")
        return int(np.reciprocal(self.field(a % self.prime)))

    def cauchy_matrix(self, xs: Sequence[int], ys: Sequence[int]) -> List[List[int]]:
        """M[i][j] = 1 / (xs[i] + ys[j])"""
        x = self.field([v % self.prime for v in xs])
        y = self.field([v % self.prime for v in ys])
        sums = x[:, np.newaxis] + y[np.newaxis, :]
        if np.any(sums == 0):
            raise InputValidationError("cauchy matrix is singular")
        inverted = np.reciprocal(sums)
        return [[int(v) for v in row] for row in inverted]


@lru_cache(maxsize=1)
def snark_field() -> SnarkField:
    return SnarkField()


def is_field_element(value: int) -> bool:
    return isinstance(value, int) and 0 <= value < SNARK_FIELD_SIZE


def validate_field_elements(values: Sequence[int], what: str = "value"):
    """Raise InputValidationError unless every value is a field element"""
    for v in values:
        if not is_field_element(v):
            raise InputValidationError(f"{what} {v!r} is not a valid field element")


def gen_random_babyjub_value() -> int:
    """Uniformly random field element below the curve's subgroup order bound"""
    while True:
        rand = int.from_bytes(secrets.token_bytes(32), 'big')
        if rand >= _RANDOM_MIN:
            break
    return rand % SNARK_FIELD_SIZE


def gen_random_salt() -> int:
    return gen_random_babyjub_value()


def sha256_hash(values: Sequence[int]) -> int:
    """SHA-256 over 32-byte big-endian words, reduced into the field"""
    data = b''.join(int(v).to_bytes(32, 'big') for v in values)
    return int.from_bytes(hashlib.sha256(data).digest(), 'big') % SNARK_FIELD_SIZE
