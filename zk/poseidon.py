"""
Circom-compatible Poseidon hash and Poseidon sponge encryption.

Round constants and MDS matrices are generated with the Grain LFSR
procedure of the Poseidon reference implementation and cached per state
width.
"""

import logging
from functools import lru_cache
from typing import List, Sequence, Tuple

from utils.errors import DecryptionError, InputValidationError
from .field import SNARK_FIELD_SIZE, snark_field

logger = logging.getLogger(__name__)

# ============================================================================
# POSEIDON PERMUTATION
# ============================================================================


class GrainLFSR:
    """80-bit self-shrinking Grain LFSR used to derive Poseidon parameters"""

    STATE_BITS = 80

    def __init__(self, field_bits: int, t: int, full_rounds: int, partial_rounds: int):
        # field = 1 (prime field), sbox = 0 (x^alpha)
        fields = [(1, 2), (0, 4), (field_bits, 12), (t, 12),
                  (full_rounds, 10), (partial_rounds, 10)]
        bits: List[int] = []
        for value, width in fields:
            bits.extend((value >> (width - 1 - i)) & 1 for i in range(width))
        bits.extend([1] * 30)

        # bit i of the register is bits[i]; new bits enter at position 79
        self._state = sum(bit << i for i, bit in enumerate(bits))
        for _ in range(160):
            self._clock()

    def _clock(self) -> int:
        s = self._state
        new_bit = ((s >> 62) ^ (s >> 51) ^ (s >> 38) ^
                   (s >> 23) ^ (s >> 13) ^ s) & 1
        self._state = (s >> 1) | (new_bit << (self.STATE_BITS - 1))
        return new_bit

    def next_bit(self) -> int:
        bit = self._clock()
        while bit == 0:
            self._clock()
            bit = self._clock()
        return self._clock()

    def random_bits(self, n: int) -> int:
        value = 0
        for _ in range(n):
            value = (value << 1) | self.next_bit()
        return value


class Poseidon:
    """Poseidon over the BN254 scalar field with x^5 S-box"""

    PRIME = SNARK_FIELD_SIZE
    FIELD_BITS = 254
    FULL_ROUNDS = 8
    # indexed by t - 2
    PARTIAL_ROUNDS = [56, 57, 56, 60, 60]
    MAX_INPUTS = len(PARTIAL_ROUNDS)

    @staticmethod
    @lru_cache(maxsize=None)
    def parameters(t: int) -> Tuple[Tuple[int, ...], Tuple[Tuple[int, ...], ...]]:
        """Round constants and MDS matrix for state width t"""
        if not 2 <= t <= Poseidon.MAX_INPUTS + 1:
            raise InputValidationError(f"unsupported Poseidon width {t}")

        p = Poseidon.PRIME
        full_rounds = Poseidon.FULL_ROUNDS
        partial_rounds = Poseidon.PARTIAL_ROUNDS[t - 2]
        grain = GrainLFSR(Poseidon.FIELD_BITS, t, full_rounds, partial_rounds)

        constants = []
        for _ in range((full_rounds + partial_rounds) * t):
            c = grain.random_bits(Poseidon.FIELD_BITS)
            while c >= p:
                c = grain.random_bits(Poseidon.FIELD_BITS)
            constants.append(c)

        while True:
            rand = [grain.random_bits(Poseidon.FIELD_BITS) % p for _ in range(2 * t)]
            if len(set(rand)) == 2 * t:
                break
        mds = snark_field().cauchy_matrix(rand[:t], rand[t:])

        logger.debug(f"Generated Poseidon parameters for t={t}")
        return tuple(constants), tuple(tuple(row) for row in mds)

    @staticmethod
    def ark(state: List[int], constants: Sequence[int], offset: int) -> List[int]:
        p = Poseidon.PRIME
        return [(s + constants[offset + i]) % p for i, s in enumerate(state)]

    @staticmethod
    def sbox(state: List[int], full: bool) -> List[int]:
        p = Poseidon.PRIME
        if full:
            return [pow(s, 5, p) for s in state]
        return [pow(state[0], 5, p)] + state[1:]

    @staticmethod
    def mix(state: List[int], mds: Sequence[Sequence[int]]) -> List[int]:
        p = Poseidon.PRIME
        return [sum(m * s for m, s in zip(row, state)) % p for row in mds]

    @staticmethod
    def permute(state: Sequence[int]) -> List[int]:
        """Full Poseidon permutation of a state of width 2..6"""
        t = len(state)
        constants, mds = Poseidon.parameters(t)
        half = Poseidon.FULL_ROUNDS // 2
        partial_rounds = Poseidon.PARTIAL_ROUNDS[t - 2]

        current = [s % Poseidon.PRIME for s in state]
        for r in range(Poseidon.FULL_ROUNDS + partial_rounds):
            current = Poseidon.ark(current, constants, r * t)
            current = Poseidon.sbox(current, r < half or r >= half + partial_rounds)
            current = Poseidon.mix(current, mds)
        return current

    @staticmethod
    def hash(inputs: Sequence[int]) -> int:
        if not 1 <= len(inputs) <= Poseidon.MAX_INPUTS:
            raise InputValidationError(
                f"Poseidon accepts 1 to {Poseidon.MAX_INPUTS} inputs, got {len(inputs)}")
        return Poseidon.permute([0] + list(inputs))[0]


def poseidon(inputs: Sequence[int]) -> int:
    return Poseidon.hash(inputs)


def hash_n(num_elements: int, elements: Sequence[int]) -> int:
    """Hash exactly num_elements values, zero-padding shorter input"""
    if len(elements) > num_elements:
        raise InputValidationError(
            f"the array length must be at most {num_elements}, got {len(elements)}")
    padded = list(elements) + [0] * (num_elements - len(elements))
    return poseidon(padded)


def hash2(elements: Sequence[int]) -> int:
    return hash_n(2, elements)


def hash3(elements: Sequence[int]) -> int:
    return hash_n(3, elements)


def hash4(elements: Sequence[int]) -> int:
    return hash_n(4, elements)


def hash5(elements: Sequence[int]) -> int:
    return hash_n(5, elements)


def hash13(elements: Sequence[int]) -> int:
    """Hash up to 13 values as hash5 of (e0, hash5(e1..e5), hash5(e6..e10), e11, e12)"""
    if len(elements) > 13:
        raise InputValidationError(f"the array length must be at most 13, got {len(elements)}")
    e = list(elements) + [0] * (13 - len(elements))
    return hash5([e[0], hash5(e[1:6]), hash5(e[6:11]), e[11], e[12]])


def hash_left_right(left: int, right: int) -> int:
    return hash2([left, right])


def hash_one(element: int) -> int:
    return hash2([element, 0])


# ============================================================================
# POSEIDON SPONGE ENCRYPTION
# ============================================================================

TWO_128 = 1 << 128


def _initial_state(key: Sequence[int], nonce: int, length: int) -> List[int]:
    if nonce >= TWO_128:
        raise InputValidationError("the nonce must be less than 2^128")
    p = SNARK_FIELD_SIZE
    return [0, key[0] % p, key[1] % p, (nonce + length * TWO_128) % p]


def encrypt(plaintext: Sequence[int], key: Sequence[int], nonce: int = 0) -> List[int]:
    """Encrypt field elements under a shared key; output has an auth tag appended"""
    p = SNARK_FIELD_SIZE
    message = list(plaintext)
    length = len(message)
    while len(message) % 3:
        message.append(0)

    state = _initial_state(key, nonce, length)
    ciphertext: List[int] = []
    for i in range(0, len(message), 3):
        state = Poseidon.permute(state)
        for j in range(3):
            state[j + 1] = (state[j + 1] + message[i + j]) % p
            ciphertext.append(state[j + 1])

    state = Poseidon.permute(state)
    ciphertext.append(state[1])
    return ciphertext


def decrypt(ciphertext: Sequence[int], key: Sequence[int], nonce: int, length: int) -> List[int]:
    """Inverse of encrypt; raises DecryptionError if authentication fails"""
    p = SNARK_FIELD_SIZE
    num_blocks = (len(ciphertext) - 1) // 3
    if len(ciphertext) < 4 or (len(ciphertext) - 1) % 3 or length > num_blocks * 3:
        raise DecryptionError("malformed ciphertext")

    state = _initial_state(key, nonce, length)
    message: List[int] = []
    for i in range(0, num_blocks * 3, 3):
        state = Poseidon.permute(state)
        for j in range(3):
            message.append((ciphertext[i + j] - state[j + 1]) % p)
            state[j + 1] = ciphertext[i + j] % p

    if any(message[length:]):
        raise DecryptionError("invalid padding")

    state = Poseidon.permute(state)
    if ciphertext[-1] % p != state[1]:
        raise DecryptionError("authentication tag mismatch")

    return message[:length]
