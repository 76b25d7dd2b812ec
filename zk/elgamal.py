"""
ElGamal encryption of curve points under a Baby Jubjub public key.

Bits are encoded as the identity (0) or BASE8 (1) so that ciphertexts can
be rerandomized without the private key.
"""

from typing import Tuple

from utils.errors import DecryptionError
from .babyjub import BASE8, IDENTITY, Point, add_point, mul_point_escalar, negate_point
from .eddsa import format_priv_key_for_babyjub
from .field import gen_random_babyjub_value

Ciphertext = Tuple[Point, Point]


def elgamal_encrypt(pub_key: Point, m: Point, y: int) -> Ciphertext:
    """Encrypt point m with blinding factor y"""
    s = mul_point_escalar(tuple(pub_key), y)
    c1 = mul_point_escalar(BASE8, y)
    c2 = add_point(tuple(m), s)
    return c1, c2


def elgamal_decrypt(priv_key: int, c1: Point, c2: Point) -> Point:
    s = mul_point_escalar(tuple(c1), format_priv_key_for_babyjub(priv_key))
    return add_point(tuple(c2), negate_point(s))


def bit_to_curve(bit: int) -> Point:
    if bit not in (0, 1):
        raise ValueError("bit must be 0 or 1")
    return BASE8 if bit else IDENTITY


def curve_to_bit(point: Point) -> int:
    point = tuple(point)
    if point == IDENTITY:
        return 0
    if point == BASE8:
        return 1
    raise DecryptionError("point does not encode a bit")


def elgamal_encrypt_bit(pub_key: Point, bit: int, y: int = None) -> Ciphertext:
    if y is None:
        y = gen_random_babyjub_value()
    return elgamal_encrypt(pub_key, bit_to_curve(bit), y)


def elgamal_decrypt_bit(priv_key: int, c1: Point, c2: Point) -> int:
    return curve_to_bit(elgamal_decrypt(priv_key, c1, c2))


def elgamal_rerandomize(pub_key: Point, z: int, c1: Point, c2: Point) -> Ciphertext:
    """Fresh ciphertext for the same plaintext: (c1 + z*G, c2 + z*pk)"""
    d1 = add_point(mul_point_escalar(BASE8, z), tuple(c1))
    d2 = add_point(mul_point_escalar(tuple(pub_key), z), tuple(c2))
    return d1, d2
