"""
EdDSA-Poseidon signatures and ECDH over Baby Jubjub.

Private keys are expanded with BLAKE2b-512 and pruned into a scalar that
is a multiple of the cofactor, as in circomlib. circomlib hashes with
blake512 instead, so keys derived here do not match circomlibjs keys.
"""

from dataclasses import dataclass
from typing import Tuple

from cryptography.hazmat.primitives import hashes

from utils.errors import DecryptionError
from .babyjub import BASE8, SUB_ORDER, Point, add_point, in_curve, mul_point_escalar
from .field import SNARK_FIELD_SIZE, gen_random_babyjub_value
from .poseidon import poseidon


@dataclass(frozen=True)
class Signature:
    r8: Point
    s: int


def _blake512(data: bytes) -> bytes:
    digest = hashes.Hash(hashes.BLAKE2b(64))
    digest.update(data)
    return digest.finalize()


def _expand_priv_key(priv_key: int) -> Tuple[int, bytes]:
    """Pruned secret scalar and the second half of the key hash"""
    h = _blake512(int(priv_key).to_bytes(32, 'big'))
    s_buff = bytearray(h[:32])
    s_buff[0] &= 0xF8
    s_buff[31] &= 0x7F
    s_buff[31] |= 0x40
    return int.from_bytes(s_buff, 'little'), h[32:]


def format_priv_key_for_babyjub(priv_key: int) -> int:
    """Scalar s >> 3 such that the public key is BASE8 * (s >> 3)"""
    s, _ = _expand_priv_key(priv_key)
    return s >> 3


def gen_priv_key() -> int:
    return gen_random_babyjub_value()


def gen_pub_key(priv_key: int) -> Point:
    if not 0 <= priv_key < SNARK_FIELD_SIZE:
        raise ValueError("private key must be a field element")
    return mul_point_escalar(BASE8, format_priv_key_for_babyjub(priv_key))


def gen_keypair() -> Tuple[int, Point]:
    priv_key = gen_priv_key()
    return priv_key, gen_pub_key(priv_key)


def gen_ecdh_shared_key(priv_key: int, pub_key: Point) -> Point:
    """Shared point pub_key * formatted(priv_key)"""
    if not in_curve(tuple(pub_key)):
        raise DecryptionError("public key is not on the curve")
    return mul_point_escalar(tuple(pub_key), format_priv_key_for_babyjub(priv_key))


def sign(priv_key: int, msg: int) -> Signature:
    s, h_right = _expand_priv_key(priv_key)
    a = mul_point_escalar(BASE8, s >> 3)

    r_buff = _blake512(h_right + int(msg).to_bytes(32, 'little'))
    r = int.from_bytes(r_buff, 'little') % SUB_ORDER
    r8 = mul_point_escalar(BASE8, r)

    hm = poseidon([r8[0], r8[1], a[0], a[1], msg])
    return Signature(r8=r8, s=(r + hm * s) % SUB_ORDER)


def verify_signature(msg: int, signature: Signature, pub_key: Point) -> bool:
    if signature is None:
        return False
    r8 = tuple(signature.r8)
    pub_key = tuple(pub_key)
    if not in_curve(r8) or not in_curve(pub_key):
        return False
    if not 0 <= signature.s < SUB_ORDER:
        return False

    hm = poseidon([r8[0], r8[1], pub_key[0], pub_key[1], msg])
    left = mul_point_escalar(BASE8, signature.s)
    right = add_point(r8, mul_point_escalar(pub_key, 8 * hm))
    return left == right
