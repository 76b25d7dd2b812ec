"""
Cryptographic capability for the MACI processing engine:
Poseidon hashing and encryption, Baby Jubjub EdDSA, ECDH and ElGamal.
"""

from .field import (
    SNARK_FIELD_SIZE,
    NOTHING_UP_MY_SLEEVE,
    SnarkField,
    snark_field,
    is_field_element,
    validate_field_elements,
    gen_random_babyjub_value,
    gen_random_salt,
    sha256_hash,
)
from .poseidon import (
    Poseidon,
    GrainLFSR,
    poseidon,
    hash_n,
    hash2,
    hash3,
    hash4,
    hash5,
    hash13,
    hash_left_right,
    hash_one,
    encrypt,
    decrypt,
)
from .babyjub import (
    BASE8,
    SUB_ORDER,
    IDENTITY,
    Point,
    in_curve,
    add_point,
    negate_point,
    mul_point_escalar,
)
from .eddsa import (
    Signature,
    format_priv_key_for_babyjub,
    gen_priv_key,
    gen_pub_key,
    gen_keypair,
    gen_ecdh_shared_key,
    sign,
    verify_signature,
)
from .elgamal import (
    elgamal_encrypt,
    elgamal_decrypt,
    elgamal_encrypt_bit,
    elgamal_decrypt_bit,
    elgamal_rerandomize,
    bit_to_curve,
    curve_to_bit,
)

__version__ = "1.0.0"

__all__ = [
    # Field
    'SNARK_FIELD_SIZE',
    'NOTHING_UP_MY_SLEEVE',
    'SnarkField',
    'snark_field',
    'is_field_element',
    'validate_field_elements',
    'gen_random_babyjub_value',
    'gen_random_salt',
    'sha256_hash',

    # Hashing and encryption
    'Poseidon',
    'GrainLFSR',
    'poseidon',
    'hash_n',
    'hash2',
    'hash3',
    'hash4',
    'hash5',
    'hash13',
    'hash_left_right',
    'hash_one',
    'encrypt',
    'decrypt',

    # Curve
    'BASE8',
    'SUB_ORDER',
    'IDENTITY',
    'Point',
    'in_curve',
    'add_point',
    'negate_point',
    'mul_point_escalar',

    # Signatures and key agreement
    'Signature',
    'format_priv_key_for_babyjub',
    'gen_priv_key',
    'gen_pub_key',
    'gen_keypair',
    'gen_ecdh_shared_key',
    'sign',
    'verify_signature',

    # ElGamal
    'elgamal_encrypt',
    'elgamal_decrypt',
    'elgamal_encrypt_bit',
    'elgamal_decrypt_bit',
    'elgamal_rerandomize',
    'bit_to_curve',
    'curve_to_bit',
]
