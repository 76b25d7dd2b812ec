"""
Baby Jubjub twisted Edwards curve over the BN254 scalar field.

Points are affine (x, y) tuples; scalar multiplication runs in projective
coordinates with the complete addition law and converts back once.
"""

from typing import Tuple

from .field import SNARK_FIELD_SIZE

Point = Tuple[int, int]

A = 168700
D = 168696

BASE8: Point = (
    5299619240641551281634865583518297030282874472190772894086521144482721001553,
    16950150798460657717958625567821834550301663161624707787222815936182638968203,
)

SUB_ORDER = 2736030358979909402780800718157159386076813972158567259200215660948447373041
ORDER = SUB_ORDER * 8

IDENTITY: Point = (0, 1)

_ProjectivePoint = Tuple[int, int, int]


def in_curve(point: Point) -> bool:
    p = SNARK_FIELD_SIZE
    x, y = point
    if not (0 <= x < p and 0 <= y < p):
        return False
    x2 = x * x % p
    y2 = y * y % p
    return (A * x2 + y2) % p == (1 + D * x2 % p * y2) % p


def _projective_add(P: _ProjectivePoint, Q: _ProjectivePoint) -> _ProjectivePoint:
    p = SNARK_FIELD_SIZE
    x1, y1, z1 = P
    x2, y2, z2 = Q
    a = z1 * z2 % p
    b = a * a % p
    c = x1 * x2 % p
    d = y1 * y2 % p
    e = D * c % p * d % p
    f = (b - e) % p
    g = (b + e) % p
    x3 = a * f % p * (((x1 + y1) * (x2 + y2) - c - d) % p) % p
    y3 = a * g % p * ((d - A * c) % p) % p
    z3 = f * g % p
    return x3, y3, z3


def _to_affine(P: _ProjectivePoint) -> Point:
    p = SNARK_FIELD_SIZE
    x, y, z = P
    z_inv = pow(z, -1, p)
    return x * z_inv % p, y * z_inv % p


def add_point(a: Point, b: Point) -> Point:
    return _to_affine(_projective_add((a[0], a[1], 1), (b[0], b[1], 1)))


def negate_point(a: Point) -> Point:
    return (SNARK_FIELD_SIZE - a[0]) % SNARK_FIELD_SIZE, a[1]


def mul_point_escalar(base: Point, scalar: int) -> Point:
    """Double-and-add scalar multiplication"""
    result: _ProjectivePoint = (0, 1, 1)
    addend: _ProjectivePoint = (base[0], base[1], 1)
    k = scalar
    while k > 0:
        if k & 1:
            result = _projective_add(result, addend)
        addend = _projective_add(addend, addend)
        k >>= 1
    return _to_affine(result)
