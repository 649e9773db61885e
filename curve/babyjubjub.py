"""
Baby Jubjub Curve Arithmetic
============================
Twisted Edwards curve a*x^2 + y^2 = 1 + d*x^2*y^2 over the BN254 scalar
field, in the parameterisation used by circomlib (a = 168700, d = 168696).
All protocol values live in the prime-order subgroup generated by Base8.
"""

import secrets
from dataclasses import dataclass
from typing import Tuple

# ============================================================================
# CURVE CONSTANTS
# ============================================================================

FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617
CURVE_ORDER = 21888242871839275222246405745257275088614511777268538073601725287587578984328
SUBGROUP_ORDER = CURVE_ORDER >> 3
COFACTOR = 8

A = 168700
D = 168696

# Fixed ladder width; every scalar we multiply by is below 2^256
SCALAR_BITS = 256

POINT_ENCODING_LENGTH = 32

_GENERATOR_X = 995203441582195749578291179787384436505546430278305826713579947235728471134
_GENERATOR_Y = 5472060717959818805561601436314318772137091100104008585924551046643952123905
_BASE8_X = 5299619240641551281634865583518297030282874472190772894086521144482721001553
_BASE8_Y = 16950150798460657717958625567821834550301663161624707787222815936182638968203

# ============================================================================
# EXCEPTIONS
# ============================================================================


class CurveError(Exception):
    """Base exception for curve operations"""
    pass


class InvalidEncodingError(CurveError):
    """Byte string is not a canonical point encoding"""
    pass


class PointNotOnCurveError(CurveError):
    """Coordinates do not satisfy the curve equation"""
    pass


class NotInSubgroupError(CurveError):
    """Point lies on the curve but outside the prime-order subgroup"""
    pass

# ============================================================================
# FIELD HELPERS
# ============================================================================


def _inv(value: int) -> int:
    return pow(value, FIELD_MODULUS - 2, FIELD_MODULUS)


def _sqrt(value: int):
    """Tonelli-Shanks square root in F_p, returns None for non-residues"""
    p = FIELD_MODULUS
    value %= p
    if value == 0:
        return 0
    if pow(value, (p - 1) // 2, p) != 1:
        return None

    q, s = p - 1, 0
    while q % 2 == 0:
        q //= 2
        s += 1

    z = 2
    while pow(z, (p - 1) // 2, p) != p - 1:
        z += 1

    m = s
    c = pow(z, q, p)
    t = pow(value, q, p)
    r = pow(value, (q + 1) // 2, p)
    while t != 1:
        i, t2 = 0, t
        while t2 != 1:
            t2 = t2 * t2 % p
            i += 1
        b = pow(c, 1 << (m - i - 1), p)
        m = i
        c = b * b % p
        t = t * c % p
        r = r * b % p
    return r


def _is_negative(value: int) -> bool:
    return value > (FIELD_MODULUS - 1) // 2

# ============================================================================
# POINT TYPE
# ============================================================================


@dataclass(frozen=True)
class Point:
    """Affine curve point with reduced coordinates"""
    x: int
    y: int

    def __post_init__(self):
        if not (0 <= self.x < FIELD_MODULUS and 0 <= self.y < FIELD_MODULUS):
            raise PointNotOnCurveError(
                f"Coordinates out of field range: ({self.x}, {self.y})")
        if not is_on_curve(self.x, self.y):
            raise PointNotOnCurveError(
                f"Point ({self.x}, {self.y}) does not satisfy the curve equation")

    def __add__(self, other: "Point") -> "Point":
        return add(self, other)

    def __sub__(self, other: "Point") -> "Point":
        return sub(self, other)

    def __neg__(self) -> "Point":
        return neg(self)

    def __mul__(self, scalar: int) -> "Point":
        return scalar_mul(scalar, self)

    __rmul__ = __mul__

    def is_identity(self) -> bool:
        return self.x == 0 and self.y == 1

    def coordinates(self) -> Tuple[int, int]:
        return self.x, self.y

    def to_bytes(self) -> bytes:
        return encode(self)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Point":
        return decode(data)

    def __repr__(self) -> str:
        return f"Point(0x{encode(self).hex()})"


def is_on_curve(x: int, y: int) -> bool:
    p = FIELD_MODULUS
    xx = x * x % p
    yy = y * y % p
    return (A * xx + yy) % p == (1 + D * xx % p * yy) % p


IDENTITY = Point(0, 1)
GENERATOR = Point(_GENERATOR_X, _GENERATOR_Y)
BASE_POINT = Point(_BASE8_X, _BASE8_Y)

# ============================================================================
# GROUP OPERATIONS
# ============================================================================


def _proj_add(p1: Tuple[int, int, int], p2: Tuple[int, int, int]) -> Tuple[int, int, int]:
    """Complete projective addition (add-2008-bbjlp), also used for doubling"""
    p = FIELD_MODULUS
    x1, y1, z1 = p1
    x2, y2, z2 = p2
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


def _to_affine(point: Tuple[int, int, int]) -> Point:
    x, y, z = point
    z_inv = _inv(z)
    return Point(x * z_inv % FIELD_MODULUS, y * z_inv % FIELD_MODULUS)


def _cswap(bit: int, p1: Tuple[int, int, int], p2: Tuple[int, int, int]):
    mask = -bit
    out1, out2 = [], []
    for a, b in zip(p1, p2):
        t = mask & (a ^ b)
        out1.append(a ^ t)
        out2.append(b ^ t)
    return tuple(out1), tuple(out2)


def add(p1: Point, p2: Point) -> Point:
    return _to_affine(_proj_add((p1.x, p1.y, 1), (p2.x, p2.y, 1)))


def neg(point: Point) -> Point:
    return Point((-point.x) % FIELD_MODULUS, point.y)


def sub(p1: Point, p2: Point) -> Point:
    return add(p1, neg(p2))


def scalar_mul(scalar: int, point: Point) -> Point:
    """Montgomery ladder with a fixed number of iterations.

    Every iteration performs one addition and one doubling regardless of
    the scalar bit; the bit only drives an arithmetic conditional swap.
    """
    if not isinstance(scalar, int):
        raise TypeError(f"Scalar must be an int, got {type(scalar).__name__}")
    if scalar < 0:
        return scalar_mul(-scalar, neg(point))
    if scalar >= 1 << SCALAR_BITS:
        raise ValueError(f"Scalar exceeds {SCALAR_BITS} bits")

    r0 = (0, 1, 1)
    r1 = (point.x, point.y, 1)
    for i in reversed(range(SCALAR_BITS)):
        bit = (scalar >> i) & 1
        r0, r1 = _cswap(bit, r0, r1)
        r1 = _proj_add(r0, r1)
        r0 = _proj_add(r0, r0)
        r0, r1 = _cswap(bit, r0, r1)
    return _to_affine(r0)


def base_mul(scalar: int) -> Point:
    return scalar_mul(scalar, BASE_POINT)


def is_in_subgroup(point: Point) -> bool:
    return scalar_mul(SUBGROUP_ORDER, point).is_identity()


def random_scalar() -> int:
    """Uniform scalar in [1, l-1] from the OS CSPRNG"""
    return secrets.randbelow(SUBGROUP_ORDER - 1) + 1

# ============================================================================
# ENCODING
# ============================================================================


def encode(point: Point) -> bytes:
    """Compressed 32-byte encoding: little-endian y, sign of x in the top bit"""
    data = bytearray(point.y.to_bytes(POINT_ENCODING_LENGTH, 'little'))
    if _is_negative(point.x):
        data[-1] |= 0x80
    return bytes(data)


def decode(data: bytes) -> Point:
    """Decode and validate a compressed point"""
    if not isinstance(data, (bytes, bytearray)) or len(data) != POINT_ENCODING_LENGTH:
        raise InvalidEncodingError(
            f"Point encoding must be {POINT_ENCODING_LENGTH} bytes")

    raw = bytearray(data)
    sign = bool(raw[-1] & 0x80)
    raw[-1] &= 0x7F
    y = int.from_bytes(bytes(raw), 'little')
    if y >= FIELD_MODULUS:
        raise InvalidEncodingError("y coordinate is not reduced modulo p")

    yy = y * y % FIELD_MODULUS
    denominator = (A - D * yy) % FIELD_MODULUS
    if denominator == 0:
        raise PointNotOnCurveError(f"No curve point with y = {y}")
    x = _sqrt((1 - yy) * _inv(denominator) % FIELD_MODULUS)
    if x is None:
        raise PointNotOnCurveError(f"No curve point with y = {y}")

    if x == 0 and sign:
        raise InvalidEncodingError("Sign bit set for x = 0")
    if _is_negative(x):
        x = FIELD_MODULUS - x
    if sign:
        x = FIELD_MODULUS - x

    point = Point(x, y)
    if not is_in_subgroup(point):
        raise NotInSubgroupError(
            f"Point {encode(point).hex()} is not in the prime-order subgroup")
    return point
