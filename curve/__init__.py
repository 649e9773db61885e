"""Baby Jubjub elliptic-curve arithmetic for the voting protocol."""

from .babyjubjub import (
    # Constants
    FIELD_MODULUS,
    SUBGROUP_ORDER,
    BASE_POINT,
    GENERATOR,
    IDENTITY,

    # Core types and operations
    Point,
    add,
    neg,
    sub,
    scalar_mul,
    base_mul,
    encode,
    decode,
    is_in_subgroup,
    random_scalar,

    # Exceptions
    CurveError,
    InvalidEncodingError,
    PointNotOnCurveError,
    NotInSubgroupError,
)

__all__ = [
    'FIELD_MODULUS',
    'SUBGROUP_ORDER',
    'BASE_POINT',
    'GENERATOR',
    'IDENTITY',
    'Point',
    'add',
    'neg',
    'sub',
    'scalar_mul',
    'base_mul',
    'encode',
    'decode',
    'is_in_subgroup',
    'random_scalar',
    'CurveError',
    'InvalidEncodingError',
    'PointNotOnCurveError',
    'NotInSubgroupError',
]
