"""
Verifiable Secret Sharing over the Baby Jubjub Scalar Field
===========================================================
Shamir sharing with Feldman commitments. Shares live in Z_l where l is the
prime order of the Base8 subgroup; commitments are curve points.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from curve.babyjubjub import (
    IDENTITY,
    SUBGROUP_ORDER,
    Point,
    base_mul,
    encode,
    random_scalar,
    scalar_mul,
)

logger = logging.getLogger(__name__)

# ============================================================================
# EXCEPTIONS
# ============================================================================


class MPCError(Exception):
    """Base exception for committee-side protocol operations"""

    def __init__(self, message: str, round_id: Optional[str] = None, party_index: Optional[int] = None):
        context = []
        if round_id is not None:
            context.append(f"round={round_id}")
        if party_index is not None:
            context.append(f"party={party_index}")
        if context:
            message = f"{message} [{', '.join(context)}]"
        super().__init__(message)
        self.round_id = round_id
        self.party_index = party_index


class InsufficientSharesError(MPCError):
    """Threshold not met yet; retry once more contributions arrive"""
    retryable = True


class ShareVerificationError(MPCError):
    """A share failed verification against its Feldman commitment"""
    pass


class RoundReplayError(MPCError):
    """A round was invoked a second time for the same party"""
    pass


class TallyOutOfRangeError(MPCError):
    """Decrypted slot does not match any weight in the admissible range"""
    pass

# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass(frozen=True)
class Polynomial:
    """Secret polynomial, coefficients in ascending order"""
    coefficients: Tuple[int, ...]

    @property
    def degree(self) -> int:
        return len(self.coefficients) - 1

    @property
    def secret(self) -> int:
        return self.coefficients[0]

    def evaluate(self, x: int) -> int:
        """Horner evaluation mod l"""
        result = 0
        for coeff in reversed(self.coefficients):
            result = (result * x + coeff) % SUBGROUP_ORDER
        return result

    def __repr__(self) -> str:
        return f"Polynomial(degree={self.degree}, coefficients=<hidden>)"


@dataclass(frozen=True)
class ShareCommitment:
    """Feldman commitment: points[k] = coefficient[k] * B"""
    points: Tuple[Point, ...]

    @property
    def threshold(self) -> int:
        return len(self.points)

    @property
    def public_contribution(self) -> Point:
        return self.points[0]

    def evaluate(self, index: int) -> Point:
        """Commitment to the share at index: sum_k C_k * index^k"""
        result = IDENTITY
        power = 1
        for point in self.points:
            result = result + scalar_mul(power, point)
            power = (power * index) % SUBGROUP_ORDER
        return result

    def to_bytes(self) -> bytes:
        return b"".join(encode(point) for point in self.points)


@dataclass(frozen=True)
class KeyShare:
    """A committee member's share of the joint decryption key"""
    index: int
    share: int

    def __repr__(self) -> str:
        return f"KeyShare(index={self.index}, share=<hidden>)"

# ============================================================================
# LAGRANGE INTERPOLATION
# ============================================================================


def lagrange_coefficients(indices: Iterable[int]) -> Dict[int, int]:
    """Lagrange basis coefficients evaluated at x = 0 for the given indices"""
    indices = list(indices)
    if len(set(indices)) != len(indices):
        raise ValueError(f"Duplicate share indices: {indices}")
    if any(i <= 0 for i in indices):
        raise ValueError(f"Share indices must be positive: {indices}")

    coefficients = {}
    for i in indices:
        numerator = 1
        denominator = 1
        for j in indices:
            if i == j:
                continue
            numerator = (numerator * (SUBGROUP_ORDER - j)) % SUBGROUP_ORDER
            denominator = (denominator * (i - j)) % SUBGROUP_ORDER
        coefficients[i] = numerator * \
            pow(denominator, SUBGROUP_ORDER - 2, SUBGROUP_ORDER) % SUBGROUP_ORDER
    return coefficients


def combine_points(points: Dict[int, Point]) -> Point:
    """Interpolate in the exponent: sum_i lambda_i * P_i"""
    result = IDENTITY
    for index, coeff in lagrange_coefficients(points.keys()).items():
        result = result + scalar_mul(coeff, points[index])
    return result

# ============================================================================
# THRESHOLD SECRET SHARING
# ============================================================================


class ThresholdSecretSharing:
    """Shamir secret sharing with Feldman verifiable commitments"""

    def __init__(self, threshold: int, num_parties: int):
        if threshold < 1:
            raise ValueError(f"Threshold must be at least 1, got {threshold}")
        if threshold > num_parties:
            raise ValueError(
                f"Threshold {threshold} exceeds number of parties {num_parties}")

        self.threshold = threshold
        self.num_parties = num_parties

    def generate(self, secret: Optional[int] = None) -> Tuple[Polynomial, ShareCommitment]:
        """Sample a fresh degree t-1 polynomial and its Feldman commitment.

        The optional secret fixes coefficient 0; otherwise every
        coefficient is drawn from the OS CSPRNG.
        """
        if secret is None:
            secret = random_scalar()
        if not 0 <= secret < SUBGROUP_ORDER:
            raise ValueError("Secret must be a reduced scalar")

        coefficients = [secret]
        for _ in range(self.threshold - 1):
            coefficients.append(random_scalar())

        polynomial = Polynomial(tuple(coefficients))
        commitment = ShareCommitment(
            tuple(base_mul(coeff) for coeff in coefficients))
        return polynomial, commitment

    def evaluate_share(self, polynomial: Polynomial, index: int) -> int:
        self._check_index(index)
        return polynomial.evaluate(index)

    def verify_share(self, index: int, share: int, commitment: ShareCommitment) -> bool:
        """Check share * B == sum_k C_k * index^k"""
        if commitment.threshold != self.threshold:
            logger.warning(
                f"Commitment width {commitment.threshold} does not match threshold {self.threshold}")
            return False
        if not 1 <= index <= self.num_parties:
            return False
        if not 0 <= share < SUBGROUP_ORDER:
            return False
        return base_mul(share) == commitment.evaluate(index)

    def combine(self, shares: Dict[int, int], commitment: Optional[ShareCommitment] = None) -> int:
        """Reconstruct f(0) from at least t shares.

        With a commitment, every supplied share is verified first and the
        result is checked against the committed secret.
        """
        if len(shares) < self.threshold:
            raise InsufficientSharesError(
                f"Need {self.threshold} shares, got {len(shares)}")
        for index in shares:
            self._check_index(index)

        if commitment is not None:
            for index, share in shares.items():
                if not self.verify_share(index, share, commitment):
                    raise ShareVerificationError(
                        "Share doesn't match polynomial commitments", party_index=index)

        selected = sorted(shares)[:self.threshold]
        secret = 0
        for index, coeff in lagrange_coefficients(selected).items():
            secret = (secret + shares[index] * coeff) % SUBGROUP_ORDER

        if commitment is not None and base_mul(secret) != commitment.public_contribution:
            raise ShareVerificationError(
                "Reconstructed secret doesn't match commitment")
        return secret

    def _check_index(self, index: int):
        if not 1 <= index <= self.num_parties:
            raise ValueError(
                f"Share index {index} outside [1, {self.num_parties}]")


__all__ = [
    'MPCError',
    'InsufficientSharesError',
    'ShareVerificationError',
    'RoundReplayError',
    'TallyOutOfRangeError',
    'Polynomial',
    'ShareCommitment',
    'KeyShare',
    'lagrange_coefficients',
    'combine_points',
    'ThresholdSecretSharing',
]
