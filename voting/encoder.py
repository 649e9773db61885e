"""
Weighted One-Hot Ballot Encryption
==================================
Exponential ElGamal under the committee's joint key, one ciphertext per
choice slot. Each slot s carries its own ephemeral R[s] = r_s*B and mask
r_s*PK; the chosen slot additionally carries weight*B.

Slots never share a mask: with a common mask, M[a] - M[b] would expose
the chosen slot to anyone holding the ballot.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Sequence, Set, Tuple

from curve.babyjubjub import (
    IDENTITY,
    SUBGROUP_ORDER,
    Point,
    base_mul,
    encode,
    random_scalar,
    scalar_mul,
)
from .errors import RandomnessReuseError

logger = logging.getLogger(__name__)

NUM_SLOTS = 3


class Choice(IntEnum):
    ABSTAIN = 0
    NAY = 1
    YAY = 2

    @property
    def bitmask(self) -> int:
        """One-hot selector as the circuit expects it (o = 1 << choice)"""
        return 1 << int(self)

    @classmethod
    def parse(cls, value) -> "Choice":
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown choice: {value!r}") from None
        return cls(value)


@dataclass(frozen=True)
class Ballot:
    """Slot-wise ElGamal ciphertexts (R[s], M[s]); ballots add slot-wise"""
    R: Tuple[Point, ...]
    M: Tuple[Point, ...]

    def __post_init__(self):
        if len(self.R) != NUM_SLOTS or len(self.M) != NUM_SLOTS:
            raise ValueError(
                f"Ballot needs {NUM_SLOTS} slots, got R={len(self.R)} M={len(self.M)}")

    @classmethod
    def zero(cls) -> "Ballot":
        return cls((IDENTITY,) * NUM_SLOTS, (IDENTITY,) * NUM_SLOTS)

    def __add__(self, other: "Ballot") -> "Ballot":
        return Ballot(
            tuple(a + b for a, b in zip(self.R, other.R)),
            tuple(a + b for a, b in zip(self.M, other.M)),
        )

    def slot(self, index: int) -> Tuple[Point, Point]:
        return self.R[index], self.M[index]

    def to_bytes(self) -> bytes:
        return b"".join(encode(p) for p in self.R + self.M)

    def flatten(self) -> List[int]:
        """R0.x, R0.y, R1.x, R1.y, R2.x, R2.y, M0.x, M0.y, M1.x, M1.y, M2.x, M2.y"""
        values = []
        for point in self.R + self.M:
            values.extend((point.x, point.y))
        return values


class VoteEncoder:
    """Encrypts ballots for one joint public key.

    An encoder lives for one election: it remembers every ephemeral R it has
    issued so repeated randomness is refused, and that set is dropped with
    the encoder.
    """

    def __init__(self, joint_public_key: Point):
        if joint_public_key.is_identity():
            raise ValueError("Joint public key must not be the identity")
        self.joint_public_key = joint_public_key
        self._seen_ephemerals: Set[Point] = set()

    def encode(self, choice: Choice, weight: int,
               randomness: Optional[Sequence[int]] = None) -> Ballot:
        ballot, _ = self.encode_with_randomness(choice, weight, randomness)
        return ballot

    def encode_with_randomness(self, choice: Choice, weight: int,
                               randomness: Optional[Sequence[int]] = None) -> Tuple[Ballot, Tuple[int, ...]]:
        """Encrypt and also return the per-slot scalars the prover needs"""
        choice = Choice.parse(choice)
        if isinstance(weight, bool) or not isinstance(weight, int) or weight < 0:
            raise ValueError(
                f"Weight must be a non-negative int, got {weight!r}")

        if randomness is None:
            randomness = tuple(random_scalar() for _ in range(NUM_SLOTS))
        randomness = tuple(randomness)
        if len(randomness) != NUM_SLOTS:
            raise ValueError(f"Need {NUM_SLOTS} randomness scalars")
        if any(not 1 <= r < SUBGROUP_ORDER for r in randomness):
            raise ValueError("Randomness must lie in [1, l)")
        if len(set(randomness)) != NUM_SLOTS:
            raise RandomnessReuseError("Randomness repeated across slots")

        ephemerals = tuple(base_mul(r) for r in randomness)
        reused = [R for R in ephemerals if R in self._seen_ephemerals]
        if reused:
            raise RandomnessReuseError(
                f"Ephemeral {reused[0]} already used by this encoder")
        self._seen_ephemerals.update(ephemerals)

        weighted = base_mul(weight)
        masks = []
        for slot, r in zip(Choice, randomness):
            mask = scalar_mul(r, self.joint_public_key)
            masks.append(mask + weighted if slot == choice else mask)

        logger.debug(f"Encoded ballot with ephemerals {ephemerals}")
        return Ballot(ephemerals, tuple(masks)), randomness
