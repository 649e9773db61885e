"""
Threshold Tally
===============
Homomorphic accumulation of accepted ballots, per-member partial
decryptions with Chaum-Pedersen proofs, and threshold combination with a
bounded discrete-log search for each slot total.
"""

import hashlib
import logging
from dataclasses import dataclass
from math import isqrt
from typing import Dict, Iterable, Mapping, Optional, Set, Tuple

from curve.babyjubjub import (
    BASE_POINT,
    IDENTITY,
    SUBGROUP_ORDER,
    Point,
    base_mul,
    encode,
    random_scalar,
    scalar_mul,
)
from voting.encoder import NUM_SLOTS, Ballot, Choice
from .dkg import DKGState
from .secret_sharing import (
    InsufficientSharesError,
    MPCError,
    RoundReplayError,
    TallyOutOfRangeError,
    combine_points,
)

logger = logging.getLogger(__name__)

DLEQ_DOMAIN = b"zkvote-partial-decryption"
LINEAR_SEARCH_LIMIT = 64

# ============================================================================
# DISCRETE LOG
# ============================================================================


def discrete_log_linear(target: Point, max_value: int) -> Optional[int]:
    current = IDENTITY
    for k in range(max_value + 1):
        if current == target:
            return k
        current = current + BASE_POINT
    return None


def discrete_log_bsgs(target: Point, max_value: int) -> Optional[int]:
    """Baby-step giant-step: find k <= max_value with k*B == target"""
    m = isqrt(max_value) + 1

    baby = {}
    current = IDENTITY
    for j in range(m):
        baby.setdefault(current, j)
        current = current + BASE_POINT

    giant = -base_mul(m)
    gamma = target
    for i in range(max_value // m + 2):
        j = baby.get(gamma)
        if j is not None:
            k = i * m + j
            return k if k <= max_value else None
        gamma = gamma + giant
    return None


def discrete_log(target: Point, max_value: int, linear_limit: int = LINEAR_SEARCH_LIMIT) -> Optional[int]:
    """Choose the search routine from the size of the range"""
    if max_value <= linear_limit:
        return discrete_log_linear(target, max_value)
    return discrete_log_bsgs(target, max_value)

# ============================================================================
# PARTIAL DECRYPTION
# ============================================================================


@dataclass(frozen=True)
class PartialDecryption:
    """D[s] = share * R_agg[s] for every slot, with a DLEQ proof against Y_i"""
    member_index: int
    round_id: str
    shares: Tuple[Point, ...]
    challenge: int
    response: int


@dataclass(frozen=True)
class TallyResult:
    round_id: str
    abstain: int
    nay: int
    yay: int
    members: Tuple[int, ...]

    @property
    def totals(self) -> Tuple[int, int, int]:
        return self.abstain, self.nay, self.yay

    def as_dict(self) -> Dict[str, int]:
        return {choice.name.lower(): total for choice, total in zip(Choice, self.totals)}


def _dleq_challenge(round_id: str, member_index: int, public_share: Point,
                    ephemerals: Tuple[Point, ...], shares: Tuple[Point, ...],
                    commitments: Tuple[Point, ...]) -> int:
    h = hashlib.sha256(DLEQ_DOMAIN)
    h.update(f"{round_id}|{member_index}|".encode())
    for point in (public_share, *ephemerals, *shares, *commitments):
        h.update(encode(point))
    return int.from_bytes(h.digest(), 'big') % SUBGROUP_ORDER


class PartialDecryptor:
    """Committee-member side of the tally; contributes once per round"""

    def __init__(self, dkg_state: DKGState):
        self.state = dkg_state
        self._contributed: Set[str] = set()

    def contribute(self, aggregate: Ballot, round_id: str) -> PartialDecryption:
        if round_id in self._contributed:
            raise RoundReplayError(
                "Partial decryption already contributed",
                round_id=round_id, party_index=self.state.member_index)

        x = self.state.key_share.share
        index = self.state.member_index
        shares = tuple(scalar_mul(x, R) for R in aggregate.R)

        k = random_scalar()
        commitments = (base_mul(k),) + tuple(scalar_mul(k, R) for R in aggregate.R)
        e = _dleq_challenge(round_id, index, self.state.public_key_share(index),
                            aggregate.R, shares, commitments)
        z = (k - e * x) % SUBGROUP_ORDER

        self._contributed.add(round_id)
        logger.info(f"Member {index} contributed partial decryption for {round_id}")
        return PartialDecryption(index, round_id, shares, e, z)


def verify_partial(partial: PartialDecryption, public_share: Point, aggregate: Ballot) -> bool:
    """Check log_B(Y_i) == log_{R[s]}(D[s]) for every slot"""
    if len(partial.shares) != NUM_SLOTS:
        return False
    e, z = partial.challenge % SUBGROUP_ORDER, partial.response % SUBGROUP_ORDER
    commitments = (base_mul(z) + scalar_mul(e, public_share),) + tuple(
        scalar_mul(z, R) + scalar_mul(e, D) for R, D in zip(aggregate.R, partial.shares))
    expected = _dleq_challenge(partial.round_id, partial.member_index, public_share,
                               aggregate.R, partial.shares, commitments)
    return expected == partial.challenge

# ============================================================================
# AGGREGATOR
# ============================================================================


class TallyAggregator:
    """Running encrypted sum of accepted ballots and its threshold decryption"""

    def __init__(self, threshold: int, round_id: str, max_total_weight: int,
                 linear_search_limit: int = LINEAR_SEARCH_LIMIT):
        if threshold < 1:
            raise ValueError(f"Threshold must be at least 1, got {threshold}")
        if max_total_weight < 0:
            raise ValueError("max_total_weight must be non-negative")

        self.threshold = threshold
        self.round_id = round_id
        self.max_total_weight = max_total_weight
        self.linear_search_limit = linear_search_limit

        self.aggregate = Ballot.zero()
        self.ballot_count = 0
        self.result: Optional[TallyResult] = None

    def accept(self, ballot: Ballot):
        """Add a ballot whose proof has already been verified"""
        if self.result is not None:
            raise MPCError("Tally already finalized", round_id=self.round_id)
        self.aggregate = self.aggregate + ballot
        self.ballot_count += 1

    def verify_partial(self, partial: PartialDecryption, public_share: Point) -> bool:
        return verify_partial(partial, public_share, self.aggregate)

    def _usable_partials(self, partials: Iterable[PartialDecryption],
                         public_key_shares: Mapping[int, Point]) -> Dict[int, PartialDecryption]:
        usable = {}
        for partial in partials:
            if partial.round_id != self.round_id:
                logger.warning(
                    f"Dropping partial from member {partial.member_index}: round {partial.round_id}")
                continue
            if partial.member_index in usable:
                logger.warning(
                    f"Dropping duplicate partial from member {partial.member_index}")
                continue
            public_share = public_key_shares.get(partial.member_index)
            if public_share is None or not self.verify_partial(partial, public_share):
                logger.warning(
                    f"Dropping invalid partial decryption from member {partial.member_index}")
                continue
            usable[partial.member_index] = partial
        return usable

    def finalize(self, partials: Iterable[PartialDecryption],
                 public_key_shares: Mapping[int, Point]) -> TallyResult:
        """Combine at least t verified partials and recover per-slot totals.

        Every partial is checked against its member's verification share Y_i;
        partials without a matching share or with a failing proof are dropped.

        Raises InsufficientSharesError (nothing recorded) below threshold and
        TallyOutOfRangeError when a slot has no solution in range.
        """
        if self.result is not None:
            return self.result

        if isinstance(partials, Mapping):
            partials = partials.values()
        usable = self._usable_partials(partials, public_key_shares)
        if len(usable) < self.threshold:
            raise InsufficientSharesError(
                f"Need {self.threshold} partial decryptions, have {len(usable)} usable",
                round_id=self.round_id)

        selected = sorted(usable)[:self.threshold]

        totals = []
        for s in range(NUM_SLOTS):
            combined = combine_points({i: usable[i].shares[s] for i in selected})
            plaintext = self.aggregate.M[s] - combined
            total = discrete_log(plaintext, self.max_total_weight, self.linear_search_limit)
            if total is None:
                raise TallyOutOfRangeError(
                    f"Slot {Choice(s).name} has no total in [0, {self.max_total_weight}]",
                    round_id=self.round_id)
            totals.append(total)

        self.result = TallyResult(self.round_id, *totals, members=tuple(selected))
        logger.info(
            f"Tally {self.round_id} finalized from members {selected}: {self.result.as_dict()}")
        return self.result
