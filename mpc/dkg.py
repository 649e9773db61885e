"""
Two-Round Distributed Key Generation
====================================
Pedersen-style DKG with Feldman verification. Every committee member
deals a random polynomial; the joint public key is the sum of the
qualified dealers' constant-term commitments and each member's key share
is the sum of the shares it received from those dealers.

Per-member state machine:
    INIT -> ROUND1_PUBLISHED -> ROUND2_VERIFIED -> READY

Members that receive a bad share publish a complaint in round 2. The
accused dealer may answer by revealing that share; the qualified-dealer
set is then a deterministic function of the published messages, so every
member derives the same set from the ledger.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from curve.babyjubjub import IDENTITY, SUBGROUP_ORDER, Point, base_mul
from .secret_sharing import (
    InsufficientSharesError,
    KeyShare,
    MPCError,
    Polynomial,
    RoundReplayError,
    ShareCommitment,
    ShareVerificationError,
    ThresholdSecretSharing,
)
from .share_transport import (
    EncryptedShare,
    MemberIdentity,
    MemberPublicKeys,
    fingerprint,
    open_share,
    seal_share,
    sign_commitment,
    verify_commitment_signature,
)

logger = logging.getLogger(__name__)


class DKGStateError(MPCError):
    """Operation invoked in the wrong protocol state"""
    pass


class DKGStatus(Enum):
    """DKG execution states"""
    INIT = "init"
    ROUND1_PUBLISHED = "round1_published"
    ROUND2_VERIFIED = "round2_verified"
    READY = "ready"
    FAILED = "failed"

# ============================================================================
# PROTOCOL MESSAGES
# ============================================================================


@dataclass(frozen=True)
class Round1Message:
    """Dealer broadcast: signed commitment plus sealed per-recipient shares"""
    dealer_index: int
    round_id: str
    commitment: ShareCommitment
    signature: bytes
    encrypted_shares: Tuple[EncryptedShare, ...]

    def share_for(self, recipient_index: int) -> Optional[EncryptedShare]:
        for sealed in self.encrypted_shares:
            if sealed.recipient_index == recipient_index:
                return sealed
        return None


@dataclass(frozen=True)
class Complaint:
    accuser_index: int
    dealer_index: int
    reason: str


@dataclass(frozen=True)
class Round2Message:
    """Verification outcome published by one member"""
    member_index: int
    round_id: str
    complaints: Tuple[Complaint, ...] = ()


@dataclass(frozen=True)
class ComplaintResponse:
    """Dealer reveals the disputed share in the clear"""
    dealer_index: int
    accuser_index: int
    share: int


@dataclass(frozen=True)
class DKGState:
    """Terminal output of a DKG run, owned by one member"""
    member_index: int
    threshold: int
    num_members: int
    round_id: str
    joint_public_key: Point
    key_share: KeyShare = field(repr=False)
    qualified_dealers: FrozenSet[int]
    public_key_shares: Dict[int, Point] = field(compare=False, repr=False)

    def public_key_share(self, index: int) -> Point:
        return self.public_key_shares[index]

# ============================================================================
# PUBLIC CHECKS (any party can evaluate these over ledger data)
# ============================================================================


def check_round1_message(message: Round1Message, public: Optional[MemberPublicKeys],
                         threshold: int, round_id: str) -> Optional[str]:
    """Return the rejection reason for a round-1 publication, or None"""
    if public is None:
        return "unknown dealer"
    if message.round_id != round_id:
        return f"round mismatch ({message.round_id})"
    if message.commitment.threshold != threshold:
        return f"commitment width {message.commitment.threshold} != {threshold}"
    if not verify_commitment_signature(public, message.commitment, message.signature, round_id):
        return "bad commitment signature"
    return None


def compute_public_key_shares(commitments: Mapping[int, ShareCommitment], num_members: int) -> Dict[int, Point]:
    """Y_j = sum_i C_i(j) for every member index j"""
    shares = {}
    for j in range(1, num_members + 1):
        total = IDENTITY
        for commitment in commitments.values():
            total = total + commitment.evaluate(j)
        shares[j] = total
    return shares


def agree_on_qualified_dealers(
    round1_messages: Mapping[int, Round1Message],
    round2_messages: Mapping[int, Round2Message],
    responses: Iterable[ComplaintResponse],
    directory: Mapping[int, MemberPublicKeys],
    threshold: int,
    num_members: int,
    round_id: str,
) -> FrozenSet[int]:
    """Deterministic qualified-dealer set.

    A dealer qualifies when its round-1 publication is well formed and every
    complaint against it was answered with a share that verifies publicly.
    """
    sss = ThresholdSecretSharing(threshold, num_members)
    answered = {(r.dealer_index, r.accuser_index): r for r in responses}

    qualified = set()
    for dealer, message in round1_messages.items():
        reason = check_round1_message(
            message, directory.get(dealer), threshold, round_id)
        if reason is None and message.dealer_index == dealer:
            qualified.add(dealer)
        else:
            logger.warning(
                f"Dealer {dealer} disqualified in round {round_id}: {reason or 'index mismatch'}")

    for member, message in round2_messages.items():
        for complaint in message.complaints:
            if complaint.accuser_index != member:
                continue
            dealer = complaint.dealer_index
            if dealer not in qualified:
                continue
            response = answered.get((dealer, member))
            if response is None or not sss.verify_share(member, response.share, round1_messages[dealer].commitment):
                qualified.discard(dealer)
                logger.warning(
                    f"Dealer {dealer} disqualified in round {round_id}: unresolved complaint from {member} ({complaint.reason})")

    if len(qualified) < threshold:
        raise InsufficientSharesError(
            f"Only {len(qualified)} qualified dealers, threshold is {threshold}", round_id=round_id)
    return frozenset(qualified)

# ============================================================================
# PARTICIPANT
# ============================================================================


class DKGParticipant:
    """One committee member's view of the DKG"""

    def __init__(self, index: int, threshold: int, num_members: int, round_id: str,
                 identity: Optional[MemberIdentity] = None, secret: Optional[int] = None):
        if not 1 <= index <= num_members:
            raise ValueError(
                f"Member index {index} outside [1, {num_members}]")

        self.index = index
        self.threshold = threshold
        self.num_members = num_members
        self.round_id = round_id
        self.identity = identity or MemberIdentity(index)
        self.sss = ThresholdSecretSharing(threshold, num_members)
        self.status = DKGStatus.INIT

        self._secret = secret
        self._polynomial: Optional[Polynomial] = None
        self._own_message: Optional[Round1Message] = None
        self._round1: Dict[int, Round1Message] = {}
        self._received: Dict[int, int] = {}
        self._completed: Set[str] = set()

    @property
    def public_keys(self) -> MemberPublicKeys:
        return self.identity.public()

    def _enter(self, step: str, expected: DKGStatus):
        if step in self._completed:
            raise RoundReplayError(
                f"DKG step '{step}' already executed", round_id=self.round_id, party_index=self.index)
        if self.status != expected:
            raise DKGStateError(
                f"DKG step '{step}' requires state {expected.value}, current state {self.status.value}",
                round_id=self.round_id, party_index=self.index)

    def run_round1(self, directory: Mapping[int, MemberPublicKeys]) -> Round1Message:
        """Deal: commit to a fresh polynomial and seal one share per member"""
        self._enter("round1", DKGStatus.INIT)

        missing = [j for j in range(1, self.num_members + 1)
                   if j != self.index and j not in directory]
        if missing:
            raise DKGStateError(
                f"Missing transport keys for members {missing}", round_id=self.round_id, party_index=self.index)

        polynomial, commitment = self.sss.generate(self._secret)
        self._secret = None
        self._polynomial = polynomial
        self._received[self.index] = self.sss.evaluate_share(
            polynomial, self.index)

        sealed = tuple(
            seal_share(self.index, directory[j],
                       self.sss.evaluate_share(polynomial, j), self.round_id)
            for j in range(1, self.num_members + 1) if j != self.index
        )

        message = Round1Message(
            dealer_index=self.index,
            round_id=self.round_id,
            commitment=commitment,
            signature=sign_commitment(self.identity, commitment, self.round_id),
            encrypted_shares=sealed,
        )
        self._own_message = message
        self._completed.add("round1")
        self.status = DKGStatus.ROUND1_PUBLISHED

        logger.info(
            f"Member {self.index} ({fingerprint(self.public_keys)}) published round-1 commitment for {self.round_id}")
        return message

    def run_round2(self, round1_messages: Mapping[int, Round1Message],
                   directory: Mapping[int, MemberPublicKeys]) -> Round2Message:
        """Verify every received share; complain about the bad ones"""
        self._enter("round2", DKGStatus.ROUND1_PUBLISHED)

        self._round1 = dict(round1_messages)
        self._round1[self.index] = self._own_message

        complaints: List[Complaint] = []
        for dealer, message in sorted(self._round1.items()):
            if dealer == self.index:
                continue

            reason = check_round1_message(
                message, directory.get(dealer), self.threshold, self.round_id)
            if reason is not None:
                # Publicly visible fault, the agreement step excludes it for everyone
                logger.warning(
                    f"Member {self.index} ignoring dealer {dealer}: {reason}")
                continue

            sealed = message.share_for(self.index)
            if sealed is None:
                complaints.append(Complaint(self.index, dealer, "missing share"))
                continue

            try:
                share = open_share(sealed, self.identity, self.round_id)
            except ShareVerificationError as e:
                complaints.append(Complaint(self.index, dealer, str(e)))
                continue

            if not self.sss.verify_share(self.index, share, message.commitment):
                complaints.append(Complaint(
                    self.index, dealer, "share does not match commitment"))
                continue

            self._received[dealer] = share

        for complaint in complaints:
            logger.warning(
                f"Member {self.index} complains about dealer {complaint.dealer_index}: {complaint.reason}")

        self._completed.add("round2")
        self.status = DKGStatus.ROUND2_VERIFIED
        logger.info(
            f"Member {self.index} verified shares from {len(self._received) - 1} dealers, {len(complaints)} complaints")
        return Round2Message(self.index, self.round_id, tuple(complaints))

    def answer_complaints(self, round2_messages: Iterable[Round2Message]) -> List[ComplaintResponse]:
        """Reveal the disputed shares for complaints against this dealer"""
        if self._polynomial is None:
            raise DKGStateError(
                "Cannot answer complaints before dealing", round_id=self.round_id, party_index=self.index)

        responses = []
        for message in round2_messages:
            for complaint in message.complaints:
                if complaint.dealer_index != self.index or complaint.accuser_index != message.member_index:
                    continue
                responses.append(ComplaintResponse(
                    dealer_index=self.index,
                    accuser_index=complaint.accuser_index,
                    share=self.sss.evaluate_share(
                        self._polynomial, complaint.accuser_index),
                ))
        return responses

    def finalize(self, qualified_dealers: Iterable[int],
                 responses: Iterable[ComplaintResponse] = ()) -> DKGState:
        """Derive the key share and joint key from the agreed dealer set"""
        self._enter("finalize", DKGStatus.ROUND2_VERIFIED)

        qualified = frozenset(qualified_dealers)
        if len(qualified) < self.threshold:
            self.status = DKGStatus.FAILED
            raise InsufficientSharesError(
                f"Only {len(qualified)} qualified dealers, threshold is {self.threshold}",
                round_id=self.round_id, party_index=self.index)

        revealed = {r.dealer_index: r.share for r in responses
                    if r.accuser_index == self.index}

        total = 0
        for dealer in sorted(qualified):
            if dealer not in self._round1:
                self.status = DKGStatus.FAILED
                raise DKGStateError(
                    f"Qualified dealer {dealer} has no round-1 message", round_id=self.round_id, party_index=self.index)

            share = self._received.get(dealer)
            if share is None:
                candidate = revealed.get(dealer)
                if candidate is not None and self.sss.verify_share(self.index, candidate, self._round1[dealer].commitment):
                    share = candidate
            if share is None:
                self.status = DKGStatus.FAILED
                raise ShareVerificationError(
                    f"No verified share from qualified dealer {dealer}",
                    round_id=self.round_id, party_index=self.index)
            total = (total + share) % SUBGROUP_ORDER

        commitments = {d: self._round1[d].commitment for d in qualified}
        joint_public_key = IDENTITY
        for commitment in commitments.values():
            joint_public_key = joint_public_key + commitment.public_contribution

        public_key_shares = compute_public_key_shares(
            commitments, self.num_members)
        if base_mul(total) != public_key_shares[self.index]:
            self.status = DKGStatus.FAILED
            raise ShareVerificationError(
                "Key share inconsistent with public verification share",
                round_id=self.round_id, party_index=self.index)

        # Polynomial is no longer needed once the round is closed
        self._polynomial = None
        self._completed.add("finalize")
        self.status = DKGStatus.READY

        logger.info(
            f"Member {self.index} ready: {len(qualified)} qualified dealers, joint key {joint_public_key}")

        return DKGState(
            member_index=self.index,
            threshold=self.threshold,
            num_members=self.num_members,
            round_id=self.round_id,
            joint_public_key=joint_public_key,
            key_share=KeyShare(self.index, total),
            qualified_dealers=qualified,
            public_key_shares=public_key_shares,
        )
