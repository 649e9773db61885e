"""
Ledger interfaces
=================
InMemoryLedger is the in-process reference ledger: it records DKG
publications, verifies and accumulates ballots, and collects partial
decryptions. HttpLedgerClient is the read-only client the tally watcher
uses against a remote ledger node.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

import requests

from config.config import SystemConfig
from curve.babyjubjub import IDENTITY, Point
from mpc.dkg import (
    ComplaintResponse,
    Round1Message,
    Round2Message,
    agree_on_qualified_dealers,
    compute_public_key_shares,
)
from mpc.secret_sharing import InsufficientSharesError
from mpc.share_transport import MemberPublicKeys
from mpc.tally import PartialDecryption, TallyAggregator, TallyResult
from zk.zk_proofs import ProofArtifact, ProofGateway
from .encoder import Ballot
from .errors import DuplicateVoteError, LedgerError, UnknownParticipantError

logger = logging.getLogger(__name__)

ZERO_TOTALS = (0, 0, 0)


class InMemoryLedger:
    """Single-process ledger that serialises every submission"""

    def __init__(self, threshold: int, num_members: int, gateway: Optional[ProofGateway] = None,
                 dkg_round_id: str = "dkg-0", tally_round_id: str = "tally-0",
                 max_total_weight: Optional[int] = None, linear_search_limit: int = 64):
        self.threshold = threshold
        self.num_members = num_members
        self.gateway = gateway or ProofGateway()
        self.dkg_round_id = dkg_round_id
        self.tally_round_id = tally_round_id
        self.max_total_weight = max_total_weight
        self.linear_search_limit = linear_search_limit

        self._members: Dict[int, MemberPublicKeys] = {}
        self._voter_weights: Dict[int, int] = {}

        self._round1: Dict[int, Round1Message] = {}
        self._round2: Dict[int, Round2Message] = {}
        self._responses: Dict[int, List[ComplaintResponse]] = {}
        self._qualified: Optional[FrozenSet[int]] = None
        self._joint_public_key: Optional[Point] = None
        self._public_key_shares: Optional[Dict[int, Point]] = None

        self._voted: Dict[int, Ballot] = {}
        self._aggregator: Optional[TallyAggregator] = None
        self._partials: Dict[int, PartialDecryption] = {}
        self.voting_open = True

    @classmethod
    def from_config(cls, config: SystemConfig, gateway: Optional[ProofGateway] = None) -> "InMemoryLedger":
        return cls(
            threshold=config.dkg.threshold,
            num_members=config.dkg.num_members,
            gateway=gateway or ProofGateway(config.zk),
            dkg_round_id=config.dkg.round_id,
            tally_round_id=config.tally.round_id,
            max_total_weight=config.tally.max_total_weight,
            linear_search_limit=config.tally.linear_search_limit,
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_member(self, public_keys: MemberPublicKeys):
        if not 1 <= public_keys.index <= self.num_members:
            raise LedgerError(
                f"Member index outside [1, {self.num_members}]", member_index=public_keys.index)
        if public_keys.index in self._members:
            raise LedgerError("Member already registered", member_index=public_keys.index)
        self._members[public_keys.index] = public_keys

    @property
    def directory(self) -> Dict[int, MemberPublicKeys]:
        return dict(self._members)

    def register_voter(self, voter_index: int, weight: int):
        if self._aggregator is not None:
            raise LedgerError("Voter registration closed", voter_index=voter_index)
        if weight < 0:
            raise LedgerError(f"Negative weight {weight}", voter_index=voter_index)
        if voter_index in self._voter_weights:
            raise LedgerError("Voter already registered", voter_index=voter_index)
        self._voter_weights[voter_index] = weight

    def voter_weight(self, voter_index: int) -> int:
        try:
            return self._voter_weights[voter_index]
        except KeyError:
            raise UnknownParticipantError("Unknown voter", voter_index=voter_index) from None

    def _require_member(self, index: int):
        if index not in self._members:
            raise UnknownParticipantError("Unknown committee member", member_index=index)

    # ------------------------------------------------------------------
    # DKG publications
    # ------------------------------------------------------------------

    def submit_share_commitment(self, message: Round1Message):
        self._require_member(message.dealer_index)
        if message.round_id != self.dkg_round_id:
            raise LedgerError(f"Wrong DKG round {message.round_id}", member_index=message.dealer_index)
        if message.dealer_index in self._round1:
            raise LedgerError("Round-1 message already published", member_index=message.dealer_index)
        self._round1[message.dealer_index] = message
        logger.debug(f"Recorded round-1 commitment from member {message.dealer_index}")

    def submit_complaints(self, message: Round2Message):
        self._require_member(message.member_index)
        if message.round_id != self.dkg_round_id:
            raise LedgerError(f"Wrong DKG round {message.round_id}", member_index=message.member_index)
        if message.member_index in self._round2:
            raise LedgerError("Round-2 message already published", member_index=message.member_index)
        self._round2[message.member_index] = message
        if message.complaints:
            logger.info(
                f"Member {message.member_index} filed complaints against "
                f"{[c.dealer_index for c in message.complaints]}")

    def submit_complaint_responses(self, dealer_index: int, responses: Iterable[ComplaintResponse]):
        self._require_member(dealer_index)
        if dealer_index in self._responses:
            raise LedgerError("Complaint responses already published", member_index=dealer_index)
        responses = list(responses)
        if any(r.dealer_index != dealer_index for r in responses):
            raise LedgerError("Response attributed to another dealer", member_index=dealer_index)
        self._responses[dealer_index] = responses

    def get_round1_messages(self) -> Dict[int, Round1Message]:
        return dict(self._round1)

    def get_round2_messages(self) -> Dict[int, Round2Message]:
        return dict(self._round2)

    def get_complaint_responses(self) -> List[ComplaintResponse]:
        return [r for dealer in sorted(self._responses) for r in self._responses[dealer]]

    def qualified_dealers(self) -> FrozenSet[int]:
        if self._qualified is None:
            self._qualified = agree_on_qualified_dealers(
                self._round1, self._round2, self.get_complaint_responses(),
                self._members, self.threshold, self.num_members, self.dkg_round_id)
        return self._qualified

    def joint_public_key(self) -> Point:
        if self._joint_public_key is None:
            qualified = self.qualified_dealers()
            commitments = {d: self._round1[d].commitment for d in qualified}
            joint = IDENTITY
            for commitment in commitments.values():
                joint = joint + commitment.public_contribution
            self._joint_public_key = joint
            self._public_key_shares = compute_public_key_shares(commitments, self.num_members)
            logger.info(f"Joint public key {joint} from dealers {sorted(qualified)}")
        return self._joint_public_key

    def public_key_shares(self) -> Dict[int, Point]:
        self.joint_public_key()
        return dict(self._public_key_shares)

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def _tally(self) -> TallyAggregator:
        if self._aggregator is None:
            bound = self.max_total_weight
            if bound is None:
                bound = sum(self._voter_weights.values())
            self._aggregator = TallyAggregator(
                self.threshold, self.tally_round_id, bound, self.linear_search_limit)
        return self._aggregator

    async def submit_vote(self, voter_index: int, ballot: Ballot, proof: ProofArtifact):
        """Verify against the on-record weight, then accumulate.

        A rejected submission leaves the aggregate untouched.
        """
        weight = self.voter_weight(voter_index)
        if voter_index in self._voted:
            raise DuplicateVoteError("Voter already cast a ballot", voter_index=voter_index)
        if not self.voting_open:
            raise LedgerError("Voting is closed", voter_index=voter_index)

        tally = self._tally()
        await self.gateway.require_valid(
            self.joint_public_key(), ballot, proof, weight, voter_index=voter_index)

        # State may have moved while the proof was being checked
        if voter_index in self._voted:
            raise DuplicateVoteError("Voter already cast a ballot", voter_index=voter_index)
        if not self.voting_open:
            raise LedgerError("Voting is closed", voter_index=voter_index)

        tally.accept(ballot)
        self._voted[voter_index] = ballot
        logger.info(f"Accepted ballot from voter {voter_index} ({tally.ballot_count} total)")

    def has_voted(self, voter_index: int) -> bool:
        return voter_index in self._voted

    def get_aggregate(self) -> Ballot:
        return self._tally().aggregate

    def close_voting(self):
        if self.voting_open:
            self.voting_open = False
            logger.info(f"Voting closed with {self._tally().ballot_count} ballots")

    # ------------------------------------------------------------------
    # Tally
    # ------------------------------------------------------------------

    def submit_partial_decryption(self, partial: PartialDecryption) -> Optional[TallyResult]:
        self._require_member(partial.member_index)
        if partial.member_index in self._partials:
            raise LedgerError("Partial decryption already submitted", member_index=partial.member_index)
        if partial.round_id != self.tally_round_id:
            raise LedgerError(f"Wrong tally round {partial.round_id}", member_index=partial.member_index)
        # The aggregate a partial refers to must not change afterwards
        self.close_voting()
        self._partials[partial.member_index] = partial
        return self.try_finalize()

    def get_partials(self) -> Dict[int, PartialDecryption]:
        return dict(self._partials)

    def try_finalize(self) -> Optional[TallyResult]:
        """Combine partials once enough valid ones are on record"""
        tally = self._tally()
        if tally.result is not None:
            return tally.result
        try:
            return tally.finalize(self._partials, self.public_key_shares())
        except InsufficientSharesError as e:
            logger.debug(f"Tally not ready: {e}")
            return None

    def get_totals(self, proposal_id: int = 0) -> Tuple[int, int, int]:
        if self._aggregator is None or self._aggregator.result is None:
            return ZERO_TOTALS
        return self._aggregator.result.totals


def load_descriptor(path: Path) -> Dict[str, Any]:
    """Read a ledger descriptor (contract address and metadata) from JSON"""
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise LedgerError(f"Cannot read ledger descriptor {path}: {e}") from e


class HttpLedgerClient:
    """JSON-RPC read client for a remote ledger node"""

    TOTALS_METHOD = "zkvote_getVoteTotals"

    def __init__(self, endpoint: str, descriptor: Optional[Dict[str, Any]] = None,
                 session: Optional[requests.Session] = None, timeout: float = 5.0):
        self.endpoint = endpoint
        self.descriptor = descriptor or {}
        self.session = session or requests.Session()
        self.timeout = timeout
        self._request_id = 0

    def _call(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            raise LedgerError(f"RPC {method} to {self.endpoint} failed: {e}") from e

        if not isinstance(body, dict):
            raise LedgerError(f"RPC {method} returned a non-object body: {body!r}")
        if body.get("error"):
            raise LedgerError(f"RPC {method} returned error: {body['error']}")
        return body.get("result")

    def get_totals(self, proposal_id: int = 0) -> Tuple[int, int, int]:
        result = self._call(self.TOTALS_METHOD, [self.descriptor.get("address"), proposal_id])
        if not isinstance(result, list) or len(result) != 3:
            raise LedgerError(f"Malformed vote totals: {result!r}")
        try:
            return tuple(int(v, 0) if isinstance(v, str) else int(v) for v in result)
        except (TypeError, ValueError) as e:
            raise LedgerError(f"Malformed vote totals: {result!r}") from e
