#!/usr/bin/env python3
"""
Integrated Threshold Voting System
==================================
Sequences the full protocol over a ledger:

1. Committee DKG (round 1 commitments, round 2 complaints, responses,
   agreement on qualified dealers, per-member finalization)
2. Voter registration with on-record weights
3. Concurrent ballot encryption + proof, verified by the ledger
4. Partial decryptions and threshold combination of the totals
"""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from config.config import SystemConfig
from curve.babyjubjub import Point, random_scalar
from mpc.dkg import DKGParticipant, DKGState, Round1Message
from mpc.secret_sharing import MPCError
from mpc.share_transport import seal_share
from mpc.tally import PartialDecryptor, TallyResult
from utils.utils import PerformanceMonitor, compute_hash
from voting.encoder import Choice
from voting.errors import VotingError
from voting.ledger import InMemoryLedger
from voting.polling import RetryPolicy, poll
from zk.zk_proofs import ProofGateway, ZKError

logger = logging.getLogger(__name__)

# ============================================================================
# RESULT TYPES
# ============================================================================


@dataclass
class VoteReceipt:
    voter_index: int
    accepted: bool
    ballot_hash: Optional[str] = None
    proof_time: float = 0.0
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class DealerFaults:
    """Fault injection for exercising the complaint path"""
    # dealer -> recipients that receive a garbage share
    corrupt_shares: Dict[int, Set[int]] = field(default_factory=dict)
    # dealers that never answer complaints
    unresponsive: Set[int] = field(default_factory=set)

# ============================================================================
# INTEGRATED VOTING SYSTEM
# ============================================================================


class IntegratedVotingSystem:
    """Committee, voters and ledger wired together for one proposal"""

    def __init__(self, config: Optional[SystemConfig] = None,
                 ledger: Optional[InMemoryLedger] = None,
                 gateway: Optional[ProofGateway] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        self.config = config or SystemConfig()
        self.gateway = gateway or ProofGateway(self.config.zk)
        self.ledger = ledger or InMemoryLedger.from_config(self.config, self.gateway)
        self.monitor = monitor or PerformanceMonitor()
        self.retry_policy = RetryPolicy.from_config(self.config.polling)

        dkg = self.config.dkg
        self.members: Dict[int, DKGParticipant] = {
            i: DKGParticipant(i, dkg.threshold, dkg.num_members, dkg.round_id)
            for i in range(1, dkg.num_members + 1)
        }
        self.states: Dict[int, DKGState] = {}
        self.decryptors: Dict[int, PartialDecryptor] = {}
        self.receipts: Dict[int, VoteReceipt] = {}
        self.joint_public_key: Optional[Point] = None
        self.result: Optional[TallyResult] = None

        logger.info(
            f"Voting system initialized: {dkg.num_members} members, threshold {dkg.threshold}")

    # ------------------------------------------------------------------
    # Key generation
    # ------------------------------------------------------------------

    def _apply_faults(self, message: Round1Message, faults: DealerFaults) -> Round1Message:
        victims = faults.corrupt_shares.get(message.dealer_index)
        if not victims:
            return message
        directory = self.ledger.directory
        shares = tuple(
            seal_share(message.dealer_index, directory[s.recipient_index],
                       random_scalar(), message.round_id)
            if s.recipient_index in victims else s
            for s in message.encrypted_shares
        )
        logger.warning(
            f"Injecting corrupt shares from dealer {message.dealer_index} to {sorted(victims)}")
        return dataclasses.replace(message, encrypted_shares=shares)

    def run_dkg(self, faults: Optional[DealerFaults] = None) -> Point:
        """Run both DKG rounds through the ledger; returns the joint key"""
        faults = faults or DealerFaults()

        with self.monitor.start_operation("dkg"):
            for member in self.members.values():
                self.ledger.register_member(member.public_keys)
            directory = self.ledger.directory

            for member in self.members.values():
                message = member.run_round1(directory)
                self.ledger.submit_share_commitment(self._apply_faults(message, faults))

            round1 = self.ledger.get_round1_messages()
            for member in self.members.values():
                self.ledger.submit_complaints(member.run_round2(round1, directory))

            round2 = list(self.ledger.get_round2_messages().values())
            for index, member in self.members.items():
                if index in faults.unresponsive:
                    logger.warning(f"Dealer {index} withholds complaint responses")
                    continue
                self.ledger.submit_complaint_responses(index, member.answer_complaints(round2))

            qualified = self.ledger.qualified_dealers()
            responses = self.ledger.get_complaint_responses()
            for index, member in self.members.items():
                self.states[index] = member.finalize(qualified, responses)
                self.decryptors[index] = PartialDecryptor(self.states[index])

            joint = self.ledger.joint_public_key()
            mismatched = [i for i, s in self.states.items() if s.joint_public_key != joint]
            if mismatched:
                raise MPCError(
                    f"Members {mismatched} derived a different joint key", round_id=self.config.dkg.round_id)

        self.joint_public_key = joint
        logger.info(f"DKG complete: qualified dealers {sorted(qualified)}")
        return joint

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def register_voters(self, weights: Optional[Iterable[int]] = None) -> List[int]:
        weights = list(self.config.voter_weights if weights is None else weights)
        indices = []
        for index, weight in enumerate(weights, start=1):
            self.ledger.register_voter(index, weight)
            indices.append(index)
        logger.info(f"Registered {len(indices)} voters, total weight {sum(weights)}")
        return indices

    async def cast_ballot(self, voter_index: int, choice: Choice) -> VoteReceipt:
        """Encrypt, prove and submit one ballot"""
        if self.joint_public_key is None:
            raise MPCError("Run the DKG before casting ballots")

        weight = self.ledger.voter_weight(voter_index)
        with self.monitor.start_operation("prove_ballot"):
            start = time.time()
            ballot, proof = await self.gateway.prove(self.joint_public_key, choice, weight)
            proof_time = time.time() - start

        with self.monitor.start_operation("submit_vote"):
            await self.ledger.submit_vote(voter_index, ballot, proof)

        receipt = VoteReceipt(voter_index, True, compute_hash(ballot.to_bytes()), proof_time)
        self.receipts[voter_index] = receipt
        return receipt

    async def cast_ballots(self, choices: Mapping[int, Choice]) -> List[VoteReceipt]:
        """Cast ballots for several voters concurrently; rejections become receipts"""
        async def cast(voter_index: int, choice: Choice) -> VoteReceipt:
            try:
                return await self.cast_ballot(voter_index, choice)
            except (VotingError, ZKError) as e:
                logger.warning(f"Ballot from voter {voter_index} rejected: {e}")
                receipt = VoteReceipt(voter_index, False, error=str(e))
                self.receipts.setdefault(voter_index, receipt)
                return receipt

        return list(await asyncio.gather(
            *(cast(index, choice) for index, choice in choices.items())))

    # ------------------------------------------------------------------
    # Tally
    # ------------------------------------------------------------------

    async def compute_tally(self, members: Optional[Iterable[int]] = None) -> TallyResult:
        """Collect partial decryptions and wait for the ledger's result"""
        if not self.decryptors:
            raise MPCError("Run the DKG before tallying")

        round_id = self.config.tally.round_id
        self.ledger.close_voting()
        aggregate = self.ledger.get_aggregate()

        contributors = sorted(self.decryptors if members is None else members)
        with self.monitor.start_operation("partial_decryption"):
            for index in contributors:
                partial = self.decryptors[index].contribute(aggregate, round_id)
                self.ledger.submit_partial_decryption(partial)

        with self.monitor.start_operation("finalize_tally"):
            self.result = await poll(
                self.ledger.try_finalize, self.retry_policy,
                is_ready=lambda result: result is not None,
                description="tally result")

        logger.info(f"Final totals: {self.result.as_dict()}")
        return self.result

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_results(self) -> Dict[str, Any]:
        accepted = sum(1 for r in self.receipts.values() if r.accepted)
        results: Dict[str, Any] = {
            'dkg': {
                'round_id': self.config.dkg.round_id,
                'threshold': self.config.dkg.threshold,
                'num_members': self.config.dkg.num_members,
                'qualified_dealers': sorted(self.ledger.qualified_dealers()) if self.states else [],
                'joint_public_key': repr(self.joint_public_key) if self.joint_public_key else None,
            },
            'ballots': {
                'accepted': accepted,
                'rejected': len(self.receipts) - accepted,
                'receipts': list(self.receipts.values()),
            },
            'performance_metrics': self.monitor.get_summary(),
        }
        if self.result is not None:
            results['tally'] = self.result.as_dict()
            results['tally']['members'] = list(self.result.members)
            results['integrity_checks'] = {
                'all_members_agree_on_key': len({s.joint_public_key for s in self.states.values()}) == 1,
                'totals_within_registered_weight':
                    sum(self.result.totals) <= sum(self.config.voter_weights),
            }
        return results


async def run_election(config: SystemConfig, choices: Mapping[int, Choice],
                       faults: Optional[DealerFaults] = None) -> IntegratedVotingSystem:
    """DKG, registration, voting and tally in one call"""
    system = IntegratedVotingSystem(config)
    system.run_dkg(faults)
    system.register_voters()
    await system.cast_ballots(choices)
    await system.compute_tally()
    return system
