"""Voter-side encoding, ledger errors and polling."""

from .errors import (
    VotingError,
    RandomnessReuseError,
    LedgerError,
    DuplicateVoteError,
    UnknownParticipantError,
    PollingTimeoutError,
)
from .encoder import Ballot, Choice, VoteEncoder
from .polling import RetryPolicy, poll, poll_for_totals

__all__ = [
    'VotingError',
    'RandomnessReuseError',
    'LedgerError',
    'DuplicateVoteError',
    'UnknownParticipantError',
    'PollingTimeoutError',
    'Ballot',
    'Choice',
    'VoteEncoder',
    'RetryPolicy',
    'poll',
    'poll_for_totals',
]
