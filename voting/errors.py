"""Exceptions raised on the voter and ledger side."""

from typing import Optional


class VotingError(Exception):
    """Base exception for voter-side operations"""
    pass


class RandomnessReuseError(VotingError):
    """The same encryption randomness was used twice under one key"""
    pass


class LedgerError(VotingError):
    """The ledger refused or could not serve a request"""

    def __init__(self, message: str, voter_index: Optional[int] = None, member_index: Optional[int] = None):
        if voter_index is not None:
            message = f"{message} [voter={voter_index}]"
        if member_index is not None:
            message = f"{message} [member={member_index}]"
        super().__init__(message)
        self.voter_index = voter_index
        self.member_index = member_index


class DuplicateVoteError(LedgerError):
    """Voter already has an accepted ballot"""
    pass


class UnknownParticipantError(LedgerError):
    """Voter or committee member is not registered"""
    pass


class PollingTimeoutError(VotingError):
    """Polling gave up before the awaited value appeared"""

    def __init__(self, message: str, attempts: int, elapsed: float):
        super().__init__(f"{message} after {attempts} attempts in {elapsed:.2f}s")
        self.attempts = attempts
        self.elapsed = elapsed
