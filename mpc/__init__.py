"""Committee-side protocols: verifiable secret sharing, distributed key generation, threshold tally."""

from .secret_sharing import (
    # Exceptions
    MPCError,
    InsufficientSharesError,
    ShareVerificationError,
    RoundReplayError,
    TallyOutOfRangeError,

    # Secret sharing
    Polynomial,
    ShareCommitment,
    KeyShare,
    ThresholdSecretSharing,
    lagrange_coefficients,
    combine_points,
)
from .share_transport import MemberIdentity, MemberPublicKeys, EncryptedShare
from .dkg import (
    DKGParticipant,
    DKGState,
    DKGStatus,
    DKGStateError,
    Round1Message,
    Round2Message,
    Complaint,
    ComplaintResponse,
    agree_on_qualified_dealers,
)
from .tally import (
    PartialDecryption,
    PartialDecryptor,
    TallyAggregator,
    TallyResult,
    discrete_log,
    verify_partial,
)

__all__ = [
    # Exceptions
    'MPCError',
    'InsufficientSharesError',
    'ShareVerificationError',
    'RoundReplayError',
    'TallyOutOfRangeError',
    'DKGStateError',

    # Secret sharing
    'Polynomial',
    'ShareCommitment',
    'KeyShare',
    'ThresholdSecretSharing',
    'lagrange_coefficients',
    'combine_points',

    # DKG
    'MemberIdentity',
    'MemberPublicKeys',
    'EncryptedShare',
    'DKGParticipant',
    'DKGState',
    'DKGStatus',
    'Round1Message',
    'Round2Message',
    'Complaint',
    'ComplaintResponse',
    'agree_on_qualified_dealers',

    # Tally
    'PartialDecryption',
    'PartialDecryptor',
    'TallyAggregator',
    'TallyResult',
    'discrete_log',
    'verify_partial',
]
