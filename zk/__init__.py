"""
Zero-Knowledge Ballot Proofs
Prove/verify gateway with an in-process sigma backend and a snarkjs Groth16 backend
"""

from .zk_proofs import (
    # Core classes
    ProofGateway,
    ProofArtifact,
    PublicSignals,
    ProofBackend,
    SigmaBallotBackend,
    SnarkjsBackend,

    # Exceptions
    ZKError,
    InvalidProofError,
    ProofGenerationError,
)

__all__ = [
    # Classes
    'ProofGateway',
    'ProofArtifact',
    'PublicSignals',
    'ProofBackend',
    'SigmaBallotBackend',
    'SnarkjsBackend',

    # Exceptions
    'ZKError',
    'InvalidProofError',
    'ProofGenerationError',
]
