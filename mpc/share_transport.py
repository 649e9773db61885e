"""
Authenticated share delivery between committee members.

Dealers sign their Feldman commitments with Ed25519 and seal each
per-recipient share with an ephemeral X25519 exchange, HKDF-SHA256 and
AES-GCM, so shares can be relayed through the public ledger.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, x25519
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from curve.babyjubjub import SUBGROUP_ORDER
from .secret_sharing import ShareCommitment, ShareVerificationError

logger = logging.getLogger(__name__)

SHARE_KDF_INFO = b"zkvote-dkg-share"
COMMITMENT_DOMAIN = b"zkvote-dkg-commitment"
SHARE_BYTES = 32


def _raw_public_bytes(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


@dataclass(frozen=True)
class MemberPublicKeys:
    """Published transport keys of one committee member"""
    index: int
    signing_public: bytes
    kem_public: bytes


@dataclass
class MemberIdentity:
    """Long-term transport keys held privately by a committee member"""
    index: int
    signing_key: ed25519.Ed25519PrivateKey = field(
        default_factory=ed25519.Ed25519PrivateKey.generate, repr=False)
    kem_key: x25519.X25519PrivateKey = field(
        default_factory=x25519.X25519PrivateKey.generate, repr=False)

    def public(self) -> MemberPublicKeys:
        return MemberPublicKeys(
            index=self.index,
            signing_public=_raw_public_bytes(self.signing_key.public_key()),
            kem_public=_raw_public_bytes(self.kem_key.public_key()),
        )


@dataclass(frozen=True)
class EncryptedShare:
    """A share sealed for a single recipient"""
    dealer_index: int
    recipient_index: int
    ephemeral_public: bytes
    nonce: bytes
    ciphertext: bytes


def _associated_data(round_id: str, dealer_index: int, recipient_index: int) -> bytes:
    return f"{round_id}||{dealer_index}||{recipient_index}".encode()


def _derive_key(shared_secret: bytes, context: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=SHARE_KDF_INFO + b"||" + context,
    ).derive(shared_secret)


def seal_share(dealer_index: int, recipient: MemberPublicKeys, share: int, round_id: str) -> EncryptedShare:
    """Encrypt a scalar share to the recipient's X25519 key"""
    ephemeral = x25519.X25519PrivateKey.generate()
    shared_secret = ephemeral.exchange(
        x25519.X25519PublicKey.from_public_bytes(recipient.kem_public))
    aad = _associated_data(round_id, dealer_index, recipient.index)
    key = _derive_key(shared_secret, aad)

    nonce = os.urandom(12)
    ciphertext = AESGCM(key).encrypt(
        nonce, share.to_bytes(SHARE_BYTES, 'big'), aad)

    return EncryptedShare(
        dealer_index=dealer_index,
        recipient_index=recipient.index,
        ephemeral_public=_raw_public_bytes(ephemeral.public_key()),
        nonce=nonce,
        ciphertext=ciphertext,
    )


def open_share(sealed: EncryptedShare, recipient: MemberIdentity, round_id: str) -> int:
    """Decrypt a share addressed to this member"""
    if sealed.recipient_index != recipient.index:
        raise ShareVerificationError(
            f"Share addressed to member {sealed.recipient_index}",
            round_id=round_id, party_index=sealed.dealer_index)

    aad = _associated_data(round_id, sealed.dealer_index, recipient.index)
    try:
        shared_secret = recipient.kem_key.exchange(
            x25519.X25519PublicKey.from_public_bytes(sealed.ephemeral_public))
        key = _derive_key(shared_secret, aad)
        plaintext = AESGCM(key).decrypt(sealed.nonce, sealed.ciphertext, aad)
    except (InvalidTag, ValueError) as e:
        raise ShareVerificationError(
            f"Cannot decrypt share: {str(e) or 'authentication failed'}",
            round_id=round_id, party_index=sealed.dealer_index) from e

    share = int.from_bytes(plaintext, 'big')
    if share >= SUBGROUP_ORDER:
        raise ShareVerificationError(
            "Decrypted share is not a reduced scalar",
            round_id=round_id, party_index=sealed.dealer_index)
    return share


def _commitment_message(commitment: ShareCommitment, dealer_index: int, round_id: str) -> bytes:
    header = f"{round_id}||{dealer_index}||".encode()
    return COMMITMENT_DOMAIN + b"||" + header + commitment.to_bytes()


def sign_commitment(identity: MemberIdentity, commitment: ShareCommitment, round_id: str) -> bytes:
    return identity.signing_key.sign(
        _commitment_message(commitment, identity.index, round_id))


def verify_commitment_signature(public: MemberPublicKeys, commitment: ShareCommitment,
                                signature: bytes, round_id: str) -> bool:
    try:
        ed25519.Ed25519PublicKey.from_public_bytes(public.signing_public).verify(
            signature, _commitment_message(commitment, public.index, round_id))
        return True
    except (InvalidSignature, ValueError):
        logger.warning(
            f"Invalid commitment signature from member {public.index} in round {round_id}")
        return False


def fingerprint(public: Optional[MemberPublicKeys]) -> str:
    """Short hex tag for log lines"""
    if public is None:
        return "unknown"
    return public.signing_public.hex()[:8]
