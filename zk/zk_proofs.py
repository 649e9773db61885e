"""
Ballot Validity Proofs
======================
Prove/verify gateway for the statement "this ballot is a one-hot
encryption of the voter's on-record weight under the joint key".

Two interchangeable backends:
    SigmaBallotBackend  in-process Fiat-Shamir sigma protocol (default)
    SnarkjsBackend      Groth16 through the snarkjs CLI and circuit artefacts

Public signals cross the gateway as a validated PublicSignals record; raw
signal lists are never trusted downstream.
"""

import asyncio
import functools
import hashlib
import json
import logging
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config.config import ZKConfig
from curve.babyjubjub import (
    FIELD_MODULUS,
    IDENTITY,
    SUBGROUP_ORDER,
    CurveError,
    Point,
    base_mul,
    encode,
    is_in_subgroup,
    random_scalar,
    scalar_mul,
)
from voting.encoder import NUM_SLOTS, Ballot, Choice, VoteEncoder

logger = logging.getLogger(__name__)

SIGMA_SCHEME = "sigma-onehot-v1"
SIGMA_DOMAIN = b"zkvote-ballot-proof"
SIGNAL_COUNT = 4 * NUM_SLOTS

# ============================================================================
# EXCEPTIONS
# ============================================================================


class ZKError(Exception):
    """Base exception for ZK operations"""
    pass


class ProofGenerationError(ZKError):
    """Proof generation failed"""
    pass


class InvalidProofError(ZKError):
    """A ballot proof did not verify"""

    def __init__(self, message: str, voter_index: Optional[int] = None):
        if voter_index is not None:
            message = f"{message} [voter={voter_index}]"
        super().__init__(message)
        self.voter_index = voter_index

# ============================================================================
# PUBLIC SIGNALS
# ============================================================================


@dataclass(frozen=True)
class PublicSignals:
    """Tagged view of the flat signal list R0..R2, M0..M2 (x, y each)"""
    R: Tuple[Point, ...]
    M: Tuple[Point, ...]

    @classmethod
    def from_list(cls, signals: Sequence[Any]) -> "PublicSignals":
        """Parse and validate; raises ValueError or a CurveError"""
        if len(signals) != SIGNAL_COUNT:
            raise ValueError(
                f"Expected {SIGNAL_COUNT} public signals, got {len(signals)}")

        values = []
        for raw in signals:
            value = int(raw)
            if not 0 <= value < FIELD_MODULUS:
                raise ValueError(f"Public signal {raw} outside the field")
            values.append(value)

        points = []
        for i in range(0, SIGNAL_COUNT, 2):
            point = Point(values[i], values[i + 1])
            if not is_in_subgroup(point):
                raise ValueError(f"Public signal point {point} outside the subgroup")
            points.append(point)

        return cls(tuple(points[:NUM_SLOTS]), tuple(points[NUM_SLOTS:]))

    @classmethod
    def from_ballot(cls, ballot: Ballot) -> "PublicSignals":
        return cls(ballot.R, ballot.M)

    def to_ballot(self) -> Ballot:
        return Ballot(self.R, self.M)

    def to_list(self) -> List[str]:
        return [str(v) for v in self.to_ballot().flatten()]


@dataclass
class ProofArtifact:
    """Container for proof and metadata"""
    proof: Dict[str, Any]
    public_signals: List[str]
    backend: str
    generation_time: float
    timestamp: float = field(default_factory=time.time)
    expires_at: Optional[float] = None

    def is_expired(self) -> bool:
        return self.expires_at is not None and time.time() > self.expires_at

# ============================================================================
# FIAT-SHAMIR SIGMA PROOFS
# ============================================================================


def _challenge(*parts) -> int:
    h = hashlib.sha256(SIGMA_DOMAIN)
    for part in parts:
        if isinstance(part, Point):
            h.update(encode(part))
        elif isinstance(part, int):
            h.update(part.to_bytes(32, 'big'))
        else:
            h.update(str(part).encode())
        h.update(b"|")
    return int.from_bytes(h.digest(), 'big') % SUBGROUP_ORDER


def _slot_target(M: Point, branch: int, weight_point: Point) -> Point:
    return M - weight_point if branch else M


def _prove_slot(context: List[Any], joint_pk: Point, R: Point, M: Point, r: int,
                carries_weight: bool, weight_point: Point) -> Dict[str, List[str]]:
    """Disjunctive Chaum-Pedersen: (R, M) encrypts 0 or weight"""
    real = 1 if carries_weight else 0
    fake = 1 - real

    e = [0, 0]
    z = [0, 0]
    commitments = [None, None]

    e[fake] = random_scalar()
    z[fake] = random_scalar()
    target = _slot_target(M, fake, weight_point)
    commitments[fake] = (base_mul(z[fake]) - scalar_mul(e[fake], R),
                         scalar_mul(z[fake], joint_pk) - scalar_mul(e[fake], target))

    k = random_scalar()
    commitments[real] = (base_mul(k), scalar_mul(k, joint_pk))

    c = _challenge(*context, R, M, *commitments[0], *commitments[1])
    e[real] = (c - e[fake]) % SUBGROUP_ORDER
    z[real] = (k + e[real] * r) % SUBGROUP_ORDER

    return {'e': [str(v) for v in e], 'z': [str(v) for v in z]}


def _verify_slot(context: List[Any], joint_pk: Point, R: Point, M: Point,
                 proof: Dict[str, List[str]], weight_point: Point) -> bool:
    e = [int(v) % SUBGROUP_ORDER for v in proof['e']]
    z = [int(v) % SUBGROUP_ORDER for v in proof['z']]
    if len(e) != 2 or len(z) != 2:
        return False

    commitments = []
    for branch in (0, 1):
        target = _slot_target(M, branch, weight_point)
        commitments.append((base_mul(z[branch]) - scalar_mul(e[branch], R),
                            scalar_mul(z[branch], joint_pk) - scalar_mul(e[branch], target)))

    c = _challenge(*context, R, M, *commitments[0], *commitments[1])
    return (e[0] + e[1]) % SUBGROUP_ORDER == c


def prove_ballot(joint_pk: Point, ballot: Ballot, choice: Choice, weight: int,
                 randomness: Sequence[int]) -> Dict[str, Any]:
    """Per-slot 0-or-weight proofs plus a proof that the slots sum to weight"""
    weight_point = base_mul(weight)
    context = [joint_pk, weight, *ballot.R, *ballot.M]

    slots = [
        _prove_slot(context + [s], joint_pk, ballot.R[s], ballot.M[s],
                    randomness[s], s == int(choice), weight_point)
        for s in range(NUM_SLOTS)
    ]

    r_sum = sum(randomness) % SUBGROUP_ORDER
    k = random_scalar()
    A, C = base_mul(k), scalar_mul(k, joint_pk)
    e = _challenge(*context, "sum", A, C)
    z = (k + e * r_sum) % SUBGROUP_ORDER

    return {
        'scheme': SIGMA_SCHEME,
        'slots': slots,
        'sum': {'e': str(e), 'z': str(z)},
    }


def verify_ballot(joint_pk: Point, ballot: Ballot, proof: Dict[str, Any], weight: int) -> bool:
    if proof.get('scheme') != SIGMA_SCHEME:
        logger.warning(f"Unexpected proof scheme: {proof.get('scheme')}")
        return False
    slots = proof.get('slots')
    if not isinstance(slots, list) or len(slots) != NUM_SLOTS:
        return False

    weight_point = base_mul(weight)
    context = [joint_pk, weight, *ballot.R, *ballot.M]

    for s in range(NUM_SLOTS):
        if not _verify_slot(context + [s], joint_pk, ballot.R[s], ballot.M[s], slots[s], weight_point):
            logger.debug(f"Slot {s} range proof failed")
            return False

    R_sum = sum(ballot.R, IDENTITY)
    target = sum(ballot.M, IDENTITY) - weight_point
    e = int(proof['sum']['e']) % SUBGROUP_ORDER
    z = int(proof['sum']['z']) % SUBGROUP_ORDER
    A = base_mul(z) - scalar_mul(e, R_sum)
    C = scalar_mul(z, joint_pk) - scalar_mul(e, target)
    return _challenge(*context, "sum", A, C) == e

# ============================================================================
# BACKENDS
# ============================================================================


class ProofBackend(ABC):
    name = "abstract"

    @abstractmethod
    async def prove(self, joint_pk: Point, ballot: Ballot, choice: Choice, weight: int,
                    randomness: Sequence[int]) -> Dict[str, Any]:
        """Return the proof object for an already-encoded ballot"""

    @abstractmethod
    async def verify(self, joint_pk: Point, signals: PublicSignals,
                     proof: Dict[str, Any], weight: int) -> bool:
        """Check a proof against validated public signals"""


class SigmaBallotBackend(ProofBackend):
    """In-process sigma proofs; CPU work runs in the default executor"""
    name = "sigma"

    async def prove(self, joint_pk, ballot, choice, weight, randomness):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(prove_ballot, joint_pk, ballot, choice, weight, tuple(randomness)))

    async def verify(self, joint_pk, signals, proof, weight):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(verify_ballot, joint_pk, signals.to_ballot(), proof, weight))


class SnarkjsBackend(ProofBackend):
    """Groth16 via the snarkjs CLI against compiled circuit artefacts"""
    name = "snarkjs"

    def __init__(self, config: ZKConfig):
        self.config = config
        circuit = config.circuit_name
        self.wasm_file = config.build_dir / f"{circuit}_js" / f"{circuit}.wasm"
        self.zkey_file = config.build_dir / f"{circuit}_final.zkey"
        self.vkey_file = config.build_dir / f"{circuit}_vkey.json"

    def _check_artifacts(self, *paths: Path):
        missing = [str(p) for p in paths if not p.exists()]
        if missing:
            raise ProofGenerationError(f"Missing circuit artefacts: {missing}")

    async def _run(self, *args: str) -> Tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            self.config.snarkjs_bin, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.config.proof_timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ProofGenerationError(
                f"snarkjs {args[0]} {args[1]} timed out after {self.config.proof_timeout}s")
        return process.returncode, stdout.decode(), stderr.decode()

    async def prove(self, joint_pk, ballot, choice, weight, randomness):
        self._check_artifacts(self.wasm_file, self.zkey_file)
        witness = {
            'PK': [str(joint_pk.x), str(joint_pk.y)],
            'v': str(weight),
            'r': [str(r) for r in randomness],
            'o': str(Choice(choice).bitmask),
        }

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)
            input_file = temp_path / "input.json"
            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"
            input_file.write_text(json.dumps(witness))

            code, _, stderr = await self._run(
                'groth16', 'fullprove', str(input_file), str(self.wasm_file),
                str(self.zkey_file), str(proof_file), str(public_file))
            if code != 0:
                raise ProofGenerationError(f"Proof generation failed: {stderr}")

            proof = json.loads(proof_file.read_text())
            signals = json.loads(public_file.read_text())

        if [int(s) for s in signals] != ballot.flatten():
            raise ProofGenerationError(
                "Circuit public signals do not match the encoded ballot")
        return proof

    async def verify(self, joint_pk, signals, proof, weight):
        # snarkjs orders circuit outputs first, then the PK and v public inputs
        self._check_artifacts(self.vkey_file)
        public = signals.to_list() + [str(joint_pk.x), str(joint_pk.y), str(weight)]

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)
            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"
            proof_file.write_text(json.dumps(proof))
            public_file.write_text(json.dumps(public))

            code, stdout, stderr = await self._run(
                'groth16', 'verify', str(self.vkey_file), str(public_file), str(proof_file))

        if code != 0 and stderr:
            logger.warning(f"snarkjs verify failed: {stderr.strip()}")
        return code == 0 and "OK" in stdout

# ============================================================================
# GATEWAY
# ============================================================================


class ProofGateway:
    """Single entry point for ballot proving and verification"""

    def __init__(self, config: Optional[ZKConfig] = None, backend: Optional[ProofBackend] = None):
        self.config = config or ZKConfig()
        if backend is None:
            if self.config.backend == "snarkjs":
                backend = SnarkjsBackend(self.config)
            else:
                backend = SigmaBallotBackend()
        self.backend = backend
        self._current_encoder: Optional[VoteEncoder] = None
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_proofs)

    def _encoder(self, joint_pk: Point) -> VoteEncoder:
        """Encoder for the current election; a new joint key starts a new one"""
        encoder = self._current_encoder
        if encoder is None or encoder.joint_public_key != joint_pk:
            if encoder is not None:
                logger.info("Joint public key changed, starting a new ballot encoder")
            encoder = self._current_encoder = VoteEncoder(joint_pk)
        return encoder

    async def prove(self, joint_pk: Point, choice: Choice, weight: int,
                    randomness: Optional[Sequence[int]] = None) -> Tuple[Ballot, ProofArtifact]:
        """Encode a ballot and prove it well formed"""
        choice = Choice.parse(choice)
        ballot, scalars = self._encoder(joint_pk).encode_with_randomness(
            choice, weight, randomness)

        start_time = time.time()
        async with self._semaphore:
            try:
                proof = await self.backend.prove(joint_pk, ballot, choice, weight, scalars)
            except ZKError:
                raise
            except (OSError, ValueError, CurveError) as e:
                raise ProofGenerationError(f"{self.backend.name} prover failed: {e}") from e
        generation_time = time.time() - start_time

        artifact = ProofArtifact(
            proof=proof,
            public_signals=PublicSignals.from_ballot(ballot).to_list(),
            backend=self.backend.name,
            generation_time=generation_time,
            expires_at=time.time() + self.config.proof_ttl if self.config.proof_ttl else None,
        )
        logger.info(
            f"Generated {self.backend.name} ballot proof in {generation_time:.3f}s")
        return ballot, artifact

    async def verify(self, joint_pk: Point, ballot: Ballot, artifact: ProofArtifact, weight: int) -> bool:
        """True iff the proof shows the ballot is one-hot with the given weight"""
        start_time = time.time()

        if artifact.is_expired():
            logger.warning(f"Proof expired at {artifact.expires_at}")
            return False
        if artifact.backend != self.backend.name:
            logger.warning(
                f"Proof produced by {artifact.backend}, gateway uses {self.backend.name}")
            return False

        try:
            signals = PublicSignals.from_list(artifact.public_signals)
        except (ValueError, TypeError, CurveError) as e:
            logger.warning(f"Rejected malformed public signals: {e}")
            return False
        if signals.to_ballot() != ballot:
            logger.warning("Public signals do not match the submitted ballot")
            return False

        try:
            is_valid = await self.backend.verify(joint_pk, signals, artifact.proof, weight)
        except (KeyError, TypeError, ValueError, CurveError, OSError, ZKError) as e:
            logger.warning(f"Verification failed: {e}")
            return False

        logger.info(
            f"Verified {self.backend.name} ballot proof in {time.time() - start_time:.3f}s: "
            f"{'valid' if is_valid else 'invalid'}")
        return is_valid

    async def require_valid(self, joint_pk: Point, ballot: Ballot, artifact: ProofArtifact,
                            weight: int, voter_index: Optional[int] = None):
        if not await self.verify(joint_pk, ballot, artifact, weight):
            raise InvalidProofError("Ballot proof rejected", voter_index=voter_index)
