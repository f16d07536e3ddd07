"""Prover backends: setup, execute, prove and verify guest programs.

A backend is the verifiable-computation engine the orchestrator drives. The
protocol logic only depends on :class:`ProverBackend`; concrete engines are
looked up by name through the registry below.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional, Protocol

from .errors import CycleProofError, ProvingError, SetupFailure, UnknownBackend
from .guest import DeferredProof, ExecutionReport, GuestEnv, ProgramInput, RecordingVerifier
from .keys import KeyPair, ProvingKey, VerifyingKey
from .program import Program
from .transcript import Transcript
from .types import ProgramFingerprint, ProofArtifact, ProofKind, commitment_digest

logger = logging.getLogger(__name__)


class ProverBackend(Protocol):
    name: str

    def setup(self, program: Program) -> KeyPair:
        """Derive the key pair for ``program``. Raises SetupFailure."""

    def execute(self, program: Program, stdin: ProgramInput) -> tuple[bytes, ExecutionReport]:
        """Run the guest without proving or checking embedded proofs."""

    def prove(
        self,
        proving_key: ProvingKey,
        stdin: ProgramInput,
        kind: ProofKind = ProofKind.COMPRESSED,
    ) -> ProofArtifact:
        """Run the guest and produce a proof artifact. Raises ProvingError."""

    def verify(self, artifact: ProofArtifact, verifying_key: VerifyingKey) -> bool:
        """Return True iff ``artifact`` is a valid proof under ``verifying_key``."""


###############################################################################
# Backend registry helpers


_BACKENDS: Dict[str, type] = {}


def register_backend(cls: type) -> type:
    _BACKENDS[cls.name] = cls
    return cls


def get_backend(name: str, **kwargs: Any) -> ProverBackend:
    try:
        backend_cls = _BACKENDS[name]
    except KeyError as exc:
        raise UnknownBackend(
            f"unknown prover backend {name!r} (available: {', '.join(available_backends())})"
        ) from exc
    return backend_cls(**kwargs)


def available_backends() -> List[str]:
    return sorted(_BACKENDS.keys())


###############################################################################
# Embedded verification while proving


class DeferredProofVerifier:
    """Checks embedded claims against the proofs queued on the input.

    Proofs are consumed in the order they were written. A claim is accepted
    only if the next queued proof was produced under the claimed fingerprint,
    is a compressed proof, carries public values hashing to the claimed
    digest, and verifies under its backend.
    """

    def __init__(self, backend: "_EnvelopeBackend", proofs: List[DeferredProof]) -> None:
        self._backend = backend
        self._pending = list(proofs)
        self.consumed: List[str] = []

    @property
    def unconsumed(self) -> int:
        return len(self._pending)

    def verify(self, fingerprint: ProgramFingerprint, expected_digest: bytes) -> bool:
        if not self._pending:
            logger.debug("embedded claim with no deferred proof supplied")
            return False
        deferred = self._pending.pop(0)
        artifact, vk = deferred.artifact, deferred.verifying_key
        if vk.fingerprint != fingerprint or artifact.fingerprint != fingerprint:
            logger.debug(
                "deferred proof fingerprint %s does not match claimed %s",
                artifact.fingerprint.hex()[:16], fingerprint.hex()[:16],
            )
            return False
        if artifact.kind is not ProofKind.COMPRESSED:
            logger.debug("deferred proof is %s, only compressed proofs embed", artifact.kind.value)
            return False
        if commitment_digest(artifact.public_values) != bytes(expected_digest):
            logger.debug("deferred proof public values do not match the claimed digest")
            return False
        if not self._backend.verify(artifact, vk):
            logger.debug("deferred proof failed verification")
            return False
        self.consumed.append(self._backend.binding_of(artifact))
        return True


###############################################################################
# Envelope backends


MAX_ENVELOPE_BYTES = 1 << 16


def _canonical_json(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def decode_envelope(blob: bytes) -> Optional[Dict[str, Any]]:
    """Parse a proof blob, returning None if it is not a well-formed envelope."""
    blob = bytes(blob)
    if len(blob) > MAX_ENVELOPE_BYTES:
        return None
    try:
        envelope = json.loads(blob.decode("utf-8"))
    except (ValueError, RecursionError):
        return None
    if not isinstance(envelope, dict):
        return None
    return envelope


class _EnvelopeBackend:
    """Shared guest runner for backends whose blob is a JSON envelope."""

    name = "envelope"
    format_id = "cycleproof.envelope.v1"
    sealed = True

    def setup(self, program: Program) -> KeyPair:
        if not callable(program.entry):
            raise SetupFailure(f"program {program.name!r} has no callable entry point")
        if not program.image:
            raise SetupFailure(f"program {program.name!r} has an empty image")
        vk = VerifyingKey(fingerprint=program.fingerprint, backend=self.name)
        return KeyPair(proving_key=ProvingKey(program=program, verifying_key=vk), verifying_key=vk)

    def execute(self, program: Program, stdin: ProgramInput) -> tuple[bytes, ExecutionReport]:
        env = GuestEnv(stdin, RecordingVerifier())
        start = time.perf_counter()
        try:
            program.entry(env)
        except Exception as exc:
            raise ProvingError(f"execution of {program.name!r} failed: {exc}") from exc
        env.report.wall_seconds = time.perf_counter() - start
        return env.public_values or b"", env.report

    def prove(
        self,
        proving_key: ProvingKey,
        stdin: ProgramInput,
        kind: ProofKind = ProofKind.COMPRESSED,
    ) -> ProofArtifact:
        kind = ProofKind(kind)
        if proving_key.verifying_key.backend != self.name:
            raise ProvingError(
                f"proving key was set up on {proving_key.verifying_key.backend!r}, not {self.name!r}"
            )
        program = proving_key.program
        verifier = DeferredProofVerifier(self, stdin.proofs)
        env = GuestEnv(stdin, verifier)
        start = time.perf_counter()
        try:
            program.entry(env)
        except CycleProofError as exc:
            raise ProvingError(f"guest {program.name!r} aborted: {exc}") from exc
        except Exception as exc:
            raise ProvingError(f"guest {program.name!r} crashed: {exc}") from exc
        public_values = env.public_values
        if public_values is None:
            raise ProvingError(f"guest {program.name!r} committed no public values")
        if verifier.unconsumed:
            logger.warning("%d deferred proof(s) supplied but never verified", verifier.unconsumed)

        fingerprint = proving_key.fingerprint
        seal = self._compute_seal(fingerprint, kind, public_values, verifier.consumed)
        envelope = {
            "format": self.format_id,
            "backend": self.name,
            "kind": kind.value,
            "fingerprint": fingerprint.hex(),
            "public_values_digest": commitment_digest(public_values).hex(),
            "deferred": list(verifier.consumed),
            "seal": seal,
        }
        logger.debug(
            "proved %s (%s) in %.4fs, %d units",
            program.name, kind.value, time.perf_counter() - start, env.report.total_units,
        )
        return ProofArtifact(
            public_values=public_values,
            blob=_canonical_json(envelope),
            fingerprint=fingerprint,
            kind=kind,
        )

    def verify(self, artifact: ProofArtifact, verifying_key: VerifyingKey) -> bool:
        if verifying_key.backend != self.name:
            return False
        if artifact.fingerprint != verifying_key.fingerprint:
            return False
        envelope = decode_envelope(artifact.blob)
        if envelope is None or _canonical_json(envelope) != artifact.blob:
            return False
        if envelope.get("format") != self.format_id or envelope.get("backend") != self.name:
            return False
        if envelope.get("kind") != artifact.kind.value:
            return False
        if envelope.get("fingerprint") != verifying_key.fingerprint.hex():
            return False
        if envelope.get("public_values_digest") != commitment_digest(artifact.public_values).hex():
            return False
        deferred = envelope.get("deferred")
        if not isinstance(deferred, list) or not all(isinstance(d, str) for d in deferred):
            return False
        if not self.sealed:
            return True
        try:
            expected = self._compute_seal(
                verifying_key.fingerprint, artifact.kind, artifact.public_values, deferred
            )
        except ValueError:
            return False
        return envelope.get("seal") == expected

    def binding_of(self, artifact: ProofArtifact) -> str:
        """Value a consuming proof records to bind itself to ``artifact``."""
        envelope = decode_envelope(artifact.blob) or {}
        return str(envelope.get("seal") or commitment_digest(artifact.public_values).hex())

    def _compute_seal(
        self,
        fingerprint: ProgramFingerprint,
        kind: ProofKind,
        public_values: bytes,
        deferred: List[str],
    ) -> str:
        return ""


@register_backend
class TranscriptBackend(_EnvelopeBackend):
    """Transparent reference engine.

    The seal is a Fiat-Shamir digest over the fingerprint, the proof kind,
    the public values and the seals of every proof verified inside the guest,
    so a proof commits to the whole chain of proofs behind it. Verification
    recomputes the seal. This gives tamper evidence and chaining; it is not
    succinct and not zero-knowledge.
    """

    name = "transcript"
    format_id = "cycleproof.transcript.v1"

    def _compute_seal(
        self,
        fingerprint: ProgramFingerprint,
        kind: ProofKind,
        public_values: bytes,
        deferred: List[str],
    ) -> str:
        tx = Transcript(self.format_id)
        tx.absorb_bytes(fingerprint.to_bytes())
        tx.absorb_label(ProofKind(kind).value)
        tx.absorb_bytes(bytes(public_values))
        tx.absorb_many(bytes.fromhex(d) for d in deferred)
        return tx.challenge_bytes(32).hex()


@register_backend
class MockBackend(_EnvelopeBackend):
    """Unsealed proofs for fast dry runs.

    Guests still run with embedded claims checked for fingerprint and digest,
    but the resulting blob carries no seal and verification only checks that
    the envelope matches the artifact.
    """

    name = "mock"
    format_id = "cycleproof.mock.v1"
    sealed = False
