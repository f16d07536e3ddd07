"""Chain orchestration: genesis, extend, close, verify.

Every step runs the same guest. Steps differ only in which identity the
orchestrator picks and whether a predecessor proof is attached::

    GENESIS -> EXTEND* -> CLOSE -> VERIFY_FINAL -> {CYCLE_DETECTED | NO_CYCLE | INVALID_PROOF}

A chain is strictly sequential: step k consumes step k-1's public output and
proof. Independent chains share nothing but the read-only key pair and can be
run side by side with :func:`run_chains`.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from .backend import ProverBackend, get_backend
from .errors import (
    ChainStateError,
    CycleProofError,
    FingerprintMismatch,
    ProvingError,
    ProvingFailure,
    UnsupportedProofKind,
)
from .extractor import CycleReport, CycleVerdict, extract_cycle
from .guest import ExecutionReport, ProgramInput
from .keys import DEFAULT_REGISTRY, KeyPair, KeyRegistry
from .program import Program
from .step import CYCLE_PROGRAM
from .types import (
    Commitment,
    ProgramFingerprint,
    ProofArtifact,
    ProofKind,
    expect_compressed,
    validate_identity,
)

logger = logging.getLogger(__name__)


class ChainState(str, Enum):
    GENESIS = "genesis"
    EXTEND = "extend"
    CLOSE = "close"
    VERIFY_FINAL = "verify_final"
    CYCLE_DETECTED = "cycle_detected"
    NO_CYCLE = "no_cycle"
    INVALID_PROOF = "invalid_proof"
    FAILED = "failed"


_TERMINAL = {
    ChainState.CYCLE_DETECTED,
    ChainState.NO_CYCLE,
    ChainState.INVALID_PROOF,
    ChainState.FAILED,
}

_VERDICT_STATES = {
    CycleVerdict.CYCLE_DETECTED: ChainState.CYCLE_DETECTED,
    CycleVerdict.NO_CYCLE: ChainState.NO_CYCLE,
    CycleVerdict.INVALID_PROOF: ChainState.INVALID_PROOF,
}


class ChainOrchestrator:
    """Drives proving calls for one program on one backend.

    Keys are fetched from ``registry`` on first use, so every orchestrator
    (and every chain) for the same program shares one key pair.
    """

    def __init__(
        self,
        backend: Optional[ProverBackend] = None,
        program: Program = CYCLE_PROGRAM,
        registry: KeyRegistry = DEFAULT_REGISTRY,
        proof_kind: ProofKind = ProofKind.COMPRESSED,
    ) -> None:
        self.backend = backend if backend is not None else get_backend("transcript")
        self.program = program
        self.registry = registry
        self.proof_kind = ProofKind(proof_kind)

    def setup(self) -> KeyPair:
        """Fetch or derive the key pair. Raises SetupFailure."""
        return self.registry.get(self.backend, self.program)

    @property
    def keys(self) -> KeyPair:
        return self.setup()

    @property
    def fingerprint(self) -> ProgramFingerprint:
        return self.keys.fingerprint

    def prove_step(
        self,
        step_index: int,
        identity: int,
        incoming: Commitment,
        predecessor: Optional[ProofArtifact] = None,
    ) -> ProofArtifact:
        """Prove one step of the guest.

        Writes the identity, the chain's fingerprint and ``incoming`` to the
        guest input and attaches ``predecessor`` for embedded verification.
        Any engine failure is re-raised as :class:`ProvingFailure` carrying
        ``step_index``.
        """
        identity = validate_identity(identity)
        keys = self.keys
        if predecessor is not None and predecessor.fingerprint != keys.fingerprint:
            raise FingerprintMismatch(keys.fingerprint.hex(), predecessor.fingerprint.hex())

        stdin = ProgramInput()
        stdin.write_u8(identity)
        stdin.write_words(keys.fingerprint.words)
        stdin.write_bytes(incoming.to_bytes())
        if predecessor is not None:
            expect_compressed(predecessor)
            stdin.write_proof(predecessor, keys.verifying_key)

        logger.info(
            "proving step %d: identity=%d incoming_len=%d", step_index, identity, len(incoming)
        )
        start = time.perf_counter()
        try:
            artifact = self.backend.prove(keys.proving_key, stdin, self.proof_kind)
        except ProvingError as exc:
            logger.error("step %d failed: %s", step_index, exc)
            raise ProvingFailure(step_index, str(exc)) from exc
        except Exception as exc:
            logger.error("step %d failed in backend %r: %s", step_index, self.backend.name, exc)
            raise ProvingFailure(step_index, f"{type(exc).__name__}: {exc}") from exc
        logger.info(
            "step %d proven in %.3fs, commitment_len=%d",
            step_index, time.perf_counter() - start, len(artifact.commitment),
        )
        return artifact

    def execute(self, identity: int = 1) -> tuple[bytes, ExecutionReport]:
        """Run the guest once, unproven, from an empty commitment.

        The fingerprint is all zeros; with an empty commitment the guest never
        reaches its embedded verification, so no proof is needed.
        """
        stdin = ProgramInput()
        stdin.write_u8(validate_identity(identity))
        stdin.write_words(ProgramFingerprint.zero().words)
        stdin.write_bytes(b"")
        return self.backend.execute(self.program, stdin)

    def verify_final(self, artifact: ProofArtifact) -> CycleReport:
        return extract_cycle(self.backend, artifact, self.keys.verifying_key)

    def new_chain(self) -> "Chain":
        return Chain(self)

    def run(
        self,
        identities: Sequence[int],
        close: bool = True,
        closing_identity: Optional[int] = None,
    ) -> "ChainResult":
        """Build a chain through ``identities``, optionally close it, and verify it."""
        if not identities:
            raise ChainStateError("a chain needs at least one identity")
        chain = self.new_chain()
        chain.genesis(identities[0])
        for identity in identities[1:]:
            chain.extend(identity)
        if close:
            chain.close(closing_identity)
        report = chain.finalize()
        return ChainResult(identities=list(chain.commitment), artifacts=chain.artifacts, report=report)


class Chain:
    """One chain under construction. Not safe to share between threads."""

    def __init__(self, orchestrator: ChainOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._artifacts: list[ProofArtifact] = []
        self._state = ChainState.GENESIS
        self.report: Optional[CycleReport] = None
        self.error: Optional[CycleProofError] = None

    @property
    def state(self) -> ChainState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in _TERMINAL

    @property
    def artifacts(self) -> list[ProofArtifact]:
        return list(self._artifacts)

    @property
    def last(self) -> Optional[ProofArtifact]:
        return self._artifacts[-1] if self._artifacts else None

    @property
    def commitment(self) -> Commitment:
        last = self.last
        return last.commitment if last is not None else Commitment.empty()

    @property
    def genesis_identity(self) -> Optional[int]:
        return self._artifacts[0].commitment.identities()[0] if self._artifacts else None

    def _require(self, *states: ChainState, action: str) -> None:
        if self._state is ChainState.FAILED:
            raise ChainStateError(f"cannot {action}: chain halted after {self.error}")
        if self._state not in states:
            raise ChainStateError(f"cannot {action} in state {self._state.value}")

    def _step(
        self,
        identity: int,
        incoming: Commitment,
        predecessor: Optional[ProofArtifact],
    ) -> ProofArtifact:
        step_index = len(incoming) + 1
        try:
            artifact = self._orchestrator.prove_step(step_index, identity, incoming, predecessor)
        except (ProvingFailure, FingerprintMismatch, UnsupportedProofKind) as exc:
            self._state = ChainState.FAILED
            self.error = exc
            raise
        self._artifacts.append(artifact)
        return artifact

    def genesis(self, identity: int) -> ProofArtifact:
        self._require(ChainState.GENESIS, action="run genesis")
        artifact = self._step(identity, Commitment.empty(), None)
        self._state = ChainState.EXTEND
        return artifact

    def extend(self, identity: int, predecessor: Optional[ProofArtifact] = None) -> ProofArtifact:
        """Append ``identity``.

        ``predecessor`` defaults to this chain's last proof. An empty chain
        may instead join midway by continuing from an artifact received from
        another participant; once a chain has proofs, only its own last
        proof can be extended.
        """
        identity = validate_identity(identity)
        joining = predecessor is not None and not self._artifacts
        if joining:
            self._require(ChainState.GENESIS, ChainState.EXTEND, action="join")
        else:
            self._require(ChainState.EXTEND, action="extend")
        if predecessor is not None and self._artifacts and predecessor != self.last:
            raise ChainStateError("predecessor is not this chain's last proof")
        previous = predecessor if predecessor is not None else self.last
        if previous is None:
            raise ChainStateError("cannot extend without a predecessor proof")
        artifact = self._step(identity, previous.commitment, previous)
        self._state = ChainState.EXTEND
        return artifact

    def close(self, identity: Optional[int] = None) -> ProofArtifact:
        """Append an identity already in the commitment, manufacturing a cycle witness.

        Defaults to the genesis identity.
        """
        self._require(ChainState.EXTEND, action="close")
        previous = self.last
        if previous is None:
            raise ChainStateError("cannot close an empty chain")
        if identity is None:
            identity = self.genesis_identity
        identity = validate_identity(identity)
        if identity not in previous.commitment:
            raise ChainStateError(
                f"closing identity {identity} does not appear in {previous.commitment.identities()}"
            )
        artifact = self._step(identity, previous.commitment, previous)
        self._state = ChainState.CLOSE
        return artifact

    def finalize(self) -> CycleReport:
        self._require(ChainState.EXTEND, ChainState.CLOSE, action="finalize")
        final = self.last
        if final is None:
            raise ChainStateError("cannot finalize an empty chain")
        self._state = ChainState.VERIFY_FINAL
        report = self._orchestrator.verify_final(final)
        self.report = report
        self._state = _VERDICT_STATES[report.verdict]
        return report


@dataclass
class ChainResult:
    identities: list[int]
    artifacts: list[ProofArtifact] = field(default_factory=list)
    report: Optional[CycleReport] = None
    error: Optional[CycleProofError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None

    @property
    def verdict(self) -> Optional[CycleVerdict]:
        return self.report.verdict if self.report is not None else None


def run_chains(
    orchestrator: ChainOrchestrator,
    plans: Sequence[Sequence[int]],
    max_workers: int = 4,
    close: bool = True,
    closing_identity: Optional[int] = None,
) -> list[ChainResult]:
    """Build independent chains concurrently.

    Keys are set up before any worker starts. Results come back in plan
    order; a chain that fails is reported in its result rather than raised.
    """
    orchestrator.setup()
    results: list[Optional[ChainResult]] = [None] * len(plans)

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {
            executor.submit(orchestrator.run, list(plan), close, closing_identity): idx
            for idx, plan in enumerate(plans)
        }
        for future in as_completed(futures):
            idx = futures[future]
            try:
                results[idx] = future.result()
            except CycleProofError as exc:
                logger.error("chain %d (%s) failed: %s", idx, list(plans[idx]), exc)
                results[idx] = ChainResult(identities=list(plans[idx]), error=exc)

    return [r for r in results if r is not None]
