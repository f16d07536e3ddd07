"""cycleproof - recursive proof chains that witness cycles among participants.

Usage:
    from cycleproof import ChainOrchestrator

    orchestrator = ChainOrchestrator()
    result = orchestrator.run([1, 2, 3], close=True)
    print(result.report.verdict.message)   # There is indeed a cycle.
"""

__version__ = "0.1.0"

from .backend import (
    MockBackend,
    ProverBackend,
    TranscriptBackend,
    available_backends,
    get_backend,
    register_backend,
)
from .errors import (
    ChainStateError,
    ConfigError,
    CycleProofError,
    EmbeddedVerificationFailure,
    FingerprintMismatch,
    GuestIOError,
    InvalidIdentity,
    ProvingError,
    ProvingFailure,
    SetupFailure,
    UnknownBackend,
    UnsupportedProofKind,
)
from .extractor import CycleReport, CycleVerdict, extract_cycle, inspect_commitment
from .guest import EmbeddedVerifier, ExecutionReport, GuestEnv, ProgramInput
from .keys import DEFAULT_REGISTRY, KeyPair, KeyRegistry, ProvingKey, VerifyingKey
from .orchestrator import Chain, ChainOrchestrator, ChainResult, ChainState, run_chains
from .program import Program
from .step import CYCLE_PROGRAM, cycle_guest, cycle_step
from .types import (
    Commitment,
    ProgramFingerprint,
    ProofArtifact,
    ProofKind,
    commitment_digest,
    expect_compressed,
    validate_identity,
)

__all__ = [
    "__version__",
    "CYCLE_PROGRAM",
    "Chain",
    "ChainOrchestrator",
    "ChainResult",
    "ChainState",
    "ChainStateError",
    "Commitment",
    "ConfigError",
    "CycleProofError",
    "CycleReport",
    "CycleVerdict",
    "DEFAULT_REGISTRY",
    "EmbeddedVerificationFailure",
    "EmbeddedVerifier",
    "ExecutionReport",
    "FingerprintMismatch",
    "GuestEnv",
    "GuestIOError",
    "InvalidIdentity",
    "KeyPair",
    "KeyRegistry",
    "MockBackend",
    "Program",
    "ProgramFingerprint",
    "ProgramInput",
    "ProofArtifact",
    "ProofKind",
    "ProverBackend",
    "ProvingError",
    "ProvingFailure",
    "ProvingKey",
    "SetupFailure",
    "TranscriptBackend",
    "UnknownBackend",
    "UnsupportedProofKind",
    "VerifyingKey",
    "available_backends",
    "commitment_digest",
    "cycle_guest",
    "cycle_step",
    "expect_compressed",
    "extract_cycle",
    "get_backend",
    "inspect_commitment",
    "register_backend",
    "run_chains",
    "validate_identity",
]
