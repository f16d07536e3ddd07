"""Failure taxonomy for chain construction and verification."""
from __future__ import annotations

from typing import Optional


class CycleProofError(Exception):
    """Base class for every error raised by cycleproof."""


class InvalidIdentity(CycleProofError, ValueError):
    """An identity is not a single unsigned byte."""


class SetupFailure(CycleProofError):
    """The proving/verifying key pair could not be derived for a program."""


class EmbeddedVerificationFailure(CycleProofError):
    """A guest's check of its predecessor's proof failed; the guest aborted."""


class GuestIOError(CycleProofError):
    """The guest read past the end of its input or committed twice."""


class ProvingError(CycleProofError):
    """The engine could not produce a proof artifact."""


class ProvingFailure(CycleProofError):
    """A chain step could not be proven. Chain construction halts."""

    def __init__(self, step_index: int, reason: Optional[str] = None):
        self.step_index = step_index
        self.reason = reason
        message = f"proving failed at step {step_index}"
        if reason:
            message += f": {reason}"
        super().__init__(message)

    @property
    def embedded_verification_failed(self) -> bool:
        """True when the root cause is an aborted embedded verification."""
        cause = self.__cause__
        while cause is not None:
            if isinstance(cause, EmbeddedVerificationFailure):
                return True
            cause = cause.__cause__
        return False


class FingerprintMismatch(CycleProofError):
    """A proof was produced under a different program than the chain's."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"fingerprint mismatch: expected {expected}, got {actual}")


class ChainStateError(CycleProofError):
    """An operation is not allowed in the chain's current state."""


class UnsupportedProofKind(CycleProofError):
    """A proof variant other than the one required was supplied."""

    def __init__(self, kind: str, expected: str = "compressed"):
        self.kind = kind
        self.expected = expected
        super().__init__(f"unsupported proof kind {kind!r} (expected {expected!r})")


class UnknownBackend(CycleProofError, ValueError):
    """No prover backend is registered under the requested name."""


class ConfigError(CycleProofError, ValueError):
    """Configuration value is missing or malformed."""
