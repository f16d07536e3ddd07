"""The cycle step: verify the predecessor, then append our own identity."""
from __future__ import annotations

from .errors import EmbeddedVerificationFailure
from .guest import EmbeddedVerifier, GuestEnv
from .program import Program
from .types import Commitment, ProgramFingerprint, validate_identity


def verify_predecessor(
    fingerprint: ProgramFingerprint,
    incoming: Commitment,
    verifier: EmbeddedVerifier,
) -> None:
    """Abort unless ``incoming`` is vouched for by a proof under ``fingerprint``.

    An empty commitment is the genesis case: there is no predecessor to trust
    and nothing is checked.
    """
    if incoming.is_empty:
        return
    if not verifier.verify(fingerprint, incoming.digest()):
        raise EmbeddedVerificationFailure(
            f"predecessor proof rejected for commitment of length {len(incoming)}"
        )


def cycle_step(
    identity: int,
    fingerprint: ProgramFingerprint,
    incoming: Commitment,
    verifier: EmbeddedVerifier,
) -> Commitment:
    """Extend ``incoming`` with ``identity`` once the predecessor checks out."""
    identity = validate_identity(identity)
    verify_predecessor(fingerprint, incoming, verifier)
    return incoming.append(identity)


class _EnvVerifier:
    """Routes embedded claims through the guest environment, under their own span."""

    def __init__(self, env: GuestEnv) -> None:
        self._env = env

    def verify(self, fingerprint: ProgramFingerprint, expected_digest: bytes) -> bool:
        with self._env.track("verification"):
            return self._env.verify_embedded(fingerprint, expected_digest)


def cycle_guest(env: GuestEnv) -> None:
    identity = env.read_u8()
    fingerprint = ProgramFingerprint(env.read_words(8))
    incoming = Commitment.from_bytes(env.read_bytes())

    with env.track("cycle step"):
        outgoing = cycle_step(identity, fingerprint, incoming, _EnvVerifier(env))
        env.charge(len(outgoing))

    env.commit(outgoing.to_bytes())


CYCLE_PROGRAM = Program(name="cycler", entry=cycle_guest)
