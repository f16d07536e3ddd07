"""Tests for the step function and the guest environment."""
from __future__ import annotations

import pytest

from cycleproof.errors import EmbeddedVerificationFailure, GuestIOError
from cycleproof.guest import EMBEDDED_VERIFY_UNITS, GuestEnv, ProgramInput, RecordingVerifier
from cycleproof.program import Program
from cycleproof.step import CYCLE_PROGRAM, cycle_guest, cycle_step
from cycleproof.types import Commitment, ProgramFingerprint


class FakeVerifier:
    """Records every claim and answers with a fixed result."""

    def __init__(self, result: bool):
        self.result = result
        self.calls = []

    def verify(self, fingerprint, expected_digest):
        self.calls.append((fingerprint, expected_digest))
        return self.result


FP = ProgramFingerprint.from_digest(bytes(range(32)))


class TestCycleStep:
    def test_genesis_skips_verification(self):
        verifier = FakeVerifier(result=False)
        out = cycle_step(7, FP, Commitment.empty(), verifier)
        assert out.identities() == [7]
        assert verifier.calls == []

    def test_extend_checks_incoming_digest(self):
        incoming = Commitment.from_identities([1, 2])
        verifier = FakeVerifier(result=True)
        out = cycle_step(3, FP, incoming, verifier)
        assert out.identities() == [1, 2, 3]
        assert verifier.calls == [(FP, incoming.digest())]

    def test_rejected_predecessor_aborts(self):
        with pytest.raises(EmbeddedVerificationFailure):
            cycle_step(3, FP, Commitment.from_identities([1, 2]), FakeVerifier(result=False))

    def test_verifier_may_abort_itself(self):
        class Aborting:
            def verify(self, fingerprint, expected_digest):
                raise EmbeddedVerificationFailure("no proof")

        with pytest.raises(EmbeddedVerificationFailure):
            cycle_step(3, FP, Commitment.from_identities([1]), Aborting())

    def test_deterministic(self):
        incoming = Commitment.from_identities([4, 5])
        a = cycle_step(6, FP, incoming, FakeVerifier(result=True))
        b = cycle_step(6, FP, incoming, FakeVerifier(result=True))
        assert a.to_bytes() == b.to_bytes()

    def test_does_not_mutate_incoming(self):
        incoming = Commitment.from_identities([1])
        cycle_step(2, FP, incoming, FakeVerifier(result=True))
        assert incoming.identities() == [1]


def _stdin(identity: int, fingerprint: ProgramFingerprint, incoming: bytes) -> ProgramInput:
    stdin = ProgramInput()
    stdin.write_u8(identity)
    stdin.write_words(fingerprint.words)
    stdin.write_bytes(incoming)
    return stdin


class TestGuest:
    def test_input_layout(self):
        raw = _stdin(9, ProgramFingerprint.zero(), b"\x01\x02").to_bytes()
        assert raw[0] == 9
        assert raw[1:33] == b"\x00" * 32
        assert raw[33:41] == (2).to_bytes(8, "little")
        assert raw[41:] == b"\x01\x02"

    def test_guest_commits_extended_commitment(self):
        env = GuestEnv(_stdin(3, FP, b"\x01\x02"), RecordingVerifier())
        cycle_guest(env)
        assert env.public_values == b"\x01\x02\x03"
        assert env.unread == 0

    def test_guest_reports_tracked_spans(self):
        env = GuestEnv(_stdin(1, FP, b""), RecordingVerifier())
        cycle_guest(env)
        report = env.report
        assert report.cycle_tracker == {"cycle step": 1}
        assert report.embedded_claims == 0
        assert report.public_values_size == 1

    def test_embedded_claim_is_charged_to_verification(self):
        verifier = RecordingVerifier()
        env = GuestEnv(_stdin(2, FP, b"\x01"), verifier)
        cycle_guest(env)
        tracker = env.report.cycle_tracker
        assert env.report.embedded_claims == 1
        assert tracker["verification"] == EMBEDDED_VERIFY_UNITS
        assert tracker["cycle step"] == EMBEDDED_VERIFY_UNITS + 2
        assert verifier.claims == [(FP, Commitment.from_identities([1]).digest())]

    def test_guest_runs_the_step_function(self, monkeypatch):
        import cycleproof.step as step

        seen = []
        real = step.cycle_step

        def spy(identity, fingerprint, incoming, verifier):
            seen.append((identity, incoming.identities()))
            return real(identity, fingerprint, incoming, verifier)

        monkeypatch.setattr(step, "cycle_step", spy)
        env = GuestEnv(_stdin(4, FP, b"\x01\x02"), RecordingVerifier())
        cycle_guest(env)
        assert seen == [(4, [1, 2])]
        assert env.public_values == b"\x01\x02\x04"

    def test_rejected_predecessor_aborts_guest(self):
        env = GuestEnv(_stdin(2, FP, b"\x01"), FakeVerifier(result=False))
        with pytest.raises(EmbeddedVerificationFailure):
            cycle_guest(env)
        assert env.public_values is None

    def test_underrun_raises(self):
        stdin = ProgramInput().write_u8(1)
        env = GuestEnv(stdin, RecordingVerifier())
        with pytest.raises(GuestIOError):
            cycle_guest(env)

    def test_commit_only_once(self):
        env = GuestEnv(ProgramInput(), RecordingVerifier())
        env.commit(b"\x01")
        with pytest.raises(GuestIOError):
            env.commit(b"\x02")

    def test_write_u8_range(self):
        with pytest.raises(ValueError):
            ProgramInput().write_u8(256)


class TestProgram:
    def test_fingerprint_is_stable(self):
        assert CYCLE_PROGRAM.fingerprint == CYCLE_PROGRAM.fingerprint

    def test_name_changes_fingerprint(self, other_program):
        assert other_program.fingerprint != CYCLE_PROGRAM.fingerprint

    def test_image_defaults_to_source(self):
        assert b"def cycle_guest" in CYCLE_PROGRAM.image

    def test_image_covers_step_helpers(self):
        image = CYCLE_PROGRAM.image
        assert b"def verify_predecessor" in image
        assert b"def cycle_step" in image

    def test_image_change_changes_fingerprint(self):
        edited = Program(name=CYCLE_PROGRAM.name, entry=cycle_guest, image=CYCLE_PROGRAM.image + b"\n# edit")
        assert edited.fingerprint != CYCLE_PROGRAM.fingerprint
