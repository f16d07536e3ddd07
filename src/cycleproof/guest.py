"""Guest-side I/O: the input stream, the running environment and its report.

The step program never touches the host directly. It reads its inputs from a
fixed-order byte stream, asks an injected :class:`EmbeddedVerifier` to vouch
for its predecessor, and commits exactly one public output.

Wire layout of the input stream (little-endian)::

    u8                  single-byte values (identity)
    u32 * n             fixed-size word arrays (fingerprint, n = 8)
    u64 len || bytes    variable-length byte sequences (commitment)
"""
from __future__ import annotations

import logging
import struct
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator, Optional, Protocol

from .errors import GuestIOError
from .types import ProgramFingerprint, ProofArtifact

if TYPE_CHECKING:
    from .keys import VerifyingKey

logger = logging.getLogger(__name__)


class EmbeddedVerifier(Protocol):
    """Capability to check, from inside a running guest, a deferred proof."""

    def verify(self, fingerprint: ProgramFingerprint, expected_digest: bytes) -> bool:
        """Return True iff a proof under ``fingerprint`` with public-values
        digest ``expected_digest`` was supplied and is valid. May raise
        :class:`~cycleproof.errors.EmbeddedVerificationFailure` to abort."""


@dataclass(frozen=True)
class DeferredProof:
    artifact: ProofArtifact
    verifying_key: "VerifyingKey"


class ProgramInput:
    """Host-side builder for a guest's input stream (the guest's stdin)."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._proofs: list[DeferredProof] = []

    def write_u8(self, value: int) -> "ProgramInput":
        if value < 0 or value > 0xFF:
            raise ValueError(f"u8 out of range: {value}")
        self._buffer.append(value)
        return self

    def write_words(self, words: tuple[int, ...] | list[int]) -> "ProgramInput":
        self._buffer.extend(struct.pack(f"<{len(words)}I", *words))
        return self

    def write_bytes(self, data: bytes) -> "ProgramInput":
        self._buffer.extend(struct.pack("<Q", len(data)))
        self._buffer.extend(data)
        return self

    def write_proof(self, artifact: ProofArtifact, verifying_key: "VerifyingKey") -> "ProgramInput":
        """Queue a proof for the guest's embedded verification."""
        self._proofs.append(DeferredProof(artifact, verifying_key))
        return self

    def to_bytes(self) -> bytes:
        return bytes(self._buffer)

    @property
    def proofs(self) -> list[DeferredProof]:
        return list(self._proofs)


@dataclass
class ExecutionReport:
    """Resource usage of one guest run.

    ``cycle_tracker`` attributes work units to the labelled spans the guest
    opened with :meth:`GuestEnv.track`; a unit is one byte read, copied or
    committed, plus a flat charge per embedded verification.
    """

    total_units: int = 0
    cycle_tracker: dict[str, int] = field(default_factory=dict)
    span_seconds: dict[str, float] = field(default_factory=dict)
    embedded_claims: int = 0
    public_values_size: int = 0
    wall_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_units": self.total_units,
            "cycle_tracker": dict(self.cycle_tracker),
            "span_seconds": {k: round(v, 6) for k, v in self.span_seconds.items()},
            "embedded_claims": self.embedded_claims,
            "public_values_size": self.public_values_size,
            "wall_seconds": round(self.wall_seconds, 6),
        }


EMBEDDED_VERIFY_UNITS = 1024


class GuestEnv:
    """Environment a guest program runs in."""

    def __init__(self, stdin: ProgramInput, verifier: EmbeddedVerifier) -> None:
        self._data = stdin.to_bytes()
        self._pos = 0
        self._verifier = verifier
        self._spans: list[str] = []
        self._public_values: Optional[bytes] = None
        self.report = ExecutionReport()

    def charge(self, units: int) -> None:
        self.report.total_units += units
        for label in self._spans:
            self.report.cycle_tracker[label] = self.report.cycle_tracker.get(label, 0) + units

    @contextmanager
    def track(self, label: str) -> Iterator[None]:
        """Attribute the work done inside the block to ``label``."""
        self._spans.append(label)
        self.report.cycle_tracker.setdefault(label, 0)
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            self._spans.pop()
            self.report.span_seconds[label] = self.report.span_seconds.get(label, 0.0) + elapsed
            logger.debug(
                "cycle-tracker %s: %d units in %.6fs",
                label, self.report.cycle_tracker[label], elapsed,
            )

    def _take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise GuestIOError(
                f"input underrun: wanted {size} bytes at offset {self._pos}, "
                f"{len(self._data) - self._pos} left"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        self.charge(size)
        return chunk

    def read_u8(self) -> int:
        return self._take(1)[0]

    def read_words(self, count: int = 8) -> tuple[int, ...]:
        return struct.unpack(f"<{count}I", self._take(4 * count))

    def read_bytes(self) -> bytes:
        (length,) = struct.unpack("<Q", self._take(8))
        return self._take(length)

    def verify_embedded(self, fingerprint: ProgramFingerprint, expected_digest: bytes) -> bool:
        self.report.embedded_claims += 1
        self.charge(EMBEDDED_VERIFY_UNITS)
        return self._verifier.verify(fingerprint, expected_digest)

    def commit(self, data: bytes) -> None:
        if self._public_values is not None:
            raise GuestIOError("public values already committed")
        self._public_values = bytes(data)
        self.charge(len(data))
        self.report.public_values_size = len(data)

    @property
    def public_values(self) -> Optional[bytes]:
        return self._public_values

    @property
    def unread(self) -> int:
        return len(self._data) - self._pos


class RecordingVerifier:
    """Accepts every embedded claim without checking it.

    Used by execute-only runs, which have no proofs to check against.
    """

    def __init__(self) -> None:
        self.claims: list[tuple[ProgramFingerprint, bytes]] = []

    def verify(self, fingerprint: ProgramFingerprint, expected_digest: bytes) -> bool:
        self.claims.append((fingerprint, bytes(expected_digest)))
        logger.debug("unchecked embedded claim under %s", fingerprint.hex()[:16])
        return True
