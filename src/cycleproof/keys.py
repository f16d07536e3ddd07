"""Proving/verifying keys and the process-wide key registry."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import SetupFailure
from .program import Program
from .types import ProgramFingerprint

if TYPE_CHECKING:
    from .backend import ProverBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifyingKey:
    fingerprint: ProgramFingerprint
    backend: str


@dataclass(frozen=True)
class ProvingKey:
    program: Program
    verifying_key: VerifyingKey

    @property
    def fingerprint(self) -> ProgramFingerprint:
        return self.verifying_key.fingerprint


@dataclass(frozen=True)
class KeyPair:
    proving_key: ProvingKey
    verifying_key: VerifyingKey

    @property
    def fingerprint(self) -> ProgramFingerprint:
        return self.verifying_key.fingerprint


class KeyRegistry:
    """Key pairs computed once per (backend, fingerprint), read-only after.

    Only the first setup for a given program takes the lock; the stored
    pairs are frozen and can be shared by any number of concurrent chains.
    """

    def __init__(self) -> None:
        self._pairs: dict[tuple[str, str], KeyPair] = {}
        self._lock = threading.Lock()

    def get(self, backend: "ProverBackend", program: Program) -> KeyPair:
        slot = (backend.name, program.fingerprint.hex())
        pair = self._pairs.get(slot)
        if pair is not None:
            return pair
        with self._lock:
            pair = self._pairs.get(slot)
            if pair is None:
                logger.info("setting up keys for %s on %s backend", program.name, backend.name)
                try:
                    pair = backend.setup(program)
                except SetupFailure:
                    raise
                except Exception as exc:
                    raise SetupFailure(f"setup of {program.name!r} failed: {exc}") from exc
                self._pairs[slot] = pair
        return pair

    def clear(self) -> None:
        with self._lock:
            self._pairs.clear()

    def __len__(self) -> int:
        return len(self._pairs)


DEFAULT_REGISTRY = KeyRegistry()
