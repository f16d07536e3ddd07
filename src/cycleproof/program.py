"""Guest programs and their fingerprints."""
from __future__ import annotations

import hashlib
import inspect
from dataclasses import dataclass, field
from typing import Callable, Optional

from .guest import GuestEnv
from .types import ProgramFingerprint

FINGERPRINT_TAG = b"CYCLEPROOF_PROGRAM_V1"

GuestEntry = Callable[[GuestEnv], None]


def _default_image(entry: GuestEntry) -> bytes:
    """Source of the whole module defining ``entry``."""
    try:
        module = inspect.getmodule(entry)
        source = inspect.getsource(module if module is not None else entry)
    except (OSError, TypeError):
        source = f"{getattr(entry, '__module__', '?')}.{getattr(entry, '__qualname__', repr(entry))}"
    return source.encode("utf-8")


@dataclass(frozen=True)
class Program:
    """A named guest entry point plus the image its fingerprint is taken over."""

    name: str
    entry: GuestEntry
    image: Optional[bytes] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.image is None and callable(self.entry):
            object.__setattr__(self, "image", _default_image(self.entry))

    @property
    def fingerprint(self) -> ProgramFingerprint:
        h = hashlib.sha256()
        h.update(FINGERPRINT_TAG)
        name = self.name.encode("utf-8")
        h.update(len(name).to_bytes(8, "big"))
        h.update(name)
        h.update(self.image or b"")
        return ProgramFingerprint.from_digest(h.digest())
