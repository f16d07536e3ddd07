"""Fiat-Shamir transcript used to seal proof envelopes."""
from __future__ import annotations

import hashlib
from typing import Iterable

DOMAIN_TAG = b"CPv1|"


class Transcript:
    """Domain-separated SHA-256 transcript.

    Every absorbed item is length-prefixed, so ``absorb_bytes(b"ab")`` and
    ``absorb_bytes(b"a"); absorb_bytes(b"b")`` seal differently.
    """

    def __init__(self, label: str) -> None:
        self._state = hashlib.sha256(DOMAIN_TAG + label.encode("utf-8"))

    @property
    def max_challenge(self) -> int:
        return self._state.digest_size

    def absorb_bytes(self, data: bytes) -> None:
        data = bytes(data)
        self._state.update(len(data).to_bytes(8, "big"))
        self._state.update(data)

    def absorb_label(self, label: str) -> None:
        self.absorb_bytes(label.encode("utf-8"))

    def absorb_many(self, chunks: Iterable[bytes]) -> None:
        """Absorb each chunk, then the number of chunks."""
        count = 0
        for chunk in chunks:
            self.absorb_bytes(chunk)
            count += 1
        self.absorb_bytes(count.to_bytes(8, "big"))

    def challenge_bytes(self, length: int = 32) -> bytes:
        """Squeeze up to one digest of output, then ratchet the state."""
        if not 0 < length <= self.max_challenge:
            raise ValueError(f"challenge length must be in 1..{self.max_challenge}, got {length}")
        digest = self._state.digest()
        self._state = hashlib.sha256(DOMAIN_TAG + b"ratchet|" + digest)
        return digest[:length]
