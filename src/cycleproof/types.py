"""Identity, fingerprint, commitment and proof artifact types."""
from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator

from .errors import InvalidIdentity, UnsupportedProofKind

IDENTITY_MAX = 0xFF
FINGERPRINT_WORDS = 8
WORD_MAX = 0xFFFFFFFF
DIGEST_SIZE = 32


def validate_identity(value: object) -> int:
    """Return ``value`` as an identity or raise :class:`InvalidIdentity`."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidIdentity(f"identity must be an int, got {type(value).__name__}")
    if value < 0 or value > IDENTITY_MAX:
        raise InvalidIdentity(f"identity {value} outside [0, {IDENTITY_MAX}]")
    return value


def commitment_digest(raw: bytes) -> bytes:
    """SHA-256 of a commitment's raw byte serialization."""
    return hashlib.sha256(bytes(raw)).digest()


@dataclass(frozen=True)
class ProgramFingerprint:
    """Eight 32-bit words identifying a compiled step program."""

    words: tuple[int, ...]

    def __post_init__(self) -> None:
        words = tuple(int(w) for w in self.words)
        if len(words) != FINGERPRINT_WORDS:
            raise ValueError(f"fingerprint needs {FINGERPRINT_WORDS} words, got {len(words)}")
        if any(w < 0 or w > WORD_MAX for w in words):
            raise ValueError("fingerprint words must be unsigned 32-bit")
        object.__setattr__(self, "words", words)

    @classmethod
    def from_digest(cls, digest: bytes) -> "ProgramFingerprint":
        if len(digest) != DIGEST_SIZE:
            raise ValueError(f"fingerprint digest must be {DIGEST_SIZE} bytes")
        return cls(struct.unpack("<8I", digest))

    @classmethod
    def zero(cls) -> "ProgramFingerprint":
        return cls((0,) * FINGERPRINT_WORDS)

    def to_bytes(self) -> bytes:
        return struct.pack("<8I", *self.words)

    def hex(self) -> str:
        return self.to_bytes().hex()

    def __str__(self) -> str:
        return self.hex()


@dataclass(frozen=True)
class Commitment:
    """Append-only ordered sequence of identities.

    Backed by an immutable byte buffer; :meth:`append` is the only way to
    grow it and always returns a new handle. Two commitments are equal iff
    their bytes are equal.
    """

    data: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))

    @classmethod
    def empty(cls) -> "Commitment":
        return cls(b"")

    @classmethod
    def from_identities(cls, identities: Iterable[int]) -> "Commitment":
        return cls(bytes(validate_identity(i) for i in identities))

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Commitment":
        return cls(raw)

    def append(self, identity: int) -> "Commitment":
        return Commitment(self.data + bytes((validate_identity(identity),)))

    def to_bytes(self) -> bytes:
        return self.data

    def identities(self) -> list[int]:
        return list(self.data)

    def digest(self) -> bytes:
        return commitment_digest(self.data)

    @property
    def is_empty(self) -> bool:
        return not self.data

    def __len__(self) -> int:
        return len(self.data)

    def __iter__(self) -> Iterator[int]:
        return iter(self.data)

    def __contains__(self, identity: object) -> bool:
        if isinstance(identity, bool) or not isinstance(identity, int):
            return False
        return 0 <= identity <= IDENTITY_MAX and identity in self.data

    def __repr__(self) -> str:
        return f"Commitment({self.identities()})"


class ProofKind(str, Enum):
    CORE = "core"
    COMPRESSED = "compressed"


@dataclass(frozen=True)
class ProofArtifact:
    """Public output plus opaque proof data from one proving call."""

    public_values: bytes
    blob: bytes
    fingerprint: ProgramFingerprint
    kind: ProofKind = ProofKind.COMPRESSED

    def __post_init__(self) -> None:
        object.__setattr__(self, "public_values", bytes(self.public_values))
        object.__setattr__(self, "blob", bytes(self.blob))
        object.__setattr__(self, "kind", ProofKind(self.kind))

    @property
    def commitment(self) -> Commitment:
        return Commitment.from_bytes(self.public_values)

    def __repr__(self) -> str:
        return (
            f"ProofArtifact(commitment={self.commitment.identities()}, "
            f"kind={self.kind.value}, fingerprint={self.fingerprint.hex()[:16]}..., "
            f"blob={len(self.blob)}B)"
        )


def expect_compressed(artifact: ProofArtifact) -> bytes:
    """Return the compressed proof blob or raise :class:`UnsupportedProofKind`."""
    if artifact.kind is not ProofKind.COMPRESSED:
        raise UnsupportedProofKind(artifact.kind.value, ProofKind.COMPRESSED.value)
    return artifact.blob
