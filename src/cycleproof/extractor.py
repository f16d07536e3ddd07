"""Decide whether a final proof witnesses a cycle."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import numpy as np

from .keys import VerifyingKey
from .types import Commitment, ProofArtifact

if TYPE_CHECKING:
    from .backend import ProverBackend

logger = logging.getLogger(__name__)


class CycleVerdict(str, Enum):
    CYCLE_DETECTED = "cycle_detected"
    NO_CYCLE = "no_cycle"
    INVALID_PROOF = "invalid_proof"

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_MESSAGES = {
    CycleVerdict.CYCLE_DETECTED: "There is indeed a cycle.",
    CycleVerdict.NO_CYCLE: "Proof is valid but no cycle.",
    CycleVerdict.INVALID_PROOF: "Invalid proof.",
}


@dataclass
class CycleReport:
    verdict: CycleVerdict
    commitment: Commitment
    sorted_ids: list[int] = field(default_factory=list)
    deduped_ids: list[int] = field(default_factory=list)
    repeated_ids: list[int] = field(default_factory=list)

    @property
    def has_cycle(self) -> bool:
        return self.verdict is CycleVerdict.CYCLE_DETECTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "message": self.verdict.message,
            "commitment": self.commitment.identities(),
            "sorted": self.sorted_ids,
            "deduped": self.deduped_ids,
            "repeated": self.repeated_ids,
        }


def inspect_commitment(commitment: Commitment) -> CycleReport:
    """Classify an already-trusted commitment.

    Order is ignored: the commitment is sorted and deduplicated, and any
    length difference means some identity was appended more than once.
    """
    ids = np.frombuffer(commitment.to_bytes(), dtype=np.uint8)
    sorted_ids = np.sort(ids)
    deduped, counts = np.unique(sorted_ids, return_counts=True)
    repeated = deduped[counts > 1]
    verdict = CycleVerdict.CYCLE_DETECTED if len(sorted_ids) != len(deduped) else CycleVerdict.NO_CYCLE
    return CycleReport(
        verdict=verdict,
        commitment=commitment,
        sorted_ids=sorted_ids.tolist(),
        deduped_ids=deduped.tolist(),
        repeated_ids=repeated.tolist(),
    )


def extract_cycle(
    backend: "ProverBackend",
    artifact: ProofArtifact,
    verifying_key: VerifyingKey,
) -> CycleReport:
    """Verify ``artifact`` and, if it holds, inspect its commitment."""
    if not backend.verify(artifact, verifying_key):
        logger.error("final proof failed verification under %s", verifying_key.fingerprint.hex()[:16])
        return CycleReport(verdict=CycleVerdict.INVALID_PROOF, commitment=artifact.commitment)
    report = inspect_commitment(artifact.commitment)
    logger.info("final commitment %s: %s", report.commitment.identities(), report.verdict.value)
    return report
