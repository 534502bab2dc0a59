"""
Data models for checksum verification results
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List


class VerificationOutcome(str, Enum):
    """
    Aggregate verification outcome as written to the sync metadata record
    """
    VERIFIED = 'true'
    PARTIAL = 'partial'
    FAILED = 'failed'
    NOT_RUN = 'false'


# Higher rank wins when several strategies ran in the same sync
_OUTCOME_RANK = {
    VerificationOutcome.NOT_RUN: 0,
    VerificationOutcome.VERIFIED: 1,
    VerificationOutcome.PARTIAL: 2,
    VerificationOutcome.FAILED: 3,
}


@dataclass
class VerificationResult:
    """
    Represents the result of one verification strategy
    """
    strategy: str
    verified_count: int = 0
    missing_count: int = 0
    error_count: int = 0
    cancelled: bool = False
    errors: List[str] = field(default_factory=list)

    def add_error(self, error: str) -> None:
        """Record a hard verification error"""
        self.error_count += 1
        self.errors.append(error)

    @property
    def outcome(self) -> VerificationOutcome:
        if self.error_count > 0 or self.cancelled:
            return VerificationOutcome.FAILED
        if self.missing_count > 0:
            return VerificationOutcome.PARTIAL
        return VerificationOutcome.VERIFIED

    @property
    def total_checked(self) -> int:
        return self.verified_count + self.missing_count + self.error_count


def combine_outcomes(results: Iterable[VerificationResult]) -> VerificationOutcome:
    """Worst outcome across strategies; NOT_RUN when nothing ran"""
    combined = VerificationOutcome.NOT_RUN
    for result in results:
        if _OUTCOME_RANK[result.outcome] > _OUTCOME_RANK[combined]:
            combined = result.outcome
    return combined
