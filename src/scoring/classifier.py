# src/scoring/classifier.py — v1
"""Map similarity scores to confidence tiers.

  score >= exact              → exact  (semantically certain duplicate)
  likely <= score < exact     → likely
  possible <= score < likely  → possible
  score < possible            → unique

Lower bounds are inclusive, so a score sitting on a boundary lands in the
higher tier. "exact" here is unrelated to byte-exact file duplication.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from docdedup.core.errors import InvariantViolation
from docdedup.core.models import DuplicateStatus, DuplicateType

_STATUS_BY_TYPE: dict[str, DuplicateStatus] = {
    "exact": "duplicate",
    "likely": "duplicate",
    "possible": "possible_duplicate",
    "unique": "unique",
}


@dataclass(frozen=True)
class ConfidenceThresholds:
    """Inclusive lower bounds of the exact, likely and possible tiers."""

    exact: float = 0.95
    likely: float = 0.85
    possible: float = 0.70

    def __post_init__(self) -> None:
        bounds = (self.exact, self.likely, self.possible)
        if not all(math.isfinite(b) and 0.0 < b <= 1.0 for b in bounds):
            raise InvariantViolation(
                f"Thresholds must lie in (0, 1], got {bounds}"
            )
        if not self.exact > self.likely > self.possible:
            raise InvariantViolation(
                "Thresholds must be strictly descending "
                f"(exact > likely > possible), got {bounds}"
            )


class ConfidenceClassifier:
    """Threshold a similarity score into a DuplicateType."""

    def __init__(self, thresholds: ConfidenceThresholds | None = None) -> None:
        self._thresholds = thresholds or ConfidenceThresholds()

    @property
    def thresholds(self) -> ConfidenceThresholds:
        return self._thresholds

    def classify(self, score: float) -> DuplicateType:
        t = self._thresholds
        if score >= t.exact:
            return "exact"
        if score >= t.likely:
            return "likely"
        if score >= t.possible:
            return "possible"
        return "unique"

    @staticmethod
    def to_status(duplicate_type: DuplicateType) -> DuplicateStatus:
        """Extraction status implied by a tier."""
        return _STATUS_BY_TYPE[duplicate_type]

    @staticmethod
    def requires_link(duplicate_type: DuplicateType) -> bool:
        """True for every tier at or above "possible"."""
        return duplicate_type != "unique"
