# src/scoring/similarity.py — v1
"""Weighted field-by-field similarity between two invoice fingerprints.

Field scores:
  - vendor_name:    Jaccard over normalized token sets
  - invoice_number: exact match or nothing (no partial matching)
  - invoice_date:   1.0 within the day tolerance (inclusive), else 0.0
  - total_amount:   1.0 within the absolute tolerance (inclusive), else 0.0

Only fields present on both sides are compared. The weight of every other
field is redistributed proportionally over the compared ones, so a sparse
extraction is not penalised against a rich one. With nothing to compare
the score is 0.0. The rule treats both sides alike, so score(a, b) ==
score(b, a).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from docdedup.core.errors import InvariantViolation
from docdedup.core.models import FIELD_NAMES, FieldScores, InvoiceFingerprint

logger = logging.getLogger(__name__)

DEFAULT_DATE_TOLERANCE_DAYS = 1
DEFAULT_AMOUNT_TOLERANCE = Decimal("0.01")
SCORE_PRECISION = 6
_WEIGHT_SUM_TOLERANCE = 1e-9


@dataclass(frozen=True)
class FieldWeights:
    """Relative contribution of each field to the overall score."""

    vendor_name: float = 0.30
    invoice_number: float = 0.30
    invoice_date: float = 0.20
    total_amount: float = 0.20

    def __post_init__(self) -> None:
        values = self.as_dict()
        for name, weight in values.items():
            if not math.isfinite(weight) or weight < 0:
                raise InvariantViolation(f"Weight for {name} must be >= 0, got {weight}")
        total = sum(values.values())
        if abs(total - 1.0) > _WEIGHT_SUM_TOLERANCE:
            raise InvariantViolation(f"Field weights must sum to 1.0, got {total}")

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in FIELD_NAMES}


# --- Field scorers ---


def jaccard(a: frozenset[str] | None, b: frozenset[str] | None) -> float:
    """|A ∩ B| / |A ∪ B|; 0.0 if either side is absent or both are empty."""
    if a is None or b is None:
        return 0.0
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def invoice_number_score(a: str | None, b: str | None) -> float:
    if a is None or b is None or not a or not b:
        return 0.0
    return 1.0 if a == b else 0.0


def date_score(
    a: date | None, b: date | None, tolerance_days: int = DEFAULT_DATE_TOLERANCE_DAYS
) -> float:
    if a is None or b is None:
        return 0.0
    return 1.0 if abs((a - b).days) <= tolerance_days else 0.0


def amount_score(
    a: Decimal | None, b: Decimal | None, tolerance: Decimal = DEFAULT_AMOUNT_TOLERANCE
) -> float:
    if a is None or b is None:
        return 0.0
    return 1.0 if abs(a - b) <= tolerance else 0.0


# --- Scorer ---


class SimilarityScorer:
    """Weighted similarity with proportional weight redistribution.

    Weights and tolerances are fixed for the lifetime of the scorer and
    validated on construction.
    """

    def __init__(
        self,
        weights: FieldWeights | None = None,
        date_tolerance_days: int = DEFAULT_DATE_TOLERANCE_DAYS,
        amount_tolerance: Decimal | float | str = DEFAULT_AMOUNT_TOLERANCE,
    ) -> None:
        self._weights = weights or FieldWeights()
        if date_tolerance_days < 0:
            raise InvariantViolation("date_tolerance_days must be >= 0")
        tolerance = Decimal(str(amount_tolerance))
        if not tolerance.is_finite() or tolerance < 0:
            raise InvariantViolation("amount_tolerance must be a finite value >= 0")
        self._date_tolerance_days = date_tolerance_days
        self._amount_tolerance = tolerance

    @property
    def weights(self) -> FieldWeights:
        return self._weights

    def score(self, candidate: InvoiceFingerprint, subject: InvoiceFingerprint) -> float:
        """Overall similarity in [0, 1]."""
        return self.score_breakdown(candidate, subject).overall

    def score_breakdown(
        self, candidate: InvoiceFingerprint, subject: InvoiceFingerprint
    ) -> FieldScores:
        """Per-field scores plus the redistributed overall score."""
        field_scores = {
            "vendor_name": jaccard(
                candidate.normalized_vendor_name, subject.normalized_vendor_name
            ),
            "invoice_number": invoice_number_score(
                candidate.normalized_invoice_number, subject.normalized_invoice_number
            ),
            "invoice_date": date_score(
                candidate.invoice_date, subject.invoice_date, self._date_tolerance_days
            ),
            "total_amount": amount_score(
                candidate.total_amount, subject.total_amount, self._amount_tolerance
            ),
        }
        compared = [
            name
            for name in FIELD_NAMES
            if candidate.field_value(name) is not None
            and subject.field_value(name) is not None
        ]

        overall = 0.0
        weights = self._weights.as_dict()
        compared_weight = sum(weights[name] for name in compared)
        if compared and compared_weight > 0:
            weighted = sum(weights[name] * field_scores[name] for name in compared)
            overall = weighted / compared_weight

        overall = round(min(max(overall, 0.0), 1.0), SCORE_PRECISION)
        return FieldScores(
            **field_scores,
            compared_fields=compared,
            overall=overall,
        )
