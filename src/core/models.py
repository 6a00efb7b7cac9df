# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

No module redefines these types; all imports come from core.models.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

DuplicateType = Literal["exact", "likely", "possible", "unique"]
DuplicateStatus = Literal["unique", "possible_duplicate", "duplicate", "reviewing"]

FIELD_NAMES: tuple[str, ...] = (
    "vendor_name",
    "invoice_number",
    "invoice_date",
    "total_amount",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# === EXTRACTION INPUT ===


class ExtractedField(BaseModel):
    """One field produced by the extraction pipeline."""

    value: Any = None
    confidence: float | None = None


# === FILE LEVEL ===


class FileContentRecord(BaseModel):
    """Content digest of an uploaded file, scoped to a tenant."""

    file_id: str
    tenant_id: str
    content_hash: str
    size_bytes: int = Field(ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    file_name: str | None = None


# === INVOICE LEVEL ===


class InvoiceFingerprint(BaseModel):
    """Normalized summary of an invoice's key fields.

    None always means "absent from the extraction". An empty token set or
    an empty invoice number means the field was present but blank.
    """

    model_config = ConfigDict(frozen=True)

    extraction_id: str
    tenant_id: str
    normalized_vendor_name: frozenset[str] | None = None
    normalized_invoice_number: str | None = None
    invoice_date: date | None = None
    total_amount: Decimal | None = None
    currency: str | None = None

    def field_value(self, name: str) -> Any:
        if name == "vendor_name":
            return self.normalized_vendor_name
        if name == "invoice_number":
            return self.normalized_invoice_number
        return getattr(self, name)

    @property
    def present_fields(self) -> tuple[str, ...]:
        """Names of scored fields that are not absent."""
        return tuple(n for n in FIELD_NAMES if self.field_value(n) is not None)

    @property
    def is_empty(self) -> bool:
        return not self.present_fields


class ExtractionRecord(BaseModel):
    """Store-side view of an extraction annotated by the engine."""

    extraction_id: str
    tenant_id: str
    fingerprint: InvoiceFingerprint
    fingerprint_digest: str
    duplicate_status: DuplicateStatus = "unique"
    duplicate_candidate_id: str | None = None
    duplicate_confidence: float = 0.0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class DuplicateCandidateLink(BaseModel):
    """Directed link from a new extraction to the prior one it resembles."""

    extraction_id: str
    candidate_extraction_id: str
    tenant_id: str
    similarity_score: float = Field(ge=0.0, le=1.0)
    duplicate_type: DuplicateType
    created_at: datetime = Field(default_factory=utc_now)


class FieldScores(BaseModel):
    """Per-field breakdown of one pairwise comparison. Never persisted."""

    vendor_name: float = 0.0
    invoice_number: float = 0.0
    invoice_date: float = 0.0
    total_amount: float = 0.0
    compared_fields: list[str] = Field(default_factory=list)
    overall: float = 0.0


# === RESULTS ===


class DuplicateCheckResult(BaseModel):
    """Uniform verdict shape shared by both stages."""

    is_duplicate: bool
    duplicate_type: DuplicateType = "unique"
    duplicate_candidate_id: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class FileDuplicateResult(DuplicateCheckResult):
    """Stage 1 verdict."""

    content_hash: str
    size_bytes: int


class InvoiceDuplicateResult(DuplicateCheckResult):
    """Stage 2 verdict."""

    extraction_id: str
    tenant_id: str
    fingerprint_digest: str | None = None
    field_scores: FieldScores | None = None
    candidates_checked: int = 0


class ProcessDecision(BaseModel):
    """Whether an uploaded file still needs to go through extraction."""

    should_process: bool
    reason: str | None = None
    duplicate_file_id: str | None = None


class FullDeduplicationResult(BaseModel):
    """Outcome of running both stages for one document."""

    file_result: FileDuplicateResult
    invoice_result: InvoiceDuplicateResult | None = None
    should_process: bool
