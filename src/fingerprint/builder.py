# src/fingerprint/builder.py — v1
"""Build InvoiceFingerprints from the extraction pipeline's field map.

The field map is name → {value, confidence}. Partial data is normal:
any field that is missing, malformed or unparseable ends up as None in
the fingerprint.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Mapping

from docdedup.core.models import ExtractedField, InvoiceFingerprint
from docdedup.normalization.field_normalizer import (
    normalize_amount,
    normalize_currency,
    normalize_date,
    normalize_invoice_number,
    normalize_name,
)

logger = logging.getLogger(__name__)

# Extraction-model key first, then older aliases and snake_case names.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "vendor_name": ("vendorName", "supplierName", "vendor_name", "vendor"),
    "invoice_number": ("invoiceNumber", "invoiceNo", "invoice_number"),
    "invoice_date": ("invoiceDate", "date", "invoice_date"),
    "total_amount": ("totalAmount", "total", "total_amount", "amount"),
    "currency": ("currency",),
}

_MISSING = object()


class FingerprintBuilder:
    """Derive a composite fingerprint from extracted invoice fields."""

    def __init__(self, default_currency: str | None = "GBP") -> None:
        self._default_currency = normalize_currency(default_currency)

    def build(
        self,
        extracted_fields: Mapping[str, Any] | None,
        extraction_id: str,
        tenant_id: str,
    ) -> InvoiceFingerprint:
        """Build the fingerprint for one extraction. Never raises on bad fields."""
        fields = extracted_fields or {}
        if not isinstance(fields, Mapping):
            logger.warning(
                "Field map for extraction %s is %s, treating all fields as absent",
                extraction_id, type(fields).__name__,
            )
            fields = {}

        currency = normalize_currency(_field_value(fields, "currency"))

        fingerprint = InvoiceFingerprint(
            extraction_id=extraction_id,
            tenant_id=tenant_id,
            normalized_vendor_name=normalize_name(_field_value(fields, "vendor_name")),
            normalized_invoice_number=normalize_invoice_number(
                _field_value(fields, "invoice_number")
            ),
            invoice_date=normalize_date(_field_value(fields, "invoice_date")),
            total_amount=normalize_amount(_field_value(fields, "total_amount")),
            currency=currency or self._default_currency,
        )
        logger.debug(
            "Built fingerprint for %s with fields %s",
            extraction_id, list(fingerprint.present_fields),
        )
        return fingerprint


def fingerprint_digest(fingerprint: InvoiceFingerprint) -> str:
    """SHA-256 over the sorted, normalized composite of the key fields.

    Identical digests mean identical normalized fields; absent fields
    contribute an empty component.
    """
    vendor = fingerprint.normalized_vendor_name
    components = {
        "amount": "" if fingerprint.total_amount is None else str(fingerprint.total_amount),
        "currency": fingerprint.currency or "",
        "date": "" if fingerprint.invoice_date is None else fingerprint.invoice_date.isoformat(),
        "invoice": fingerprint.normalized_invoice_number or "",
        "vendor": "" if vendor is None else " ".join(sorted(vendor)),
    }
    composite = "|".join(components[k] for k in sorted(components))
    return hashlib.sha256(composite.encode("utf-8")).hexdigest()


def _field_value(fields: Mapping[str, Any], name: str) -> Any:
    """Value of the first alias present in *fields*, or None."""
    for key in FIELD_ALIASES[name]:
        entry = fields.get(key, _MISSING)
        if entry is _MISSING:
            continue
        value = _unwrap(entry, key)
        if value is not None:
            return value
    return None


def _unwrap(entry: Any, key: str) -> Any:
    if entry is None:
        return None
    if isinstance(entry, ExtractedField):
        return entry.value
    if isinstance(entry, Mapping):
        if "value" not in entry:
            logger.warning("Field %s has no 'value' key, treating as absent", key)
            return None
        return entry["value"]
    # Bare values are accepted for callers that flatten the map
    return entry
