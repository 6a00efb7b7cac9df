# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides an in-memory record store, default settings, sample field maps and
fingerprints. No external services: Redis is always mocked.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from docdedup.api.facade import DeduplicationFacade
from docdedup.config.settings import Settings
from docdedup.core.models import InvoiceFingerprint
from docdedup.store.memory_store import InMemoryRecordStore


# === FIXTURES: Configuration and stores ===


@pytest.fixture
def settings() -> Settings:
    """Default settings, isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def memory_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def facade(memory_store: InMemoryRecordStore, settings: Settings) -> DeduplicationFacade:
    return DeduplicationFacade(memory_store, settings)


# === FIXTURES: Sample extractions ===


@pytest.fixture
def acme_fields_a() -> dict:
    """First extraction of the Acme invoice."""
    return {
        "vendorName": {"value": "Acme Ltd", "confidence": 0.98},
        "invoiceNumber": {"value": "INV-100", "confidence": 0.95},
        "invoiceDate": {"value": "2024-01-10", "confidence": 0.9},
        "totalAmount": {"value": 500.00, "confidence": 0.97},
    }


@pytest.fixture
def acme_fields_b() -> dict:
    """Second extraction of the same invoice: casing, punctuation and date differ."""
    return {
        "vendorName": {"value": "ACME LTD.", "confidence": 0.91},
        "invoiceNumber": {"value": "INV-100", "confidence": 0.93},
        "invoiceDate": {"value": "2024-01-11", "confidence": 0.88},
        "totalAmount": {"value": "500.00", "confidence": 0.95},
    }


def make_fingerprint(
    extraction_id: str = "ext_a",
    tenant_id: str = "tenant_1",
    vendor: frozenset[str] | None = frozenset({"acme", "ltd"}),
    invoice_number: str | None = "inv100",
    invoice_date: date | None = date(2024, 1, 10),
    total_amount: Decimal | None = Decimal("500.00"),
    currency: str | None = "GBP",
) -> InvoiceFingerprint:
    return InvoiceFingerprint(
        extraction_id=extraction_id,
        tenant_id=tenant_id,
        normalized_vendor_name=vendor,
        normalized_invoice_number=invoice_number,
        invoice_date=invoice_date,
        total_amount=total_amount,
        currency=currency,
    )


@pytest.fixture
def fingerprint_factory():
    """Callable building InvoiceFingerprints with Acme defaults."""
    return make_fingerprint
