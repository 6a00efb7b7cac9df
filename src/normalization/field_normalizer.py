# src/normalization/field_normalizer.py — v1
"""Canonical forms for vendor names, invoice numbers, dates and amounts.

Every normalizer returns None for absent or unusable input rather than
raising, so one bad field never aborts a duplicate check. Legal-entity
suffixes ("ltd", "inc", "gmbh") are kept on purpose: stripping them would
merge distinct legal entities.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from docdedup.core.errors import InputError

logger = logging.getLogger(__name__)

_TOKEN_SPLIT_RE = re.compile(r"[\W_]+", re.UNICODE)
_AMOUNT_NOISE_RE = re.compile(r"[\s,£$€¥]")
_CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")
_TWO_PLACES = Decimal("0.01")

# Unambiguous textual layouts only; day/month order guesses are not made.
_DATE_FORMATS = (
    "%Y/%m/%d",
    "%Y.%m.%d",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
)


def tokenize(raw: str) -> list[str]:
    """Lowercase and split on whitespace/punctuation, dropping empty tokens."""
    return [t for t in _TOKEN_SPLIT_RE.split(raw.lower()) if t]


def normalize_name(raw: Any) -> frozenset[str] | None:
    """Vendor name → token set.

    "ACME LTD." and "Acme Ltd" both become {"acme", "ltd"}.
    """
    if raw is None:
        return None
    if not isinstance(raw, str):
        _recover(InputError(f"Vendor name is {type(raw).__name__}", "vendor_name"))
        return None
    return frozenset(tokenize(raw))


def normalize_invoice_number(raw: Any) -> str | None:
    """Invoice number → punctuation-free lowercase string ("INV-100" → "inv100")."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        raw = str(raw)
    if not isinstance(raw, str):
        _recover(
            InputError(f"Invoice number is {type(raw).__name__}", "invoice_number")
        )
        return None
    return "".join(tokenize(raw))


def normalize_date(raw: Any) -> date | None:
    """Parse to a calendar date, discarding any time or timezone part.

    The date is taken as written; no timezone conversion is applied.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        _recover(InputError(f"Invoice date is {type(raw).__name__}", "invoice_date"))
        return None

    text = raw.strip()
    if not text:
        return None

    # ISO date, optionally followed by a time component
    head, tail = text[:10], text[10:]
    if not tail or tail[0] in "T ":
        try:
            return date.fromisoformat(head)
        except ValueError:
            pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    _recover(InputError(f"Unparseable invoice date {raw!r}", "invoice_date"))
    return None


def normalize_amount(raw: Any) -> Decimal | None:
    """Fixed-point amount rounded half-up to 2 places.

    Negative amounts are preserved so credit notes stay distinct from
    the invoices they offset.
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        _recover(InputError("Amount is a boolean", "total_amount"))
        return None

    try:
        if isinstance(raw, Decimal):
            value = raw
        elif isinstance(raw, int):
            value = Decimal(raw)
        elif isinstance(raw, float):
            # repr() keeps the shortest round-tripping form (0.125 not 0.12499...)
            value = Decimal(repr(raw))
        elif isinstance(raw, str):
            cleaned = _AMOUNT_NOISE_RE.sub("", raw)
            if not cleaned:
                return None
            value = Decimal(cleaned)
        else:
            raise InputError(f"Amount is {type(raw).__name__}", "total_amount")
    except InvalidOperation:
        _recover(InputError(f"Non-numeric amount {raw!r}", "total_amount"))
        return None
    except InputError as e:
        _recover(e)
        return None

    if not value.is_finite():
        _recover(InputError(f"Non-finite amount {raw!r}", "total_amount"))
        return None
    try:
        return value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # More significant digits than the decimal context holds
        _recover(InputError(f"Amount out of range {raw!r}", "total_amount"))
        return None


def normalize_currency(raw: Any) -> str | None:
    """Three-letter currency code, upper-cased."""
    if not isinstance(raw, str):
        return None
    code = raw.strip()
    if not _CURRENCY_RE.match(code):
        return None
    return code.upper()


def _recover(error: InputError) -> None:
    """Log an input error that is handled by treating the field as absent."""
    logger.warning("Treating field %s as absent: %s", error.field, error)
