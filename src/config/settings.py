# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings. Scoring
weights and tier thresholds are product-tuned constants with no documented
derivation; they are exposed here so they can be recalibrated against
labelled duplicate data, but a running engine treats them as fixed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from docdedup.core.errors import InvariantViolation
from docdedup.logging.handlers import parse_size

_WEIGHT_SUM_TOLERANCE = 1e-9


class ConfigurationError(InvariantViolation):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Record store ===
    record_store_backend: Literal["memory", "sqlite", "redis"] = "memory"
    record_store_path: Path = Path("~/.docdedup/records.db")
    record_store_redis_url: str = ""

    # === Scoring weights ===
    weight_vendor_name: float = 0.30
    weight_invoice_number: float = 0.30
    weight_invoice_date: float = 0.20
    weight_total_amount: float = 0.20

    # === Tier thresholds (inclusive lower bounds) ===
    threshold_exact: float = 0.95
    threshold_likely: float = 0.85
    threshold_possible: float = 0.70

    # === Field tolerances ===
    date_tolerance_days: int = 1
    amount_tolerance: float = 0.01

    # === Candidate retrieval ===
    candidate_limit: int | None = 500
    candidate_max_age_days: int | None = None

    # === Fingerprint ===
    default_currency: str = "GBP"

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("date_tolerance_days", "log_retention")
    @classmethod
    def validate_non_negative_int(cls, v: int, info) -> int:  # noqa: N805
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return v

    @field_validator("amount_tolerance")
    @classmethod
    def validate_amount_tolerance(cls, v: float) -> float:  # noqa: N805
        if v < 0:
            raise ValueError("amount_tolerance must be >= 0")
        return v

    @field_validator("candidate_limit", "candidate_max_age_days")
    @classmethod
    def validate_positive_bound(cls, v: int | None, info) -> int | None:  # noqa: N805
        if v is not None and v <= 0:
            raise ValueError(f"{info.field_name} must be > 0 or unset")
        return v

    @field_validator("log_rotation")
    @classmethod
    def validate_log_rotation(cls, v: str) -> str:  # noqa: N805
        parse_size(v)
        return v

    @field_validator("default_currency")
    @classmethod
    def validate_default_currency(cls, v: str) -> str:  # noqa: N805
        code = v.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"default_currency must be a 3-letter code, got {v!r}")
        return code

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Cross-field consistency rules for weights, thresholds and backends."""
        errors: list[str] = []

        weights = self.weights
        if any(w < 0 for w in weights.values()):
            errors.append("Scoring weights must be >= 0")
        total = sum(weights.values())
        if abs(total - 1.0) > _WEIGHT_SUM_TOLERANCE:
            errors.append(f"Scoring weights must sum to 1.0 (got {total:.6f})")

        bounds = (self.threshold_exact, self.threshold_likely, self.threshold_possible)
        if not all(0.0 < b <= 1.0 for b in bounds):
            errors.append("Thresholds must lie in (0, 1]")
        if not self.threshold_exact > self.threshold_likely > self.threshold_possible:
            errors.append(
                "Thresholds must be strictly descending "
                "(THRESHOLD_EXACT > THRESHOLD_LIKELY > THRESHOLD_POSSIBLE)"
            )

        if self.record_store_backend == "redis" and not self.record_store_redis_url:
            errors.append(
                "RECORD_STORE_REDIS_URL must be set when RECORD_STORE_BACKEND=redis"
            )

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def weights(self) -> dict[str, float]:
        """Scoring weights keyed by fingerprint field name."""
        return {
            "vendor_name": self.weight_vendor_name,
            "invoice_number": self.weight_invoice_number,
            "invoice_date": self.weight_invoice_date,
            "total_amount": self.weight_total_amount,
        }


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or embedding).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
