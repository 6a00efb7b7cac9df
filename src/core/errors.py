# src/core/errors.py — v1
"""Error taxonomy for the deduplication engine.

InputError is recovered locally wherever a single field is at fault.
StorageError always reaches the caller, so a failed lookup can never be
mistaken for a "unique" verdict. InvariantViolation is a programming or
configuration error and is raised at construction time.
"""

from __future__ import annotations


class DeduplicationError(Exception):
    """Base class for all docdedup errors."""


class InputError(DeduplicationError):
    """Malformed byte stream or structurally invalid field value."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StorageError(DeduplicationError):
    """Record store read or write failed.

    Always retryable from the engine's point of view; the retry policy
    belongs to the caller's task-execution layer.
    """

    retryable = True

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation


class InvariantViolation(DeduplicationError):
    """Weights, thresholds or tolerances are internally inconsistent."""
