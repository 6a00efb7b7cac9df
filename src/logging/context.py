# src/logging/context.py — v1
"""Per-check logging context: tenant_id, stage, file_id, extraction_id.

Each duplicate check runs inside the caller's task, so the values live in
context variables and concurrent checks never see each other's context.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Iterator

_VARS: dict[str, contextvars.ContextVar[str | None]] = {
    name: contextvars.ContextVar(f"docdedup_{name}", default=None)
    for name in ("tenant_id", "stage", "file_id", "extraction_id")
}


@dataclass(frozen=True)
class LogContext:
    """Snapshot of the active check context."""

    tenant_id: str | None = None
    stage: str | None = None
    file_id: str | None = None
    extraction_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Non-None fields only."""
        return {k: v for k, v in asdict(self).items() if v is not None}


def get_context() -> LogContext:
    return LogContext(**{name: var.get() for name, var in _VARS.items()})


def set_check_context(
    tenant_id: str,
    stage: str,
    file_id: str | None = None,
    extraction_id: str | None = None,
) -> None:
    """Set context for the rest of the current task.

    file_id and extraction_id are only overwritten when given.
    """
    _VARS["tenant_id"].set(tenant_id)
    _VARS["stage"].set(stage)
    if file_id is not None:
        _VARS["file_id"].set(file_id)
    if extraction_id is not None:
        _VARS["extraction_id"].set(extraction_id)


@contextmanager
def check_context(
    tenant_id: str,
    stage: str,
    file_id: str | None = None,
    extraction_id: str | None = None,
) -> Iterator[LogContext]:
    """Scope a check's context; the previous values are restored on exit."""
    values = {
        "tenant_id": tenant_id,
        "stage": stage,
        "file_id": file_id,
        "extraction_id": extraction_id,
    }
    tokens = [
        (_VARS[name], _VARS[name].set(value))
        for name, value in values.items()
        if value is not None
    ]
    try:
        yield get_context()
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def clear_context() -> None:
    """Reset all context variables."""
    for var in _VARS.values():
        var.set(None)
