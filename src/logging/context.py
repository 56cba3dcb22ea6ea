# src/logging/context.py — v2
"""Contextual logging support — attach run_id, service and stage to log records.

Each service pipeline runs in its own asyncio task, and tasks copy the
current context on creation, so service/stage values never leak between
concurrently running pipelines.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)
_service: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "service", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    run_id: str | None = None
    service: str | None = None
    stage: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        run_id=_run_id.get(),
        service=_service.get(),
        stage=_stage.get(),
    )


def set_run_context(run_id: str) -> None:
    """Set run-level context (called once per run)."""
    _run_id.set(run_id)


def set_service_context(service: str, stage: str | None = None) -> None:
    """Set service-level context (called inside each pipeline task)."""
    _service.set(service)
    _stage.set(stage)


def set_stage_context(stage: str | None) -> None:
    _stage.set(stage)


def clear_context() -> None:
    """Reset all context variables."""
    _run_id.set(None)
    _service.set(None)
    _stage.set(None)
