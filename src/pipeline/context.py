# src/pipeline/context.py — v1
"""Per-run and per-stage execution context."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import AsyncContextManager

from shipline.core.models import (
    DeploymentTarget,
    Service,
    StageResult,
    TriggerContext,
    TriggerPolicy,
)

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """State shared by every service pipeline of one run.

    Holds the cooperative cancellation signal, the per-cluster deploy locks
    and the first fatal error seen. Nothing else is shared between pipelines.
    """

    run_id: str
    trigger: TriggerContext
    policy: TriggerPolicy = field(default_factory=TriggerPolicy)
    serialize_deploys: bool = True
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    fatal_error: str | None = None
    _deploy_locks: dict[str, asyncio.Lock] = field(default_factory=dict, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self, reason: str = "requested") -> None:
        if not self.cancel_event.is_set():
            logger.warning("Run %s cancelled: %s", self.run_id, reason)
        self.cancel_event.set()

    def abort(self, error: str) -> None:
        """Record a fatal error and cancel every pipeline in the run."""
        if self.fatal_error is None:
            self.fatal_error = error
        self.cancel(reason=error)

    def deploy_slot(self, target: DeploymentTarget) -> AsyncContextManager:
        """Exclusive slot for deploys touching the same cluster namespace."""
        if not self.serialize_deploys:
            return contextlib.nullcontext()
        lock = self._deploy_locks.get(target.lock_key)
        if lock is None:
            lock = self._deploy_locks[target.lock_key] = asyncio.Lock()
        return lock


@dataclass
class StageContext:
    """Inputs to one StageExecutor.run() call."""

    service: Service
    run: RunContext
    upstream: StageResult | None = None
