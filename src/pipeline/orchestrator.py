# src/pipeline/orchestrator.py — v1
"""Pipeline orchestrator — run every service pipeline of a run concurrently.

Drives one run:
  1. Evaluate the trigger policy once (deploy stages kept or stripped).
  2. Start one ServicePipeline per service; pipelines share nothing but
     the cache store, the cancellation signal and the deploy locks.
  3. Wait for every pipeline, release the run's cache leases.
  4. Reduce the per-service results to a single verdict.

A failing service never stops its siblings. A FingerprintCollision aborts the
whole run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from shipline.cache.base_cache_store import BaseCacheStore
from shipline.core.models import PipelineResult, RunResult, RunSpec, Service, Verdict
from shipline.logging.context import clear_context, set_run_context
from shipline.pipeline.context import RunContext
from shipline.pipeline.service_pipeline import ServicePipeline
from shipline.pipeline.stage_executor import StageExecutor
from shipline.pipeline.trigger import apply_trigger_policy

logger = logging.getLogger(__name__)


def compute_verdict(results: Sequence[PipelineResult], fatal_error: str | None = None) -> Verdict:
    """Reduce per-service outcomes to the run verdict.

    - fatal run error -> failure
    - every pipeline succeeded (or there were none) -> success
    - nothing deployed and an execution error occurred -> failure
    - at least one pipeline succeeded -> partial-failure
    - otherwise -> failure
    """
    if fatal_error is not None:
        return "failure"
    if all(r.final_status == "success" for r in results):
        return "success"
    if not any(r.deployed for r in results) and any(r.execution_error for r in results):
        return "failure"
    if any(r.final_status == "success" for r in results):
        return "partial-failure"
    return "failure"


class PipelineOrchestrator:
    """Top-level driver for a multi-service run.

    Args:
        executor: Shared stage executor (and through it, the cache store).
        cache_store: Store whose leases are released at run end. Defaults to
            the executor's store.
        max_parallel_services: Upper bound on concurrently running pipelines.
            None runs every service at once.
        serialize_deploys: Serialize deploys that target the same cluster
            namespace.
    """

    def __init__(
        self,
        executor: StageExecutor,
        cache_store: BaseCacheStore | None = None,
        max_parallel_services: int | None = None,
        serialize_deploys: bool = True,
    ) -> None:
        self._executor = executor
        self._pipeline = ServicePipeline(executor)
        self._cache = cache_store if cache_store is not None else executor.cache_store
        self._max_parallel = max_parallel_services
        self._serialize_deploys = serialize_deploys
        self._active_runs: dict[str, RunContext] = {}

    @property
    def executor(self) -> StageExecutor:
        return self._executor

    def cancel(self, reason: str = "requested", run_id: str | None = None) -> None:
        """Cancel active runs (all, or only run_id); running stages finish first."""
        for active_id, run in list(self._active_runs.items()):
            if run_id is None or active_id == run_id:
                run.cancel(reason)

    async def run(self, run_spec: RunSpec, cancel_event: asyncio.Event | None = None) -> RunResult:
        """Execute every service pipeline of run_spec and return the verdict."""
        set_run_context(run_spec.run_id)
        started_at = datetime.now(timezone.utc)
        services, deploy_enabled = apply_trigger_policy(run_spec)

        run = RunContext(
            run_id=run_spec.run_id,
            trigger=run_spec.trigger,
            policy=run_spec.policy,
            serialize_deploys=self._serialize_deploys,
        )
        if cancel_event is not None:
            run.cancel_event = cancel_event
        self._active_runs[run.run_id] = run

        logger.info(
            "Run %s started: %d services, branch '%s' @ %s (%s), deploys %s",
            run.run_id, len(services), run.trigger.branch, run.trigger.commit[:12],
            run.trigger.event, "enabled" if deploy_enabled else "disabled",
        )

        semaphore = asyncio.Semaphore(self._max_parallel) if self._max_parallel else None
        tasks = [
            asyncio.create_task(self._run_service(service, run, semaphore),
                                name=f"pipeline-{service.id}")
            for service in services
        ]
        try:
            results = list(await asyncio.gather(*tasks))
        finally:
            self._active_runs.pop(run.run_id, None)
            if self._cache is not None:
                self._cache.release_leases(run.run_id)

        verdict = compute_verdict(results, run.fatal_error)
        result = RunResult(
            run_id=run.run_id,
            trigger=run.trigger,
            verdict=verdict,
            pipeline_results=results,
            deploy_enabled=deploy_enabled,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            cancelled=run.cancelled,
            fatal_error=run.fatal_error,
        )
        logger.info(
            "Run %s finished: %s in %.1fs (%s)",
            run.run_id, verdict, result.duration_seconds,
            ", ".join(f"{r.service_id}={r.final_status}" for r in results) or "no services",
        )
        clear_context()
        return result

    async def _run_service(
        self,
        service: Service,
        run: RunContext,
        semaphore: asyncio.Semaphore | None,
    ) -> PipelineResult:
        started_at = datetime.now(timezone.utc)
        try:
            if semaphore is None:
                return await self._pipeline.execute(service, run)
            async with semaphore:
                return await self._pipeline.execute(service, run)
        except Exception as e:
            logger.exception("Pipeline %s crashed", service.id)
            return PipelineResult(
                service_id=service.id,
                final_status="failed",
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
                error=f"{type(e).__name__}: {e}",
            )
