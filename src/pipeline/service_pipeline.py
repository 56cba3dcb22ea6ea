# src/pipeline/service_pipeline.py — v1
"""Service pipeline — one service's stages in order, stopping at the first failure.

Each stage receives the result of the stage it consumes. A failed stage
marks the remaining stages ``skipped``. Cancellation is checked before every
stage and again once a deploy holds its cluster slot; a stage already running
(including a rollout) is allowed to finish.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from shipline.core.errors import FingerprintCollision
from shipline.core.models import PipelineResult, Service, Stage, StageResult
from shipline.logging.context import set_service_context
from shipline.pipeline.context import RunContext, StageContext
from shipline.pipeline.stage_executor import StageExecutor

logger = logging.getLogger(__name__)


class ServicePipeline:
    """Run a service's stage list through a StageExecutor."""

    def __init__(self, executor: StageExecutor) -> None:
        self._executor = executor

    async def execute(self, service: Service, run: RunContext) -> PipelineResult:
        set_service_context(service.id)
        started_at = datetime.now(timezone.utc)
        results: list[StageResult] = []
        by_name: dict[str, StageResult] = {}
        status = "success"

        for idx, stage in enumerate(service.stages):
            if run.cancelled:
                status = "cancelled" if results else "not-started"
                results.extend(_skipped(s) for s in service.stages[idx:])
                logger.warning("Pipeline %s %s before stage '%s'", service.id,
                               status, stage.name)
                break

            context = StageContext(
                service=service,
                run=run,
                upstream=by_name.get(stage.consumes) if stage.consumes else None,
            )
            try:
                result = await self._executor.run(stage, context)
            except FingerprintCollision as e:
                logger.critical("Aborting run %s: %s", run.run_id, e)
                run.abort(str(e))
                result = StageResult(
                    stage_name=stage.name, kind=stage.kind, status="failed",
                    error=str(e), error_type=type(e).__name__, execution_error=True,
                )

            results.append(result)
            by_name[stage.name] = result
            if result.status == "skipped":
                status = "cancelled"
                results.extend(_skipped(s) for s in service.stages[idx + 1:])
                break
            if not result.succeeded:
                status = "failed"
                results.extend(_skipped(s) for s in service.stages[idx + 1:])
                break

        logger.info(
            "Pipeline %s finished: %s (%s)", service.id, status,
            ", ".join(f"{r.stage_name}={r.status}" for r in results) or "no stages",
        )
        return PipelineResult(
            service_id=service.id,
            stage_results=results,
            final_status=status,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )


def _skipped(stage: Stage) -> StageResult:
    return StageResult(stage_name=stage.name, kind=stage.kind, status="skipped")
