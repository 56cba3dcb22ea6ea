# src/pipeline/stage_executor.py — v1
"""Stage executor — fingerprint, consult the cache, run on a miss.

For one (service, stage) pair:
  1. Compute the fingerprint from declared inputs, the stage definition,
     the upstream cache key and action-specific extras.
  2. On a cache hit, return the stored artifact with status ``cached``
     without running anything.
  3. On a miss, run the stage action, store the artifact under the
     fingerprint, and return ``passed``.

Failures become a ``failed`` StageResult. Only FingerprintCollision escapes,
since it is fatal to the whole run. Deploy stages are never cached.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping

from shipline.cache.base_cache_store import BaseCacheStore
from shipline.cache.fingerprint import compute_fingerprint
from shipline.core.errors import (
    DeploymentFailure,
    FingerprintCollision,
    StageCancelled,
    StageFailure,
    TransientInfraError,
)
from shipline.core.models import Artifact, Service, Stage, StageResult
from shipline.logging.context import set_stage_context
from shipline.pipeline.actions import StageAction
from shipline.pipeline.context import RunContext, StageContext

logger = logging.getLogger(__name__)


class StageExecutor:
    """Run single stages against a shared cache store.

    Args:
        cache_store: Content-addressed artifact store. None disables caching.
        actions: Action per stage kind.
        cache_enabled: When False, every stage runs and nothing is stored.
    """

    def __init__(
        self,
        cache_store: BaseCacheStore | None,
        actions: Mapping[str, StageAction],
        cache_enabled: bool = True,
    ) -> None:
        self._cache = cache_store
        self._actions = dict(actions)
        self._cache_enabled = cache_enabled and cache_store is not None

    @property
    def cache_store(self) -> BaseCacheStore | None:
        return self._cache

    def fingerprint(self, stage: Stage, context: StageContext) -> str:
        """Cache key this stage would use in the given context."""
        action = self._action_for(stage)
        upstream_key = context.upstream.fingerprint if context.upstream else None
        return compute_fingerprint(
            context.service.id,
            stage,
            context.service.source,
            upstream_key=upstream_key,
            extra=action.fingerprint_extra(stage, context),
        )

    def plan(self, service: Service, run: RunContext) -> dict[str, str]:
        """Cache key of every stage of service, chained through upstreams, without running."""
        keys: dict[str, str] = {}
        for stage in service.stages:
            upstream = None
            if stage.consumes in keys:
                upstream = StageResult(
                    stage_name=stage.consumes,
                    kind=service.stage(stage.consumes).kind,
                    status="skipped",
                    fingerprint=keys[stage.consumes],
                )
            keys[stage.name] = self.fingerprint(
                stage, StageContext(service=service, run=run, upstream=upstream)
            )
        return keys

    async def run(self, stage: Stage, context: StageContext) -> StageResult:
        """Execute one stage, or return its cached result.

        Raises:
            FingerprintCollision: When a stored artifact disagrees with a
                freshly produced one under the same key.
        """
        set_stage_context(stage.name)
        start = time.monotonic()
        service_id = context.service.id

        try:
            # input hashing reads whole trees; keep it off the event loop
            key = await asyncio.to_thread(self.fingerprint, stage, context)
        except (OSError, KeyError) as e:
            logger.error("Cannot fingerprint %s/%s: %s", service_id, stage.name, e)
            return self._result(stage, start, status="failed", error=str(e),
                                error_type=type(e).__name__, execution_error=True)

        use_cache = self._cache_enabled and stage.cacheable
        if use_cache:
            cached = await self._lookup(key, context)
            if cached is not None:
                logger.info("Cache hit for %s/%s (%s)", service_id, stage.name, key[-12:])
                return self._result(stage, start, status="cached", output=cached,
                                    fingerprint=key)

        logger.info("Running %s/%s [%s]", service_id, stage.name, stage.kind)
        try:
            outcome = await self._action_for(stage).execute(stage, context)
        except DeploymentFailure as e:
            logger.error("Stage %s/%s failed: %s", service_id, stage.name, e)
            return self._result(
                stage, start, status="failed", fingerprint=key, logs=e.logs,
                error=str(e), error_type=e.error_type,
                execution_error=e.execution_error, deployment=e.deployment,
            )
        except StageCancelled as e:
            logger.warning("Stage %s/%s not started: %s", service_id, stage.name, e)
            return self._result(stage, start, status="skipped", fingerprint=key,
                                error=str(e), error_type=type(e).__name__)
        except StageFailure as e:
            logger.error("Stage %s/%s failed: %s", service_id, stage.name, e)
            return self._result(stage, start, status="failed", fingerprint=key,
                                logs=e.logs, error=str(e), error_type=type(e).__name__)
        except TransientInfraError as e:
            logger.error("Stage %s/%s hit infrastructure error: %s", service_id, stage.name, e)
            return self._result(stage, start, status="failed", fingerprint=key, error=str(e),
                                error_type=type(e).__name__, execution_error=True)
        except FingerprintCollision:
            raise
        except Exception as e:
            logger.exception("Stage %s/%s crashed", service_id, stage.name)
            return self._result(stage, start, status="failed", fingerprint=key, error=str(e),
                                error_type=type(e).__name__, execution_error=True)

        if use_cache:
            await self._store(key, outcome.artifact, context)

        logger.info("Stage %s/%s passed", service_id, stage.name)
        return self._result(
            stage, start, status="passed", output=outcome.artifact, fingerprint=key,
            logs=outcome.logs, deployment=outcome.deployment,
        )

    # ------------------------------------------------------------------
    # Cache access
    # ------------------------------------------------------------------

    async def _lookup(self, key: str, context: StageContext) -> Artifact | None:
        assert self._cache is not None
        try:
            artifact = await self._cache.get(key)
        except Exception as e:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, e)
            return None
        if artifact is not None:
            self._cache.acquire_lease(context.run.run_id, key)
        return artifact

    async def _store(self, key: str, artifact: Artifact, context: StageContext) -> None:
        assert self._cache is not None
        self._cache.acquire_lease(context.run.run_id, key)
        try:
            await self._cache.put(key, artifact)
        except FingerprintCollision:
            raise
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    def _action_for(self, stage: Stage) -> StageAction:
        try:
            return self._actions[stage.kind]
        except KeyError:
            raise KeyError(f"no action registered for stage kind '{stage.kind}'") from None

    @staticmethod
    def _result(stage: Stage, start: float, **fields) -> StageResult:
        return StageResult(
            stage_name=stage.name,
            kind=stage.kind,
            duration_ms=int((time.monotonic() - start) * 1000),
            **fields,
        )
