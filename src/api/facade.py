# src/api/facade.py — v1
"""Public API facade — single entry point for running a pipeline.

Usage:
    from shipline.api.facade import run_pipeline
    result = await run_pipeline("pipeline.yaml", TriggerContext(branch="main", commit=sha))
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from shipline.backends.backend_factory import (
    create_build_backend,
    create_cluster_backend,
    create_credential_provider,
)
from shipline.cache.cache_factory import create_cache_store
from shipline.config.pipeline_loader import load_pipeline
from shipline.config.settings import Settings
from shipline.core.models import RunResult, TriggerContext
from shipline.core.retry import RetryConfig
from shipline.deploy.controller import DeploymentController
from shipline.pipeline.actions import BuildAction, CommandAction, DeployAction, PushAction
from shipline.pipeline.orchestrator import PipelineOrchestrator
from shipline.pipeline.stage_executor import StageExecutor

if TYPE_CHECKING:
    from shipline.backends.base_build_backend import BaseBuildBackend
    from shipline.backends.base_cluster_backend import BaseClusterBackend
    from shipline.backends.credentials import BaseCredentialProvider
    from shipline.cache.base_cache_store import BaseCacheStore

logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: Settings | None = None,
    cache_store: BaseCacheStore | None = None,
    build_backend: BaseBuildBackend | None = None,
    cluster_backend: BaseClusterBackend | None = None,
    credential_provider: BaseCredentialProvider | None = None,
) -> PipelineOrchestrator:
    """Wire an orchestrator from settings, with optional injected backends.

    Args:
        settings: Global settings. Loaded from .env if None.
        cache_store: Artifact cache. Built from settings if None.
        build_backend: Image build/push backend. Built from settings if None.
        cluster_backend: Cluster API backend. Built from settings if None.
        credential_provider: Registry/cluster secrets. Read from settings if None.

    Returns:
        Ready-to-run PipelineOrchestrator.
    """
    settings = settings or Settings()
    if cache_store is None and settings.cache_enabled:
        cache_store = create_cache_store(settings)
    build_backend = build_backend or create_build_backend(settings)
    cluster_backend = cluster_backend or create_cluster_backend(settings)
    credential_provider = credential_provider or create_credential_provider(settings)

    retry = RetryConfig(
        max_retries=settings.infra_max_retries,
        base_delay_s=settings.infra_retry_base_delay_s,
        backoff_factor=settings.infra_retry_backoff_factor,
    )
    controller = DeploymentController(
        cluster_backend,
        credential_provider=credential_provider,
        rollout_timeout_s=settings.rollout_timeout_s,
        poll_interval_s=settings.rollout_poll_interval_s,
        rollback_enabled=settings.rollback_enabled,
        placeholder=settings.descriptor_placeholder,
        retry_config=retry,
        archive_size=settings.deployment_archive_size,
    )
    actions = {
        "test": CommandAction(default_timeout_s=settings.command_timeout_s),
        "build": BuildAction(build_backend, credential_provider, retry),
        "push": PushAction(build_backend, credential_provider, retry),
        "deploy": DeployAction(controller),
    }
    executor = StageExecutor(cache_store, actions, cache_enabled=settings.cache_enabled)
    return PipelineOrchestrator(
        executor,
        cache_store=cache_store,
        max_parallel_services=settings.max_parallel_services,
        serialize_deploys=settings.serialize_deploys,
    )


async def run_pipeline(
    pipeline_path: Path | str,
    trigger: TriggerContext,
    settings: Settings | None = None,
    orchestrator: PipelineOrchestrator | None = None,
    cancel_event: asyncio.Event | None = None,
    run_id: str | None = None,
) -> RunResult:
    """Load a pipeline definition and run it for one trigger.

    Raises:
        PipelineDefinitionError: If the definition file is invalid.
    """
    settings = settings or Settings()
    definition = load_pipeline(pipeline_path, settings)
    run_spec = definition.to_run_spec(trigger, run_id=run_id)
    orchestrator = orchestrator or build_orchestrator(settings)
    return await orchestrator.run(run_spec, cancel_event=cancel_event)
