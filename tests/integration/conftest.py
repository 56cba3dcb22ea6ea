# tests/integration/conftest.py — v1
"""Shared fixtures for integration tests.

Each test gets an orchestrator factory backed by a SQLite cache file, so
consecutive runs behave like separate CLI invocations sharing one cache.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from shipline.cache.sqlite_store import SqliteCacheStore
from shipline.core.retry import NO_RETRY
from shipline.pipeline.actions import BuildAction, CommandAction, DeployAction, PushAction
from shipline.pipeline.orchestrator import PipelineOrchestrator
from shipline.pipeline.stage_executor import StageExecutor


@pytest.fixture
def sqlite_store(tmp_path) -> Iterator[SqliteCacheStore]:
    store = SqliteCacheStore(tmp_path / "cache" / "artifacts.db")
    yield store
    store.close()


@pytest.fixture
def make_orchestrator(sqlite_store, build_backend, controller):
    """Build a fresh orchestrator over the shared cache and fake backends."""

    def _make() -> PipelineOrchestrator:
        actions = {
            "test": CommandAction(default_timeout_s=60),
            "build": BuildAction(build_backend, retry_config=NO_RETRY),
            "push": PushAction(build_backend, retry_config=NO_RETRY),
            "deploy": DeployAction(controller),
        }
        return PipelineOrchestrator(StageExecutor(sqlite_store, actions))

    return _make
