# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides in-memory build/cluster backends, sample services with real source
trees in tmp directories, and a wired orchestrator. No docker or kubectl is
needed: every external system is faked.
"""

from __future__ import annotations

import asyncio
import hashlib
import sys
from pathlib import Path
from typing import Any

import pytest
import yaml

from shipline.backends.base_build_backend import BaseBuildBackend, BuildRequest
from shipline.backends.base_cluster_backend import BaseClusterBackend
from shipline.cache.memory_store import MemoryCacheStore
from shipline.core.errors import BuildFailure, TransientInfraError
from shipline.core.models import (
    Credentials,
    DeploymentTarget,
    Service,
    TriggerContext,
    TriggerPolicy,
)
from shipline.core.retry import NO_RETRY
from shipline.deploy.controller import DeploymentController
from shipline.pipeline.actions import BuildAction, CommandAction, DeployAction, PushAction
from shipline.pipeline.orchestrator import PipelineOrchestrator
from shipline.pipeline.stage_executor import StageExecutor

DESCRIPTOR_TEMPLATE = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: {name}
spec:
  template:
    spec:
      containers:
        - name: {name}
          image: "{{{{IMAGE}}}}"
"""

PASSING_COMMAND = [sys.executable, "-c", "import sys; sys.exit(0)"]
FAILING_COMMAND = [sys.executable, "-c", "import sys; print('1 failed'); sys.exit(1)"]


# === FAKE BACKENDS ===


class FakeBuildBackend(BaseBuildBackend):
    """Deterministic image builder: the image id hashes the build context files."""

    def __init__(self, delay_s: float = 0.0) -> None:
        self.delay_s = delay_s
        self.builds: list[BuildRequest] = []
        self.pushes: list[tuple[str, str, list[str]]] = []
        self.fail_builds: set[str] = set()
        self.transient_push_failures = 0
        self.credentials_seen: list[Credentials | None] = []

    async def build(self, request: BuildRequest, credentials: Credentials | None = None) -> str:
        self.builds.append(request)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if request.service_id in self.fail_builds:
            raise BuildFailure(f"build of {request.service_id} failed", logs="error: boom")
        digest = hashlib.sha256(request.service_id.encode())
        for path in sorted(request.context_dir.rglob("*")):
            if path.is_file():
                digest.update(path.relative_to(request.context_dir).as_posix().encode())
                digest.update(path.read_bytes())
        return f"sha256:{digest.hexdigest()}"

    async def push(
        self,
        image_reference: str,
        repository: str,
        tags: list[str],
        credentials: Credentials | None = None,
    ) -> list[str]:
        self.credentials_seen.append(credentials)
        if self.transient_push_failures > 0:
            self.transient_push_failures -= 1
            raise TransientInfraError("registry returned 503")
        self.pushes.append((image_reference, repository, list(tags)))
        return [f"{repository}:{tag}" for tag in tags]


class FakeClusterBackend(BaseClusterBackend):
    """In-memory cluster: applying a descriptor swaps the running image.

    Images in ``unhealthy`` never become stable; images in ``crashing`` are
    reported as failed.
    """

    def __init__(self, running: dict[str, str] | None = None) -> None:
        self.running: dict[str, str] = dict(running or {})
        self.applied: list[tuple[str, str]] = []
        self.unhealthy: set[str] = set()
        self.crashing: set[str] = set()
        self.apply_delay_s = 0.0
        self.transient_status_errors = 0
        self.active_applies = 0
        self.max_concurrent_applies = 0

    async def current_image(
        self, target: DeploymentTarget, credentials: Credentials | None = None
    ) -> str | None:
        return self.running.get(target.deployment_name)

    async def apply(
        self, target: DeploymentTarget, descriptor: str, credentials: Credentials | None = None
    ) -> None:
        self.active_applies += 1
        self.max_concurrent_applies = max(self.max_concurrent_applies, self.active_applies)
        try:
            if self.apply_delay_s:
                await asyncio.sleep(self.apply_delay_s)
            image = _descriptor_image(descriptor)
            self.running[target.deployment_name] = image
            self.applied.append((target.deployment_name, image))
        finally:
            self.active_applies -= 1

    async def rollout_status(
        self, target: DeploymentTarget, credentials: Credentials | None = None
    ) -> str:
        if self.transient_status_errors > 0:
            self.transient_status_errors -= 1
            raise TransientInfraError("cluster API timeout")
        image = self.running.get(target.deployment_name)
        if image in self.crashing:
            return "failed"
        if image in self.unhealthy:
            return "progressing"
        return "stable"


def _descriptor_image(descriptor: str) -> str:
    document: Any = yaml.safe_load(descriptor)
    return document["spec"]["template"]["spec"]["containers"][0]["image"]


# === FIXTURES: Backends and wiring ===


@pytest.fixture
def build_backend() -> FakeBuildBackend:
    return FakeBuildBackend()


@pytest.fixture
def cluster_backend() -> FakeClusterBackend:
    return FakeClusterBackend()


@pytest.fixture
def cache_store() -> MemoryCacheStore:
    return MemoryCacheStore(capacity=1000)


@pytest.fixture
def controller(cluster_backend: FakeClusterBackend) -> DeploymentController:
    return DeploymentController(
        cluster_backend,
        rollout_timeout_s=0.3,
        poll_interval_s=0.02,
        retry_config=NO_RETRY,
    )


@pytest.fixture
def executor(
    cache_store: MemoryCacheStore,
    build_backend: FakeBuildBackend,
    controller: DeploymentController,
) -> StageExecutor:
    actions = {
        "test": CommandAction(default_timeout_s=60),
        "build": BuildAction(build_backend, retry_config=NO_RETRY),
        "push": PushAction(build_backend, retry_config=NO_RETRY),
        "deploy": DeployAction(controller),
    }
    return StageExecutor(cache_store, actions)


@pytest.fixture
def orchestrator(executor: StageExecutor) -> PipelineOrchestrator:
    return PipelineOrchestrator(executor)


# === FIXTURES: Sample data ===


@pytest.fixture
def release_trigger() -> TriggerContext:
    return TriggerContext(branch="main", commit="c0ffee1234567890", event="push")


@pytest.fixture
def feature_trigger() -> TriggerContext:
    return TriggerContext(branch="feature/login", commit="c0ffee1234567890", event="push")


@pytest.fixture
def policy() -> TriggerPolicy:
    return TriggerPolicy(release_branch="main")


def write_service_tree(root: Path, name: str) -> Path:
    """Create a minimal service source tree with app code, Dockerfile and descriptor."""
    source = root / name
    (source / "app").mkdir(parents=True, exist_ok=True)
    (source / "app" / "main.py").write_text(f"print('{name}')\n", encoding="utf-8")
    (source / "requirements.txt").write_text("flask==3.0.0\n", encoding="utf-8")
    (source / "Dockerfile").write_text("FROM python:3.12-slim\nCOPY . /app\n", encoding="utf-8")
    (source / "deploy.yaml").write_text(DESCRIPTOR_TEMPLATE.format(name=name), encoding="utf-8")
    return source


def make_service(
    root: Path,
    name: str,
    test_command: list[str] | None = None,
    with_test: bool = True,
    with_deploy: bool = True,
    cluster: str = "prod",
) -> Service:
    source = write_service_tree(root, name)
    stages: list[dict[str, Any]] = []
    if with_test:
        stages.append({
            "name": "unit-tests",
            "kind": "test",
            "command": test_command or PASSING_COMMAND,
            "inputs": ["app", "requirements.txt"],
        })
    stages.append({"name": "image", "kind": "build", "inputs": ["app", "Dockerfile", "requirements.txt"]})
    stages.append({"name": "publish", "kind": "push"})
    deployment = None
    if with_deploy:
        stages.append({"name": "rollout", "kind": "deploy"})
        deployment = {
            "cluster": cluster,
            "namespace": "web",
            "deployment_name": name,
            "container_name": name,
            "template": source / "deploy.yaml",
        }
    return Service(
        id=name,
        source=source,
        image_repository=f"registry.example.com/acme/{name}",
        stages=stages,
        deployment=deployment,
    )


@pytest.fixture
def service_factory(tmp_path: Path):
    """Callable building sample services rooted in tmp_path."""

    def _factory(name: str, **kwargs: Any) -> Service:
        return make_service(tmp_path, name, **kwargs)

    return _factory
