# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

No module redefines these types — all imports come from core.models.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

StageKind = Literal["test", "build", "push", "deploy"]
StageStatus = Literal["passed", "failed", "cached", "skipped"]
PipelineStatus = Literal["success", "failed", "cancelled", "not-started"]
Verdict = Literal["success", "partial-failure", "failure"]
EventType = Literal["push", "pull_request", "manual"]
RolloutState = Literal["pending", "in-progress", "stable", "failed", "rolled-back"]
RolloutStatus = Literal["progressing", "stable", "failed"]
ArtifactKind = Literal["test_report", "image", "pushed_image", "deployment", "output"]


def generate_run_id(timestamp: datetime | None = None) -> str:
    """Generate a run_id: yyyymmdd_hhmmss_{uuid4_short}."""
    ts = timestamp or datetime.now(timezone.utc)
    return f"{ts.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


# === PIPELINE DEFINITION ===


class Stage(BaseModel):
    """One step of a service pipeline."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: StageKind
    command: list[str] = Field(default_factory=list)
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    timeout_s: float | None = None
    consumes: str | None = None

    @property
    def cacheable(self) -> bool:
        return self.kind != "deploy"


class DeploymentTarget(BaseModel):
    """Where a service's deploy stage rolls out to."""

    model_config = ConfigDict(frozen=True)

    environment: str = "production"
    cluster: str
    namespace: str = "default"
    deployment_name: str
    container_name: str
    template: Path
    rollout_timeout_s: float | None = None

    @property
    def lock_key(self) -> str:
        """Identity of the cluster resource set this target reconfigures."""
        return f"{self.cluster}/{self.namespace}"


class Service(BaseModel):
    """A deployable unit and its ordered stage list."""

    model_config = ConfigDict(frozen=True)

    id: str
    source: Path
    build_context: str = "."
    dockerfile: str = "Dockerfile"
    image_repository: str = ""
    stages: list[Stage]
    deployment: DeploymentTarget | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_consumes(cls, data: Any) -> Any:
        """Wire push to the last build and deploy to the last push (or build)."""
        if not isinstance(data, dict) or "stages" not in data:
            return data
        wired: list[Any] = []
        last_by_kind: dict[str, str] = {}
        for raw in data["stages"]:
            stage = raw.model_dump() if isinstance(raw, Stage) else dict(raw)
            kind = stage.get("kind")
            if stage.get("consumes") is None:
                if kind == "push":
                    stage["consumes"] = last_by_kind.get("build")
                elif kind == "deploy":
                    stage["consumes"] = last_by_kind.get("push") or last_by_kind.get("build")
            if kind and stage.get("name"):
                last_by_kind[kind] = stage["name"]
            wired.append(stage)
        return {**data, "stages": wired}

    @model_validator(mode="after")
    def _validate_stages(self) -> Service:
        errors: list[str] = []
        seen: set[str] = set()
        for idx, stage in enumerate(self.stages):
            if stage.name in seen:
                errors.append(f"duplicate stage name '{stage.name}'")
            if stage.consumes is not None and stage.consumes not in seen:
                errors.append(
                    f"stage '{stage.name}' consumes '{stage.consumes}' "
                    "which is not an earlier stage"
                )
            seen.add(stage.name)
            if stage.kind == "deploy" and idx != len(self.stages) - 1:
                errors.append(f"deploy stage '{stage.name}' must be the last stage")
            if stage.kind == "test" and not stage.command:
                errors.append(f"test stage '{stage.name}' has no command")
            if stage.kind in ("push", "deploy") and stage.consumes is None:
                errors.append(f"{stage.kind} stage '{stage.name}' has no upstream image")

        kinds = [s.kind for s in self.stages]
        if "deploy" in kinds and self.deployment is None:
            errors.append("deploy stage declared without a deployment target")
        if ("build" in kinds or "push" in kinds) and not self.image_repository:
            errors.append("build/push stages require image_repository")

        if errors:
            raise ValueError(f"service '{self.id}': " + "; ".join(errors))
        return self

    def stage(self, name: str) -> Stage | None:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    @property
    def has_deploy(self) -> bool:
        return any(s.kind == "deploy" for s in self.stages)


class TriggerContext(BaseModel):
    """What caused this run."""

    branch: str
    commit: str
    event: EventType = "push"


class TriggerPolicy(BaseModel):
    """Which triggers may deploy, and the mutable tag pushes move."""

    release_branch: str = "main"
    deploy_events: list[EventType] = Field(default_factory=lambda: ["push", "manual"])
    latest_tag: str = "latest"


class RunSpec(BaseModel):
    """Everything needed to start one run."""

    run_id: str = Field(default_factory=generate_run_id)
    services: list[Service]
    trigger: TriggerContext
    policy: TriggerPolicy = Field(default_factory=TriggerPolicy)

    @model_validator(mode="after")
    def _unique_services(self) -> RunSpec:
        ids = [s.id for s in self.services]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate service ids: {duplicates}")
        return self


# === ARTIFACTS & CACHE ===


class Artifact(BaseModel):
    """Reference to a stored stage output."""

    kind: ArtifactKind
    reference: str
    digest: str
    data: dict[str, Any] = Field(default_factory=dict)


class CacheEntry(BaseModel):
    """Single cache entry linking a fingerprint to an artifact."""

    key: str
    artifact: Artifact
    created_at: datetime
    last_accessed_at: datetime
    hits: int = 0


# === CREDENTIALS ===


class Credentials(BaseModel):
    """Short-lived secret material handed to one backend call."""

    username: str | None = None
    password: SecretStr | None = None
    token: SecretStr | None = None
    kubeconfig: Path | None = None
    server: str | None = None


# === DEPLOYMENT ===


class DeploymentSpec(BaseModel):
    """Input to DeploymentController.deploy()."""

    service_id: str
    target: DeploymentTarget
    image_reference: str
    template: str
    credentials: Credentials | None = Field(default=None, exclude=True, repr=False)


class Deployment(BaseModel):
    """A rollout owned by the controller until it reaches a terminal state."""

    deployment_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    service_id: str
    target: DeploymentTarget
    image_reference: str
    previous_image: str | None = None
    state: RolloutState = "pending"
    history: list[tuple[RolloutState, datetime]] = Field(default_factory=list)

    def transition(self, state: RolloutState) -> None:
        self.state = state
        self.history.append((state, datetime.now(timezone.utc)))


class DeploymentResult(BaseModel):
    """Outcome of one deploy() call."""

    state: Literal["stable", "failed"]
    rolled_back: bool = False
    image_reference: str
    previous_image: str | None = None
    running_image: str | None = None
    error: str | None = None
    error_type: str | None = None


# === RESULTS ===


class StageResult(BaseModel):
    """Outcome of one stage for one service."""

    stage_name: str
    kind: StageKind
    status: StageStatus
    output: Artifact | None = None
    logs: str = ""
    fingerprint: str | None = None
    error: str | None = None
    error_type: str | None = None
    execution_error: bool = False
    duration_ms: int = 0
    deployment: DeploymentResult | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in ("passed", "cached")


class PipelineResult(BaseModel):
    """Outcome of one service pipeline."""

    service_id: str
    stage_results: list[StageResult] = Field(default_factory=list)
    final_status: PipelineStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def execution_error(self) -> bool:
        return self.error is not None or any(r.execution_error for r in self.stage_results)

    @property
    def deployed(self) -> bool:
        """True when a deploy stage completed with a stable rollout."""
        return any(r.kind == "deploy" and r.status == "passed" for r in self.stage_results)

    def result_for(self, stage_name: str) -> StageResult | None:
        for result in self.stage_results:
            if result.stage_name == stage_name:
                return result
        return None


class RunResult(BaseModel):
    """Single verdict for a whole run plus every service's outcome."""

    run_id: str
    trigger: TriggerContext
    verdict: Verdict
    pipeline_results: list[PipelineResult] = Field(default_factory=list)
    deploy_enabled: bool = False
    started_at: datetime
    completed_at: datetime
    cancelled: bool = False
    fatal_error: str | None = None

    @property
    def exit_code(self) -> int:
        return 0 if self.verdict == "success" else 1

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def result_for(self, service_id: str) -> PipelineResult | None:
        for result in self.pipeline_results:
            if result.service_id == service_id:
                return result
        return None
