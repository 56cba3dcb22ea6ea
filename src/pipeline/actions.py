# src/pipeline/actions.py — v1
"""Stage actions — what each stage kind actually does on a cache miss.

Each action returns an ActionOutcome on success and raises a StageFailure
subclass for reported failures. Backend calls go through with_retry so only
transient registry/cluster errors are retried; test commands never are.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from shipline.backends.base_build_backend import BaseBuildBackend, BuildRequest
from shipline.backends.credentials import BaseCredentialProvider
from shipline.backends.process import run_process
from shipline.cache.fingerprint import canonical_json, hash_bytes, input_hashes
from shipline.core.errors import (
    BuildFailure,
    DeploymentFailure,
    ShiplineError,
    StageCancelled,
    StageFailure,
    TestFailure,
)
from shipline.core.models import Artifact, DeploymentResult, DeploymentSpec, Stage
from shipline.core.retry import DEFAULT_RETRY_CONFIG, RetryConfig, with_retry
from shipline.deploy.descriptor import load_template

if TYPE_CHECKING:
    from shipline.deploy.controller import DeploymentController
    from shipline.pipeline.context import StageContext

logger = logging.getLogger(__name__)


class MissingUpstreamError(ShiplineError):
    """A stage that consumes another stage's output found none."""


@dataclass
class ActionOutcome:
    """Successful result of one stage action."""

    artifact: Artifact
    logs: str = ""
    deployment: DeploymentResult | None = None


class StageAction(ABC):
    """Executes one kind of stage."""

    @abstractmethod
    async def execute(self, stage: Stage, context: StageContext) -> ActionOutcome:
        """Run the stage; raise StageFailure on a reported failure."""

    def fingerprint_extra(self, stage: Stage, context: StageContext) -> dict[str, Any]:
        """Non-file inputs that must be part of the stage's cache key."""
        return {}


def upstream_reference(stage: Stage, context: StageContext) -> str:
    upstream = context.upstream
    if upstream is None or upstream.output is None:
        raise MissingUpstreamError(
            f"stage '{stage.name}' needs the output of '{stage.consumes}'"
        )
    return upstream.output.reference


# ------------------------------------------------------------------
# test (and any other command-driven stage)
# ------------------------------------------------------------------


class CommandAction(StageAction):
    """Runs stage.command in the service source directory.

    The artifact digest covers the exit status and the declared output files,
    never the log text, so re-running unchanged inputs reproduces it.
    """

    def __init__(
        self,
        default_timeout_s: float | None = None,
        failure_cls: type[StageFailure] = TestFailure,
        artifact_kind: str = "test_report",
    ) -> None:
        self._default_timeout_s = default_timeout_s
        self._failure_cls = failure_cls
        self._artifact_kind = artifact_kind

    async def execute(self, stage: Stage, context: StageContext) -> ActionOutcome:
        service = context.service
        result = await run_process(
            stage.command,
            cwd=service.source,
            env=stage.env or None,
            timeout_s=stage.timeout_s or self._default_timeout_s,
        )
        if not result.ok:
            reason = "timed out" if result.timed_out else f"exited with {result.exit_code}"
            raise self._failure_cls(
                f"'{' '.join(stage.command)}' {reason}", logs=result.output
            )

        outputs = await asyncio.to_thread(input_hashes, service.source, stage.outputs)
        digest = hash_bytes(
            canonical_json({"exit_code": result.exit_code, "outputs": outputs}).encode("utf-8")
        )
        return ActionOutcome(
            artifact=Artifact(
                kind=self._artifact_kind,  # type: ignore[arg-type]
                reference=f"{service.id}/{stage.name}@{digest[:12]}",
                digest=digest,
                data={"outputs": dict(outputs), "duration_ms": result.duration_ms},
            ),
            logs=result.output,
        )


# ------------------------------------------------------------------
# build
# ------------------------------------------------------------------


class BuildAction(StageAction):
    """Containerizes the service through the build backend."""

    def __init__(
        self,
        backend: BaseBuildBackend,
        credential_provider: BaseCredentialProvider | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._backend = backend
        self._credentials = credential_provider
        self._retry = retry_config or DEFAULT_RETRY_CONFIG

    async def execute(self, stage: Stage, context: StageContext) -> ActionOutcome:
        service = context.service
        if stage.command:
            pre = await CommandAction(failure_cls=BuildFailure).execute(stage, context)
            logs = pre.logs
        else:
            logs = ""

        context_dir = service.source / service.build_context
        request = BuildRequest(
            service_id=service.id,
            context_dir=context_dir,
            dockerfile=context_dir / service.dockerfile,
            repository=service.image_repository,
            labels={"io.shipline.service": service.id},
        )
        credentials = (
            await self._credentials.registry_credentials(service.image_repository)
            if self._credentials is not None else None
        )
        image = await with_retry(
            self._backend.build, request, credentials,
            operation=f"build {service.id}", config=self._retry,
        )
        logger.info("Built %s -> %s", service.id, image)
        return ActionOutcome(
            artifact=Artifact(
                kind="image",
                reference=image,
                digest=hash_bytes(image.encode("utf-8")),
                data={"repository": service.image_repository},
            ),
            logs=f"{logs}built {image}\n",
        )


# ------------------------------------------------------------------
# push
# ------------------------------------------------------------------


class PushAction(StageAction):
    """Publishes the upstream image under the mutable and the commit tag."""

    def __init__(
        self,
        backend: BaseBuildBackend,
        credential_provider: BaseCredentialProvider | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._backend = backend
        self._credentials = credential_provider
        self._retry = retry_config or DEFAULT_RETRY_CONFIG

    @staticmethod
    def tags(context: StageContext) -> list[str]:
        return [context.run.policy.latest_tag, context.run.trigger.commit]

    def fingerprint_extra(self, stage: Stage, context: StageContext) -> dict[str, Any]:
        return {
            "repository": context.service.image_repository,
            "tags": self.tags(context),
        }

    async def execute(self, stage: Stage, context: StageContext) -> ActionOutcome:
        service = context.service
        image = upstream_reference(stage, context)
        tags = self.tags(context)
        # fetched per call and dropped right after; never stored
        credentials = (
            await self._credentials.registry_credentials(service.image_repository)
            if self._credentials is not None else None
        )
        pushed = await with_retry(
            self._backend.push, image, service.image_repository, tags, credentials,
            operation=f"push {service.image_repository}", config=self._retry,
        )
        immutable = f"{service.image_repository}:{context.run.trigger.commit}"
        return ActionOutcome(
            artifact=Artifact(
                kind="pushed_image",
                reference=immutable,
                digest=hash_bytes(
                    canonical_json({"image": image, "tags": sorted(pushed)}).encode("utf-8")
                ),
                data={"tags": pushed, "source_image": image},
            ),
            logs="".join(f"pushed {ref}\n" for ref in pushed),
        )


# ------------------------------------------------------------------
# deploy
# ------------------------------------------------------------------


class DeployAction(StageAction):
    """Hands the pushed image to the Deployment Controller."""

    def __init__(self, controller: DeploymentController) -> None:
        self._controller = controller

    async def execute(self, stage: Stage, context: StageContext) -> ActionOutcome:
        service = context.service
        target = service.deployment
        if target is None:
            raise ShiplineError(f"service '{service.id}' has no deployment target")

        image = upstream_reference(stage, context)
        spec = DeploymentSpec(
            service_id=service.id,
            target=target,
            image_reference=image,
            template=load_template(target.template),
        )
        async with context.run.deploy_slot(target):
            # the slot may have been awaited across a cancellation
            if context.run.cancelled:
                raise StageCancelled(f"run cancelled before rollout of {image}")
            result = await self._controller.deploy(spec)

        if result.state != "stable":
            suffix = f", rolled back to {result.previous_image}" if result.rolled_back else ""
            raise DeploymentFailure(
                f"rollout of {image} failed: {result.error}{suffix}", deployment=result
            )
        return ActionOutcome(
            artifact=Artifact(
                kind="deployment",
                reference=image,
                digest=hash_bytes(f"{target.lock_key}/{target.deployment_name}={image}".encode()),
                data={"environment": target.environment, "previous_image": result.previous_image},
            ),
            logs=f"deployed {image} to {target.environment}\n",
            deployment=result,
        )
