# src/deploy/controller.py — v1
"""Deployment controller — render, apply, wait for stability, roll back.

State machine per rollout::

    pending -> in-progress -> stable
                           -> failed -> rolled-back   (rollback enabled)

A rollout that does not become stable before its deadline, or that the
cluster reports as failed, is re-applied with the image that was running
before the attempt. The controller returns only once the rollout is terminal;
run cancellation is never checked here.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque

from shipline.backends.base_cluster_backend import BaseClusterBackend
from shipline.backends.credentials import BaseCredentialProvider
from shipline.core.errors import (
    DescriptorError,
    RolloutFailed,
    RolloutTimeout,
    ShiplineError,
    TransientInfraError,
)
from shipline.core.models import (
    Credentials,
    Deployment,
    DeploymentResult,
    DeploymentSpec,
    DeploymentTarget,
)
from shipline.core.retry import DEFAULT_RETRY_CONFIG, RetryConfig, with_retry
from shipline.deploy.descriptor import DEFAULT_PLACEHOLDER, render_descriptor

logger = logging.getLogger(__name__)


class DeploymentController:
    """Drives one rollout at a time per deploy() call.

    Args:
        cluster_backend: Cluster API used to apply descriptors and poll status.
        credential_provider: Source of cluster credentials when the DeploymentSpec carries none.
        rollout_timeout_s: Default stability deadline per rollout.
        poll_interval_s: Delay between rollout status polls.
        rollback_enabled: Re-apply the previous image on failure.
        placeholder: Image placeholder token in descriptor templates.
        retry_config: Backoff for transient cluster API errors.
        archive_size: Number of terminal deployments kept in history().
    """

    def __init__(
        self,
        cluster_backend: BaseClusterBackend,
        credential_provider: BaseCredentialProvider | None = None,
        rollout_timeout_s: float = 300.0,
        poll_interval_s: float = 5.0,
        rollback_enabled: bool = True,
        placeholder: str = DEFAULT_PLACEHOLDER,
        retry_config: RetryConfig | None = None,
        archive_size: int = 100,
    ) -> None:
        self._backend = cluster_backend
        self._credentials = credential_provider
        self._rollout_timeout_s = rollout_timeout_s
        self._poll_interval_s = poll_interval_s
        self._rollback_enabled = rollback_enabled
        self._placeholder = placeholder
        self._retry = retry_config or DEFAULT_RETRY_CONFIG
        self._active: dict[str, Deployment] = {}
        self._archive: deque[Deployment] = deque(maxlen=archive_size)

    def active(self) -> list[Deployment]:
        """Rollouts currently owned by the controller."""
        return list(self._active.values())

    def history(self) -> list[Deployment]:
        """Archived terminal rollouts, oldest first."""
        return list(self._archive)

    async def deploy(self, spec: DeploymentSpec) -> DeploymentResult:
        """Roll spec.image_reference out to spec.target.

        Returns ``stable, rolled_back=False`` on success, otherwise ``failed``
        with ``rolled_back`` telling whether the previous image was restored.
        """
        deployment = Deployment(
            service_id=spec.service_id,
            target=spec.target,
            image_reference=spec.image_reference,
        )
        deployment.transition("pending")
        self._active[deployment.deployment_id] = deployment
        try:
            return await self._rollout(deployment, spec)
        finally:
            self._active.pop(deployment.deployment_id, None)
            self._archive.append(deployment)
            logger.debug(
                "Archived deployment %s (%s) in state %s",
                deployment.deployment_id, spec.service_id, deployment.state,
            )

    # ------------------------------------------------------------------
    # Rollout
    # ------------------------------------------------------------------

    async def _rollout(self, deployment: Deployment, spec: DeploymentSpec) -> DeploymentResult:
        target = spec.target
        try:
            descriptor = render_descriptor(spec.template, spec.image_reference, self._placeholder)
        except DescriptorError as e:
            deployment.transition("failed")
            logger.error("Descriptor rendering failed for %s: %s", spec.service_id, e)
            return _failed(spec, None, None, e)

        credentials = spec.credentials or await self._cluster_credentials(target)

        try:
            previous = await with_retry(
                self._backend.current_image, target, credentials,
                operation=f"current image of {target.deployment_name}", config=self._retry,
            )
        except ShiplineError as e:
            deployment.transition("failed")
            logger.error("Cannot read running image for %s: %s", spec.service_id, e)
            return _failed(spec, None, None, e)

        deployment.previous_image = previous
        deployment.transition("in-progress")
        logger.info(
            "Rolling out %s to %s/%s (previous: %s)",
            spec.image_reference, target.cluster, target.deployment_name, previous or "none",
        )

        failure: Exception | None
        try:
            await with_retry(
                self._backend.apply, target, descriptor, credentials,
                operation=f"apply {target.deployment_name}", config=self._retry,
            )
        except Exception as e:  # a partial apply must still be rolled back
            logger.error("Apply failed for %s: %s", spec.service_id, e)
            failure = e
        else:
            timeout = target.rollout_timeout_s or self._rollout_timeout_s
            failure = await self._wait_for_stable(target, credentials, timeout)

        if failure is None:
            deployment.transition("stable")
            logger.info("Rollout of %s is stable", spec.image_reference)
            return DeploymentResult(
                state="stable",
                rolled_back=False,
                image_reference=spec.image_reference,
                previous_image=previous,
                running_image=spec.image_reference,
            )

        deployment.transition("failed")
        return await self._rollback(deployment, spec, credentials, failure)

    async def _wait_for_stable(
        self,
        target: DeploymentTarget,
        credentials: Credentials | None,
        timeout_s: float,
    ) -> Exception | None:
        """Poll until stable. Returns None on success, else the failure."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        while True:
            try:
                status = await self._backend.rollout_status(target, credentials)
            except TransientInfraError as e:
                logger.warning("Rollout status poll failed, will retry: %s", e)
                status = "progressing"
            except Exception as e:  # an applied image must still reach rollback
                logger.error("Rollout status of %s unavailable: %s", target.deployment_name, e)
                return RolloutFailed(
                    f"rollout status of {target.deployment_name} unavailable: {e}"
                )

            if status == "stable":
                return None
            if status == "failed":
                return RolloutFailed(f"cluster reported rollout of {target.deployment_name} failed")

            remaining = deadline - loop.time()
            if remaining <= 0:
                return RolloutTimeout(
                    f"{target.deployment_name} not stable after {timeout_s:.0f}s"
                )
            await asyncio.sleep(min(self._poll_interval_s, remaining))

    async def _rollback(
        self,
        deployment: Deployment,
        spec: DeploymentSpec,
        credentials: Credentials | None,
        failure: Exception,
    ) -> DeploymentResult:
        previous = deployment.previous_image
        if not self._rollback_enabled or previous is None:
            logger.warning(
                "Rollout of %s failed (%s); no rollback (%s)",
                spec.image_reference, failure,
                "disabled" if not self._rollback_enabled else "no previous image",
            )
            return _failed(spec, previous, spec.image_reference, failure)

        logger.warning("Rollout of %s failed (%s); rolling back to %s",
                       spec.image_reference, failure, previous)
        target = spec.target
        try:
            descriptor = render_descriptor(spec.template, previous, self._placeholder)
            await with_retry(
                self._backend.apply, target, descriptor, credentials,
                operation=f"rollback {target.deployment_name}", config=self._retry,
            )
        except Exception as e:
            logger.critical(
                "Rollback of %s to %s failed: %s", target.deployment_name, previous, e
            )
            return _failed(spec, previous, None, failure)

        settle = await self._wait_for_stable(
            target, credentials, target.rollout_timeout_s or self._rollout_timeout_s
        )
        if settle is not None:
            logger.error("Rollback to %s applied but not yet stable: %s", previous, settle)

        deployment.transition("rolled-back")
        return DeploymentResult(
            state="failed",
            rolled_back=True,
            image_reference=spec.image_reference,
            previous_image=previous,
            running_image=previous,
            error=str(failure),
            error_type=type(failure).__name__,
        )

    async def _cluster_credentials(self, target: DeploymentTarget) -> Credentials | None:
        if self._credentials is None:
            return None
        return await self._credentials.cluster_credentials(target.cluster)


def _failed(
    spec: DeploymentSpec,
    previous: str | None,
    running: str | None,
    error: Exception,
) -> DeploymentResult:
    return DeploymentResult(
        state="failed",
        rolled_back=False,
        image_reference=spec.image_reference,
        previous_image=previous,
        running_image=running,
        error=str(error),
        error_type=type(error).__name__,
    )
