# src/backends/kubectl_backend.py — v1
"""Cluster backend driving kubectl against a Deployment resource."""

from __future__ import annotations

import json
import logging
from typing import Any

from shipline.backends.base_cluster_backend import BaseClusterBackend
from shipline.backends.credentials import secret_values
from shipline.backends.process import ProcessResult, redact, run_process
from shipline.core.errors import ShiplineError, TransientInfraError
from shipline.core.models import Credentials, DeploymentTarget, RolloutStatus
from shipline.core.retry import is_transient_output

logger = logging.getLogger(__name__)


class ClusterCommandError(ShiplineError):
    """kubectl rejected a request for a non-transient reason."""


class KubectlBackend(BaseClusterBackend):
    """kubectl implementation of BaseClusterBackend."""

    def __init__(self, binary: str = "kubectl", timeout_s: float | None = 60.0) -> None:
        self._binary = binary
        self._timeout_s = timeout_s

    async def current_image(
        self, target: DeploymentTarget, credentials: Credentials | None = None
    ) -> str | None:
        resource = await self._get_deployment(target, credentials)
        if resource is None:
            return None
        for container in resource.get("spec", {}).get("template", {}).get("spec", {}).get(
            "containers", []
        ):
            if container.get("name") == target.container_name:
                return container.get("image")
        return None

    async def apply(
        self,
        target: DeploymentTarget,
        descriptor: str,
        credentials: Credentials | None = None,
    ) -> None:
        result = await self._kubectl(
            ["apply", "-n", target.namespace, "-f", "-"],
            target, credentials, stdin=descriptor,
        )
        self._raise_for(result, "apply", credentials)
        logger.debug("kubectl apply: %s", result.output.strip())

    async def rollout_status(
        self, target: DeploymentTarget, credentials: Credentials | None = None
    ) -> RolloutStatus:
        resource = await self._get_deployment(target, credentials)
        if resource is None:
            return "failed"
        return evaluate_rollout(resource)

    async def _get_deployment(
        self, target: DeploymentTarget, credentials: Credentials | None
    ) -> dict[str, Any] | None:
        result = await self._kubectl(
            ["get", "deployment", target.deployment_name, "-n", target.namespace, "-o", "json"],
            target, credentials,
        )
        if not result.ok and "notfound" in result.output.lower().replace(" ", ""):
            return None
        self._raise_for(result, "get deployment", credentials)
        try:
            return json.loads(result.output)
        except json.JSONDecodeError as e:
            raise ClusterCommandError(f"Unparseable kubectl output: {e}") from e

    async def _kubectl(
        self,
        args: list[str],
        target: DeploymentTarget,
        credentials: Credentials | None,
        stdin: str | None = None,
    ) -> ProcessResult:
        argv = [self._binary, *_auth_flags(target, credentials), *args]
        return await run_process(argv, stdin=stdin, timeout_s=self._timeout_s)

    def _raise_for(
        self, result: ProcessResult, action: str, credentials: Credentials | None
    ) -> None:
        if result.ok:
            return
        output = redact(result.output, secret_values(credentials)).strip()
        if result.timed_out or is_transient_output(output):
            raise TransientInfraError(f"kubectl {action}: {output[-500:]}")
        raise ClusterCommandError(f"kubectl {action} failed: {output[-500:]}")


def _auth_flags(target: DeploymentTarget, credentials: Credentials | None) -> list[str]:
    flags: list[str] = []
    if credentials is not None and credentials.kubeconfig is not None:
        flags += ["--kubeconfig", str(credentials.kubeconfig)]
    if credentials is not None and credentials.server:
        flags += ["--server", credentials.server]
        if credentials.token is not None:
            flags += ["--token", credentials.token.get_secret_value()]
    else:
        flags += ["--context", target.cluster]
    return flags


def evaluate_rollout(resource: dict[str, Any]) -> RolloutStatus:
    """Derive rollout status from a Deployment resource document.

    Stable once the controller observed the latest generation and every
    desired replica is updated and available with no old replicas left.
    """
    spec = resource.get("spec", {})
    status = resource.get("status", {})

    for condition in status.get("conditions", []):
        if (
            condition.get("type") == "Progressing"
            and condition.get("reason") == "ProgressDeadlineExceeded"
        ):
            return "failed"

    generation = resource.get("metadata", {}).get("generation", 0)
    if status.get("observedGeneration", 0) < generation:
        return "progressing"

    desired = spec.get("replicas", 1)
    updated = status.get("updatedReplicas", 0)
    total = status.get("replicas", 0)
    available = status.get("availableReplicas", 0)
    if updated >= desired and total == updated and available >= updated:
        return "stable"
    return "progressing"
