# src/backends/base_cluster_backend.py — v1
"""Abstract cluster backend used by the Deployment Controller."""

from __future__ import annotations

from abc import ABC, abstractmethod

from shipline.core.models import Credentials, DeploymentTarget, RolloutStatus


class BaseClusterBackend(ABC):
    """Accepts deployment descriptors and reports rollout progress.

    Implementations raise TransientInfraError for API timeouts and 5xx
    responses; any other exception is treated as a hard failure.
    """

    @abstractmethod
    async def current_image(
        self, target: DeploymentTarget, credentials: Credentials | None = None
    ) -> str | None:
        """Image currently running in target's container, None if not deployed."""

    @abstractmethod
    async def apply(
        self,
        target: DeploymentTarget,
        descriptor: str,
        credentials: Credentials | None = None,
    ) -> None:
        """Submit a rendered descriptor."""

    @abstractmethod
    async def rollout_status(
        self, target: DeploymentTarget, credentials: Credentials | None = None
    ) -> RolloutStatus:
        """Return "progressing", "stable" or "failed"."""
