# src/backends/base_build_backend.py — v1
"""Abstract container build + registry backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, Field

from shipline.core.models import Credentials


class BuildRequest(BaseModel):
    """What to build: a context directory plus a Dockerfile-equivalent."""

    service_id: str
    context_dir: Path
    dockerfile: Path
    repository: str
    labels: dict[str, str] = Field(default_factory=dict)


class BaseBuildBackend(ABC):
    """Produces images and publishes them to a registry.

    Implementations raise BuildFailure / PushFailure for reported failures and
    TransientInfraError for registry or daemon hiccups worth retrying.
    """

    @abstractmethod
    async def build(
        self, request: BuildRequest, credentials: Credentials | None = None
    ) -> str:
        """Build the image and return a content-addressable image reference."""

    @abstractmethod
    async def push(
        self,
        image_reference: str,
        repository: str,
        tags: list[str],
        credentials: Credentials | None = None,
    ) -> list[str]:
        """Publish image under every tag; return the pushed references."""
