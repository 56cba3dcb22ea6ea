# src/backends/backend_factory.py — v1
"""Factory for build, cluster and credential backends."""

from __future__ import annotations

from shipline.backends.base_build_backend import BaseBuildBackend
from shipline.backends.base_cluster_backend import BaseClusterBackend
from shipline.backends.credentials import BaseCredentialProvider, EnvCredentialProvider
from shipline.config.settings import Settings


def create_build_backend(settings: Settings) -> BaseBuildBackend:
    """Instantiate the configured build/registry backend."""
    if settings.build_backend == "docker":
        from shipline.backends.docker_backend import DockerCliBackend
        return DockerCliBackend(
            binary=settings.docker_binary, timeout_s=settings.command_timeout_s
        )
    raise ValueError(f"Unsupported build backend: {settings.build_backend!r}")


def create_cluster_backend(settings: Settings) -> BaseClusterBackend:
    """Instantiate the configured cluster backend."""
    if settings.cluster_backend == "kubectl":
        from shipline.backends.kubectl_backend import KubectlBackend
        return KubectlBackend(binary=settings.kubectl_binary)
    raise ValueError(f"Unsupported cluster backend: {settings.cluster_backend!r}")


def create_credential_provider(settings: Settings) -> BaseCredentialProvider:
    return EnvCredentialProvider(settings)
