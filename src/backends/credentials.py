# src/backends/credentials.py — v1
"""Credential providers for registry and cluster access.

Providers are asked for credentials right before each backend call. The
returned objects are handed to that call only; nothing here caches or
writes them anywhere.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from pydantic import SecretStr

from shipline.core.models import Credentials

if TYPE_CHECKING:
    from shipline.config.settings import Settings

logger = logging.getLogger(__name__)


class BaseCredentialProvider(ABC):
    """Supplies short- or long-lived secrets for one call at a time."""

    @abstractmethod
    async def registry_credentials(self, repository: str) -> Credentials | None:
        """Credentials for pushing to repository, or None for anonymous."""

    @abstractmethod
    async def cluster_credentials(self, cluster: str) -> Credentials | None:
        """Credentials for talking to cluster, or None to use ambient config."""


class StaticCredentialProvider(BaseCredentialProvider):
    """Fixed credentials, keyed by repository/cluster name with a fallback."""

    def __init__(
        self,
        registry: dict[str, Credentials] | Credentials | None = None,
        cluster: dict[str, Credentials] | Credentials | None = None,
    ) -> None:
        self._registry = registry
        self._cluster = cluster

    async def registry_credentials(self, repository: str) -> Credentials | None:
        return _select(self._registry, repository)

    async def cluster_credentials(self, cluster: str) -> Credentials | None:
        return _select(self._cluster, cluster)


class EnvCredentialProvider(BaseCredentialProvider):
    """Reads registry and cluster secrets from Settings (.env / environment)."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def registry_credentials(self, repository: str) -> Credentials | None:
        if not self._settings.registry_username:
            return None
        return Credentials(
            username=self._settings.registry_username,
            password=self._settings.registry_password,
        )

    async def cluster_credentials(self, cluster: str) -> Credentials | None:
        token = self._settings.cluster_token.get_secret_value()
        if not token and self._settings.kubeconfig is None:
            return None
        return Credentials(
            token=SecretStr(token) if token else None,
            server=self._settings.cluster_server or None,
            kubeconfig=self._settings.kubeconfig,
        )


def _select(
    source: dict[str, Credentials] | Credentials | None, name: str
) -> Credentials | None:
    if source is None or isinstance(source, Credentials):
        return source
    return source.get(name) or source.get("*")


def secret_values(credentials: Credentials | None) -> list[str]:
    """Plain secret strings held by credentials, for log redaction."""
    if credentials is None:
        return []
    values = []
    for secret in (credentials.password, credentials.token):
        if secret is not None and secret.get_secret_value():
            values.append(secret.get_secret_value())
    return values
