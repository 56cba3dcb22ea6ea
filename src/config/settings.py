# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for runner-specific settings. Per-pipeline
configuration (services, stages, trigger policy) lives in the pipeline
definition file instead, see config/pipeline_loader.py.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Cache ===
    cache_enabled: bool = True
    cache_backend: Literal["memory", "json", "sqlite", "redis"] = "json"
    cache_root: Path = Path("~/.shipline/cache")
    cache_capacity: int | None = 5000
    cache_redis_url: str = ""

    # === Trigger policy defaults (a pipeline file may override) ===
    release_branch: str = "main"
    latest_tag: str = "latest"

    # === Concurrency ===
    max_parallel_services: int | None = None
    serialize_deploys: bool = True

    # === Deployment ===
    rollout_timeout_s: float = 300.0
    rollout_poll_interval_s: float = 5.0
    rollback_enabled: bool = True
    descriptor_placeholder: str = "{{IMAGE}}"
    deployment_archive_size: int = 100

    # === Backend retries (registry / cluster API only) ===
    infra_max_retries: int = 3
    infra_retry_base_delay_s: float = 2.0
    infra_retry_backoff_factor: float = 2.0

    # === Backends ===
    build_backend: Literal["docker"] = "docker"
    cluster_backend: Literal["kubectl"] = "kubectl"
    docker_binary: str = "docker"
    kubectl_binary: str = "kubectl"
    command_timeout_s: float = 1800.0

    # === Credentials (passed through, never persisted) ===
    registry_username: str = ""
    registry_password: SecretStr = SecretStr("")
    cluster_token: SecretStr = SecretStr("")
    cluster_server: str = ""
    kubeconfig: Path | None = None

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("cache_capacity", "max_parallel_services")
    @classmethod
    def validate_positive_bound(cls, v: int | None) -> int | None:  # noqa: N805
        if v is not None and v < 1:
            raise ValueError("bound must be >= 1 or unset")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.cache_backend == "redis" and not self.cache_redis_url:
            errors.append("CACHE_BACKEND=redis requires CACHE_REDIS_URL")

        if self.rollout_poll_interval_s <= 0:
            errors.append("ROLLOUT_POLL_INTERVAL_S must be > 0")

        if self.rollout_poll_interval_s > self.rollout_timeout_s:
            errors.append("ROLLOUT_POLL_INTERVAL_S must be <= ROLLOUT_TIMEOUT_S")

        if self.infra_max_retries < 0:
            errors.append("INFRA_MAX_RETRIES must be >= 0")

        if not self.descriptor_placeholder.strip():
            errors.append("DESCRIPTOR_PLACEHOLDER must not be empty")

        if self.registry_password.get_secret_value() and not self.registry_username:
            errors.append("REGISTRY_PASSWORD set without REGISTRY_USERNAME")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or CLI flags).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
