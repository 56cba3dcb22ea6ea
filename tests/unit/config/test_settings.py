# tests/unit/config/test_settings.py — v1
"""Tests for config/settings.py — defaults and cross-field validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from shipline.config.settings import ConfigurationError, Settings, load_settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestDefaults:
    def test_defaults(self):
        s = _settings()
        assert s.cache_backend == "json"
        assert s.release_branch == "main"
        assert s.latest_tag == "latest"
        assert s.serialize_deploys is True
        assert s.rollback_enabled is True
        assert s.descriptor_placeholder == "{{IMAGE}}"
        assert s.max_parallel_services is None

    def test_load_settings_overrides(self):
        s = load_settings(_env_file=None, release_branch="release", cache_backend="memory")
        assert s.release_branch == "release"
        assert s.cache_backend == "memory"

    def test_env_variables(self, monkeypatch):
        monkeypatch.setenv("RELEASE_BRANCH", "prod")
        monkeypatch.setenv("MAX_PARALLEL_SERVICES", "3")
        s = _settings()
        assert s.release_branch == "prod"
        assert s.max_parallel_services == 3

    def test_secrets_not_in_repr(self):
        s = _settings(registry_username="ci", registry_password="hunter2")
        assert "hunter2" not in repr(s)
        assert s.registry_password.get_secret_value() == "hunter2"


class TestValidation:
    def test_redis_requires_url(self):
        with pytest.raises(ConfigurationError, match="CACHE_REDIS_URL"):
            _settings(cache_backend="redis")

    def test_redis_with_url(self):
        s = _settings(cache_backend="redis", cache_redis_url="redis://localhost:6379/0")
        assert s.cache_backend == "redis"

    def test_poll_interval_must_be_positive(self):
        with pytest.raises(ConfigurationError, match="POLL_INTERVAL"):
            _settings(rollout_poll_interval_s=0)

    def test_poll_interval_not_above_timeout(self):
        with pytest.raises(ConfigurationError, match="ROLLOUT_TIMEOUT_S"):
            _settings(rollout_timeout_s=10, rollout_poll_interval_s=30)

    def test_negative_retries(self):
        with pytest.raises(ConfigurationError, match="INFRA_MAX_RETRIES"):
            _settings(infra_max_retries=-1)

    def test_empty_placeholder(self):
        with pytest.raises(ConfigurationError, match="PLACEHOLDER"):
            _settings(descriptor_placeholder="  ")

    def test_password_without_username(self):
        with pytest.raises(ConfigurationError, match="REGISTRY_USERNAME"):
            _settings(registry_password="secret")

    def test_errors_aggregated(self):
        with pytest.raises(ConfigurationError) as exc_info:
            _settings(infra_max_retries=-1, descriptor_placeholder="")
        assert "INFRA_MAX_RETRIES" in str(exc_info.value)
        assert "PLACEHOLDER" in str(exc_info.value)

    @pytest.mark.parametrize("field", ["cache_capacity", "max_parallel_services"])
    def test_bounds_positive(self, field):
        with pytest.raises(ValidationError):
            _settings(**{field: 0})

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            _settings(cache_backend="memcached")
