# src/config/pipeline_loader.py — v1
"""Load a YAML pipeline definition into typed service/stage records.

The definition is parsed once at run start. Relative ``source`` and
``deployment.template`` paths are resolved against the definition file's
directory.

Example::

    release_branch: main
    services:
      - id: api
        source: ./api
        image_repository: registry.example.com/acme/api
        deployment:
          cluster: prod
          deployment_name: api
          container_name: api
          template: deploy/api.yaml
        stages:
          - {name: unit-tests, kind: test, command: [pytest, -q], inputs: ["app/**/*.py"]}
          - {name: image, kind: build, inputs: [Dockerfile, requirements.txt]}
          - {name: publish, kind: push}
          - {name: rollout, kind: deploy}
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from shipline.config.settings import Settings
from shipline.core.errors import PipelineDefinitionError
from shipline.core.models import RunSpec, Service, TriggerContext, TriggerPolicy

logger = logging.getLogger(__name__)


class PipelineDefinition(BaseModel):
    """Parsed pipeline file: declared services plus the trigger policy."""

    services: list[Service]
    policy: TriggerPolicy = Field(default_factory=TriggerPolicy)
    source_path: Path | None = None

    def to_run_spec(self, trigger: TriggerContext, run_id: str | None = None) -> RunSpec:
        """Bind this definition to one trigger."""
        payload: dict[str, Any] = {
            "services": self.services,
            "trigger": trigger,
            "policy": self.policy,
        }
        if run_id:
            payload["run_id"] = run_id
        return RunSpec(**payload)


def load_pipeline(path: Path | str, settings: Settings | None = None) -> PipelineDefinition:
    """Read and validate a pipeline definition file.

    Args:
        path: YAML file path.
        settings: Provides policy defaults (release branch, latest tag) for
            keys the file leaves out.

    Raises:
        PipelineDefinitionError: On unreadable YAML or invalid content.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise PipelineDefinitionError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(payload, Mapping):
        raise PipelineDefinitionError(f"Pipeline file must contain a YAML mapping: {path}")

    return parse_pipeline(payload, base_dir=path.parent, settings=settings, source_path=path)


def parse_pipeline(
    payload: Mapping[str, Any],
    base_dir: Path,
    settings: Settings | None = None,
    source_path: Path | None = None,
) -> PipelineDefinition:
    """Validate an already-parsed pipeline mapping."""
    raw_services = payload.get("services")
    if not raw_services:
        raise PipelineDefinitionError("Pipeline defines no services")

    policy_fields: dict[str, Any] = {}
    if settings is not None:
        policy_fields["release_branch"] = settings.release_branch
        policy_fields["latest_tag"] = settings.latest_tag
    for key in ("release_branch", "deploy_events", "latest_tag"):
        if key in payload:
            policy_fields[key] = payload[key]

    ids = [raw.get("id") for raw in raw_services if isinstance(raw, Mapping)]
    duplicates = sorted({str(i) for i in ids if ids.count(i) > 1})
    if duplicates:
        raise PipelineDefinitionError(f"Duplicate service ids: {', '.join(duplicates)}")

    try:
        services = [_resolve_service(dict(raw), base_dir) for raw in raw_services]
        definition = PipelineDefinition(
            services=services,
            policy=TriggerPolicy(**policy_fields),
            source_path=source_path,
        )
    except (ValidationError, ValueError, TypeError) as exc:
        raise PipelineDefinitionError(f"Invalid pipeline definition: {exc}") from exc

    logger.info(
        "Loaded pipeline: %d services (%s), release branch '%s'",
        len(definition.services),
        ", ".join(s.id for s in definition.services),
        definition.policy.release_branch,
    )
    return definition


def _resolve_service(raw: dict[str, Any], base_dir: Path) -> Service:
    raw["source"] = _resolve_path(raw.get("source", "."), base_dir)
    deployment = raw.get("deployment")
    if isinstance(deployment, Mapping):
        deployment = dict(deployment)
        if "template" in deployment:
            deployment["template"] = _resolve_path(deployment["template"], base_dir)
        raw["deployment"] = deployment
    return Service(**raw)


def _resolve_path(value: str | Path, base_dir: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else (base_dir / path).resolve()
