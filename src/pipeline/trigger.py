# src/pipeline/trigger.py — v1
"""Deploy gating — decide once per run whether deploy stages may run."""

from __future__ import annotations

import logging

from shipline.core.models import RunSpec, Service, TriggerContext, TriggerPolicy

logger = logging.getLogger(__name__)

_BRANCH_PREFIXES = ("refs/heads/",)


def normalize_branch(branch: str) -> str:
    """Strip a leading ``refs/heads/`` so both ref forms compare equal."""
    branch = branch.strip()
    for prefix in _BRANCH_PREFIXES:
        if branch.startswith(prefix):
            return branch[len(prefix):]
    return branch


def should_deploy(trigger: TriggerContext, policy: TriggerPolicy) -> bool:
    """True only for the release branch and an event allowed to deploy."""
    if normalize_branch(trigger.branch) != normalize_branch(policy.release_branch):
        return False
    return trigger.event in policy.deploy_events


def strip_deploy_stages(service: Service) -> Service:
    if not service.has_deploy:
        return service
    return service.model_copy(
        update={"stages": [s for s in service.stages if s.kind != "deploy"]}
    )


def apply_trigger_policy(run_spec: RunSpec) -> tuple[list[Service], bool]:
    """Services as they will run under this trigger, plus the deploy decision."""
    enabled = should_deploy(run_spec.trigger, run_spec.policy)
    if enabled:
        return list(run_spec.services), True

    stripped = [strip_deploy_stages(s) for s in run_spec.services]
    dropped = [s.id for s in run_spec.services if s.has_deploy]
    if dropped:
        logger.info(
            "Deploys disabled for %s on '%s' (%s); skipping deploy stages of: %s",
            run_spec.trigger.event,
            run_spec.trigger.branch,
            f"release branch is '{run_spec.policy.release_branch}'",
            ", ".join(dropped),
        )
    return stripped, False
