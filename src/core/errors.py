# src/core/errors.py — v1
"""Error taxonomy shared by the executor, the orchestrator and the deployer.

Reported failures (``StageFailure`` subclasses, rollout failures) are recorded
on the owning service pipeline. ``TransientInfraError`` is the only class that
is retried, and only around backend API calls. ``FingerprintCollision`` is
fatal to the whole run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shipline.core.models import DeploymentResult


class ShiplineError(Exception):
    """Root of all shipline errors."""


# === Reported stage failures (fixed only by a code change) ===


class StageFailure(ShiplineError):
    """A stage ran to completion and reported failure."""

    def __init__(self, message: str, logs: str = "") -> None:
        super().__init__(message)
        self.logs = logs


class TestFailure(StageFailure):
    """Test command exited non-zero."""

    __test__ = False  # keep pytest from collecting this class


class BuildFailure(StageFailure):
    """Image build or compile step failed."""


class PushFailure(StageFailure):
    """Registry rejected the push for a non-transient reason."""


class DeploymentFailure(StageFailure):
    """Deploy stage ended without a stable rollout.

    Carries the controller's DeploymentResult so the stage result can report
    whether the previous image was restored.
    """

    def __init__(self, message: str, deployment: DeploymentResult) -> None:
        super().__init__(message)
        self.deployment = deployment
        self.error_type = deployment.error_type or "RolloutFailed"
        self.execution_error = self.error_type not in (
            "RolloutTimeout", "RolloutFailed", "DescriptorError"
        )


# === Infrastructure ===


class TransientInfraError(ShiplineError):
    """Registry or cluster API timeout, 5xx, or dropped connection."""


class RetryExhausted(TransientInfraError):
    """A transient error persisted through every allowed retry."""

    def __init__(self, operation: str, attempts: int, last_error: Exception) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"'{operation}' failed after {attempts} attempts: {last_error}"
        )


# === Deployment ===


class RolloutTimeout(ShiplineError):
    """Rollout did not become stable before the deadline."""


class RolloutFailed(ShiplineError):
    """Cluster backend reported the rollout as failed."""


class DescriptorError(ShiplineError):
    """Deployment descriptor template could not be rendered."""


class StageCancelled(ShiplineError):
    """Run was cancelled before the stage could start its side effects."""


# === Internal invariants and inputs ===


class FingerprintCollision(ShiplineError):
    """Two different artifacts were written under the same cache key."""

    def __init__(self, key: str, existing_digest: str, new_digest: str) -> None:
        self.key = key
        self.existing_digest = existing_digest
        self.new_digest = new_digest
        super().__init__(
            f"Fingerprint collision on '{key}': "
            f"stored digest {existing_digest[:12]} != new digest {new_digest[:12]}"
        )


class PipelineDefinitionError(ShiplineError):
    """Pipeline definition file is malformed or inconsistent."""
