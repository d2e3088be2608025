"""Exception taxonomy for orchestrator runs.

Every error carries the stage it was raised in, the environment it concerns
and the underlying engine message (``detail``) so that operators see the
full picture in one line. Errors only ever halt the run that raised them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import Environment


class OrchestratorError(RuntimeError):
    """Base class for everything the orchestrator raises on purpose."""

    stage = "orchestrator"
    fatal = True

    def __init__(
        self,
        message: str,
        *,
        environment: Optional["Environment"] = None,
        detail: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        self.message = message
        self.environment = environment
        self.detail = detail
        if stage:
            self.stage = stage
        super().__init__(self._format())

    def _format(self) -> str:
        env = self.environment.value if self.environment else "-"
        text = f"[{self.stage}] {env}: {self.message}"
        if self.detail:
            text += f"\n{self.detail}"
        return text

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "stage": self.stage,
            "environment": self.environment.value if self.environment else None,
            "message": self.message,
            "detail": self.detail,
        }


class ClassificationError(OrchestratorError):
    """Malformed or unrecognised trigger event."""

    stage = "classifying"


class RunSkipped(Exception):
    """The event is valid but does not target any environment."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class ValidationError(OrchestratorError):
    """Formatting or static validation of the Terraform code failed."""

    stage = "validating"


class PlanError(OrchestratorError):
    """The engine could not produce a diff."""

    stage = "planning"


class LockContention(OrchestratorError):
    """Another run holds the environment's state lock. Retryable."""

    stage = "locking"
    fatal = False


class GateRejected(OrchestratorError):
    """The approval gate refused the deployment."""

    stage = "gating"


class GateBlocked(OrchestratorError):
    """The approval gate is waiting on an external condition. Not a failure."""

    stage = "gating"
    fatal = False


class ApprovalOracleError(OrchestratorError):
    """Recorded approvals could not be read. The run fails instead of guessing."""

    stage = "gating"


class DeployError(OrchestratorError):
    """A mutation failed or was refused. Never retried automatically."""

    stage = "deploying"


class StaleArtifactError(DeployError):
    """The plan artifact no longer matches the environment it was made for."""


class ArtifactNotFound(OrchestratorError):
    """No stored plan artifact for the requested (environment, run)."""

    stage = "artifacts"


class UnknownRunError(OrchestratorError):
    """No persisted run record with that id."""

    stage = "runs"
