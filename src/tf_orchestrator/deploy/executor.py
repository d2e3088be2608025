"""Applies or destroys exactly once."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..artifacts import ArtifactStore
from ..engine import STALE_PLAN_MARKER, ProvisioningEngine
from ..errors import DeployError, LockContention, StaleArtifactError
from ..models import Action, DeployResult, Environment, PlanArtifact

logger = logging.getLogger(__name__)


class DeployExecutor:
    """Runs the mutating half of a deployment.

    Callers must only invoke `execute` after the approval gate said Proceed.
    Nothing here retries: a failed mutation is surfaced to a human.
    """

    def __init__(self, engine: ProvisioningEngine, store: ArtifactStore) -> None:
        self.engine = engine
        self.store = store

    def execute(
        self,
        environment: Environment,
        action: Action,
        artifact: Optional[PlanArtifact] = None,
    ) -> DeployResult:
        if artifact is not None and artifact.environment is not environment:
            raise DeployError(
                f"Plan artifact {artifact.artifact_id} is bound to "
                f"{artifact.environment.value}, refusing to use it for {environment.value}",
                environment=environment,
            )

        if action is Action.APPLY:
            return self._apply(environment, artifact)
        if action is Action.DESTROY:
            return self._destroy(environment)
        raise DeployError(f"{action.value!r} is not a mutation", environment=environment)

    def _apply(self, environment: Environment, artifact: Optional[PlanArtifact]) -> DeployResult:
        if artifact is None:
            raise DeployError("Apply requires a plan artifact", environment=environment)

        # re-read so the consumed flag reflects what is on disk now
        current = self.store.load(environment, artifact.run_id)
        if current.consumed:
            raise DeployError(
                f"Plan artifact {current.artifact_id} has already been consumed",
                environment=environment,
            )
        if self.store.is_expired(current):
            raise StaleArtifactError(
                f"Plan artifact {current.artifact_id} expired; re-plan required",
                environment=environment,
            )
        fingerprint = self.engine.state_fingerprint(environment)
        if fingerprint is None or fingerprint != current.state_fingerprint:
            raise StaleArtifactError(
                f"State of {environment.value} changed since {current.artifact_id} was planned; "
                "re-plan required",
                environment=environment,
                detail=f"planned against {current.state_fingerprint}, now {fingerprint}",
            )

        claimed = self.store.mark_consumed(current)
        logger.info("🚀 Applying %s to %s", claimed.artifact_id, environment.value)
        try:
            result = self.engine.apply(environment, Path(claimed.path))
        except LockContention:
            # the engine never started mutating; the artifact is still good
            self.store.release(claimed)
            raise

        if not result.ok:
            if STALE_PLAN_MARKER in result.stderr:
                raise StaleArtifactError(
                    f"Engine rejected {claimed.artifact_id} as stale",
                    environment=environment,
                    detail=result.message,
                )
            raise DeployError("terraform apply failed", environment=environment, detail=result.message)

        logger.info("✅ Terraform apply completed")
        outputs = self.engine.outputs(environment)
        return DeployResult(
            success=True,
            action=Action.APPLY,
            environment=environment,
            outputs=outputs,
            message=result.stdout,
        )

    def _destroy(self, environment: Environment) -> DeployResult:
        logger.info("🔥 Destroying all managed resources in %s", environment.value)
        result = self.engine.destroy(environment)
        if not result.ok:
            raise DeployError("terraform destroy failed", environment=environment, detail=result.message)
        logger.info("✅ Terraform destroy completed")
        return DeployResult(
            success=True,
            action=Action.DESTROY,
            environment=environment,
            message=result.stdout,
        )
