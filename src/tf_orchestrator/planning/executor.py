"""Runs the engine in diff mode and stores the resulting change-set."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..artifacts import ArtifactStore
from ..engine import EXIT_CHANGES_PENDING, EXIT_ERROR, EXIT_NO_CHANGES, ProvisioningEngine
from ..errors import PlanError
from ..models import Action, Environment, PlanArtifact, PlanClassification

logger = logging.getLogger(__name__)


def classify_exit_code(exit_code: int) -> PlanClassification:
    """Map the detailed-exitcode contract onto a classification.

    Any code outside {0, 1, 2} is treated as a failure.
    """
    if exit_code == EXIT_NO_CHANGES:
        return PlanClassification.NO_CHANGE
    if exit_code == EXIT_CHANGES_PENDING:
        return PlanClassification.CHANGES_PENDING
    return PlanClassification.FAILED


@dataclass(frozen=True)
class PlanOutcome:
    """What a plan produced. `artifact` is set only for ChangesPending."""

    classification: PlanClassification
    artifact: Optional[PlanArtifact] = None
    output: str = ""

    def __iter__(self):
        # allows `artifact, classification = executor.plan(...)`
        return iter((self.artifact, self.classification))


class PlanExecutor:
    """Produces plan artifacts. Never mutates infrastructure."""

    def __init__(self, engine: ProvisioningEngine, store: ArtifactStore) -> None:
        self.engine = engine
        self.store = store

    def plan(
        self,
        environment: Environment,
        action: Action,
        *,
        run_id: str,
        commit: Optional[str] = None,
    ) -> PlanOutcome:
        init = self.engine.init(environment)
        if not init.ok:
            raise PlanError("terraform init failed", environment=environment, detail=init.message)

        fingerprint = self.engine.state_fingerprint(environment)
        out_path = self.store.reserve(environment, run_id)

        mode = "destroy plan" if action is Action.DESTROY else "plan"
        logger.info("🔍 Running %s for %s", mode, environment.value)
        try:
            result = self.engine.plan(environment, action, out_path)
        except Exception:
            self.store.discard(environment, run_id)
            raise

        classification = classify_exit_code(result.exit_code)
        if classification is PlanClassification.NO_CHANGE:
            logger.info("✅ No changes needed")
            self.store.discard(environment, run_id)
            return PlanOutcome(classification, None, result.stdout)

        if classification is PlanClassification.FAILED:
            if result.exit_code != EXIT_ERROR:
                logger.error("❌ Plan exited with unexpected code %s", result.exit_code)
            else:
                logger.error("❌ Plan failed")
            self.store.discard(environment, run_id)
            return PlanOutcome(classification, None, result.message)

        logger.info("📋 Changes detected")
        artifact = self.store.save(
            environment,
            run_id,
            action=action,
            commit=commit,
            state_fingerprint=fingerprint,
        )
        return PlanOutcome(classification, artifact, result.stdout)
