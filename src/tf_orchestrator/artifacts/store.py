"""Durable storage for plan artifacts."""

from __future__ import annotations

import json
import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from ..errors import ArtifactNotFound, DeployError, PlanError
from ..models import Action, Environment, PlanArtifact, utcnow

logger = logging.getLogger(__name__)

PLAN_FILENAME = "tfplan"
METADATA_FILENAME = "metadata.json"
CONSUMED_MARKER = "consumed"


def artifact_id_for(environment: Environment, run_id: str) -> str:
    return f"tfplan-{environment.value}-{run_id}"


class ArtifactStore:
    """Keeps plan files under ``<root>/<environment>/<run-id>/``.

    Each directory holds the plan file, a ``metadata.json`` describing the
    artifact, and once the artifact has been handed to the deploy stage a
    ``consumed`` marker. The marker is created with O_EXCL so two deployers
    racing for the same artifact cannot both win.
    """

    def __init__(
        self,
        root: Path,
        retention_hours: float = 24.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.retention_hours = retention_hours
        self._clock = clock

    def run_dir(self, environment: Environment, run_id: str) -> Path:
        return self.root / environment.value / run_id

    def reserve(self, environment: Environment, run_id: str) -> Path:
        """Return the path the engine should write the plan file to."""
        run_dir = self.run_dir(environment, run_id)
        if (run_dir / METADATA_FILENAME).exists():
            raise PlanError(
                f"An artifact already exists for run {run_id}; artifacts are never reused",
                environment=environment,
            )
        run_dir.mkdir(parents=True, exist_ok=True)
        return run_dir / PLAN_FILENAME

    def save(
        self,
        environment: Environment,
        run_id: str,
        *,
        action: Action,
        commit: Optional[str] = None,
        state_fingerprint: Optional[str] = None,
    ) -> PlanArtifact:
        run_dir = self.run_dir(environment, run_id)
        plan_file = run_dir / PLAN_FILENAME
        if not plan_file.exists():
            raise PlanError(
                f"Engine reported changes but wrote no plan file at {plan_file}",
                environment=environment,
            )
        artifact = PlanArtifact(
            artifact_id=artifact_id_for(environment, run_id),
            environment=environment,
            run_id=run_id,
            commit=commit,
            created_at=self._clock(),
            action=action,
            path=str(plan_file),
            state_fingerprint=state_fingerprint,
        )
        (run_dir / METADATA_FILENAME).write_text(
            json.dumps(artifact.to_dict(), indent=2), encoding="utf-8"
        )
        logger.info("📦 Stored plan artifact %s", artifact.artifact_id)
        return artifact

    def load(self, environment: Environment, run_id: str) -> PlanArtifact:
        run_dir = self.run_dir(environment, run_id)
        metadata_file = run_dir / METADATA_FILENAME
        if not metadata_file.exists():
            raise ArtifactNotFound(
                f"No plan artifact stored for run {run_id}",
                environment=environment,
            )
        data = json.loads(metadata_file.read_text(encoding="utf-8"))
        data["consumed"] = (run_dir / CONSUMED_MARKER).exists()
        return PlanArtifact.from_dict(data)

    def discard(self, environment: Environment, run_id: str) -> None:
        run_dir = self.run_dir(environment, run_id)
        if run_dir.exists():
            shutil.rmtree(run_dir, ignore_errors=True)

    def is_expired(self, artifact: PlanArtifact) -> bool:
        return artifact.is_expired(self._clock(), self.retention_hours)

    def mark_consumed(self, artifact: PlanArtifact) -> PlanArtifact:
        """Claim the artifact for a single deploy. Raises if already claimed."""
        marker = self.run_dir(artifact.environment, artifact.run_id) / CONSUMED_MARKER
        try:
            fd = os.open(str(marker), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise DeployError(
                f"Plan artifact {artifact.artifact_id} has already been consumed",
                environment=artifact.environment,
            ) from None
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(self._clock().isoformat())
        return PlanArtifact.from_dict({**artifact.to_dict(), "consumed": True})

    def release(self, artifact: PlanArtifact) -> None:
        """Undo `mark_consumed` when the engine refused before mutating."""
        marker = self.run_dir(artifact.environment, artifact.run_id) / CONSUMED_MARKER
        marker.unlink(missing_ok=True)

    def list(self, environment: Optional[Environment] = None) -> List[PlanArtifact]:
        environments = [environment] if environment else list(Environment)
        artifacts: List[PlanArtifact] = []
        for env in environments:
            env_dir = self.root / env.value
            if not env_dir.is_dir():
                continue
            for run_dir in sorted(env_dir.iterdir()):
                if (run_dir / METADATA_FILENAME).exists():
                    artifacts.append(self.load(env, run_dir.name))
        artifacts.sort(key=lambda a: a.created_at, reverse=True)
        return artifacts

    def purge_expired(self) -> List[PlanArtifact]:
        removed = []
        for artifact in self.list():
            if self.is_expired(artifact):
                self.discard(artifact.environment, artifact.run_id)
                removed.append(artifact)
        if removed:
            logger.info("🧹 Purged %d expired plan artifact(s)", len(removed))
        return removed
