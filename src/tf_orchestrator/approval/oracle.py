"""Sources of recorded reviewer approvals."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from ..errors import ApprovalOracleError
from ..github.client import GitHubAPIError
from ..models import Environment, utcnow

if TYPE_CHECKING:
    from ..github import GitHubClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalRecord:
    """One reviewer's sign-off for one run in one environment."""

    reviewer: str
    environment: Environment
    approved_at: Optional[str] = None


class ApprovalOracle(ABC):
    """Answers "who has approved this run?" for the approval gate."""

    @abstractmethod
    def approvals(self, run_id: str, environment: Environment) -> List[ApprovalRecord]:
        """Approvals recorded for `run_id` in `environment`, one per reviewer."""


class LedgerApprovalOracle(ApprovalOracle):
    """Approvals kept in a local JSON ledger, written by `orchestrate approve`."""

    def __init__(self, path: Path, clock: Callable[[], datetime] = utcnow) -> None:
        self.path = Path(path)
        self._clock = clock

    def _read(self) -> Dict[str, List[dict]]:
        if not self.path.exists():
            return {}
        return json.loads(self.path.read_text(encoding="utf-8"))

    def _write(self, data: Dict[str, List[dict]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def record(self, run_id: str, environment: Environment, reviewer: str) -> ApprovalRecord:
        reviewer = reviewer.strip()
        if not reviewer:
            raise ValueError("Reviewer name must not be empty")
        data = self._read()
        entries = data.setdefault(run_id, [])
        for entry in entries:
            if entry["reviewer"] == reviewer and entry["environment"] == environment.value:
                logger.info("Reviewer %s already approved run %s", reviewer, run_id)
                return ApprovalRecord(reviewer, environment, entry.get("approved_at"))
        record = ApprovalRecord(reviewer, environment, self._clock().isoformat())
        entries.append(
            {
                "reviewer": record.reviewer,
                "environment": environment.value,
                "approved_at": record.approved_at,
            }
        )
        self._write(data)
        logger.info("✅ Recorded approval by %s for run %s (%s)", reviewer, run_id, environment.value)
        return record

    def approvals(self, run_id: str, environment: Environment) -> List[ApprovalRecord]:
        return [
            ApprovalRecord(entry["reviewer"], environment, entry.get("approved_at"))
            for entry in self._read().get(run_id, [])
            if entry.get("environment") == environment.value
        ]


class GitHubApprovalOracle(ApprovalOracle):
    """Approvals given through GitHub's environment protection reviews.

    The orchestrator's own run id is not known to GitHub; reviews are read
    from the workflow run this process belongs to (``GITHUB_RUN_ID``).
    """

    def __init__(self, client: "GitHubClient", workflow_run_id: str) -> None:
        self.client = client
        self.workflow_run_id = workflow_run_id

    def approvals(self, run_id: str, environment: Environment) -> List[ApprovalRecord]:
        records: Dict[str, ApprovalRecord] = {}
        try:
            reviews = self.client.run_approvals(self.workflow_run_id)
        except GitHubAPIError as exc:
            raise ApprovalOracleError(
                f"Could not read approvals of workflow run {self.workflow_run_id}",
                environment=environment,
                detail=str(exc),
            ) from exc
        for review in reviews:
            if review.get("state") != "approved":
                continue
            names = {env.get("name") for env in review.get("environments") or []}
            if environment.value not in names:
                continue
            login = (review.get("user") or {}).get("login")
            if login and login not in records:
                records[login] = ApprovalRecord(login, environment)
        return list(records.values())
