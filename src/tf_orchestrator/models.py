"""Data models shared by every stage of a run."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from .errors import ClassificationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Environment(str, Enum):
    """Deployment target. Each one has isolated state and its own policy."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"

    @classmethod
    def parse(cls, name: Optional[str]) -> "Environment":
        try:
            return cls((name or "").strip().lower())
        except ValueError:
            allowed = ", ".join(e.value for e in cls)
            raise ClassificationError(
                f"Unknown environment {name!r} (expected one of: {allowed})"
            ) from None


class Action(str, Enum):
    """What the run should do to the environment."""

    PLAN = "plan"
    APPLY = "apply"
    DESTROY = "destroy"

    @classmethod
    def parse(cls, name: Optional[str]) -> "Action":
        if not name:
            return cls.PLAN
        try:
            return cls(name.strip().lower())
        except ValueError:
            allowed = ", ".join(a.value for a in cls)
            raise ClassificationError(
                f"Unknown action {name!r} (expected one of: {allowed})"
            ) from None


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PushEvent:
    """A push to a branch."""

    branch: str
    commit: Optional[str] = None
    changed_files: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PullRequestEvent:
    """A pull request opened or updated against ``base_branch``."""

    base_branch: str
    head_branch: str
    number: Optional[int] = None
    commit: Optional[str] = None


@dataclass(frozen=True)
class ManualDispatchEvent:
    """An operator explicitly asked for an action on an environment."""

    environment: Environment
    action: Action = Action.PLAN
    ref: Optional[str] = None
    commit: Optional[str] = None


Event = Union[PushEvent, PullRequestEvent, ManualDispatchEvent]

_EVENT_TYPES = {
    "push": PushEvent,
    "pull_request": PullRequestEvent,
    "manual_dispatch": ManualDispatchEvent,
}


def event_to_dict(event: Event) -> Dict[str, Any]:
    if isinstance(event, PushEvent):
        return {
            "type": "push",
            "branch": event.branch,
            "commit": event.commit,
            "changed_files": list(event.changed_files),
        }
    if isinstance(event, PullRequestEvent):
        return {
            "type": "pull_request",
            "base_branch": event.base_branch,
            "head_branch": event.head_branch,
            "number": event.number,
            "commit": event.commit,
        }
    if isinstance(event, ManualDispatchEvent):
        return {
            "type": "manual_dispatch",
            "environment": event.environment.value,
            "action": event.action.value,
            "ref": event.ref,
            "commit": event.commit,
        }
    raise ClassificationError(f"Cannot serialise event of type {type(event).__name__}")


def event_from_dict(data: Dict[str, Any]) -> Event:
    kind = data.get("type")
    if kind not in _EVENT_TYPES:
        raise ClassificationError(f"Unknown event type {kind!r}")
    if kind == "push":
        return PushEvent(
            branch=data["branch"],
            commit=data.get("commit"),
            changed_files=tuple(data.get("changed_files") or ()),
        )
    if kind == "pull_request":
        return PullRequestEvent(
            base_branch=data["base_branch"],
            head_branch=data["head_branch"],
            number=data.get("number"),
            commit=data.get("commit"),
        )
    return ManualDispatchEvent(
        environment=Environment.parse(data.get("environment")),
        action=Action.parse(data.get("action")),
        ref=data.get("ref"),
        commit=data.get("commit"),
    )


# ---------------------------------------------------------------------------
# Plan / gate / deploy results
# ---------------------------------------------------------------------------


class PlanClassification(str, Enum):
    """Three-way outcome of a diff, mirrored from ``-detailed-exitcode``."""

    NO_CHANGE = "no_change"
    FAILED = "failed"
    CHANGES_PENDING = "changes_pending"


@dataclass(frozen=True)
class PlanArtifact:
    """A stored change-set, bound to one environment and one run."""

    artifact_id: str
    environment: Environment
    run_id: str
    commit: Optional[str]
    created_at: datetime
    action: Action
    path: str
    state_fingerprint: Optional[str] = None
    consumed: bool = False

    def is_expired(self, now: datetime, retention_hours: float) -> bool:
        age = now - self.created_at
        return age.total_seconds() > retention_hours * 3600

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifact_id": self.artifact_id,
            "environment": self.environment.value,
            "run_id": self.run_id,
            "commit": self.commit,
            "created_at": _format_time(self.created_at),
            "action": self.action.value,
            "path": self.path,
            "state_fingerprint": self.state_fingerprint,
            "consumed": self.consumed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanArtifact":
        return cls(
            artifact_id=data["artifact_id"],
            environment=Environment(data["environment"]),
            run_id=data["run_id"],
            commit=data.get("commit"),
            created_at=_parse_time(data["created_at"]),
            action=Action(data.get("action", "plan")),
            path=data["path"],
            state_fingerprint=data.get("state_fingerprint"),
            consumed=bool(data.get("consumed", False)),
        )


class DecisionKind(str, Enum):
    PROCEED = "proceed"
    BLOCKED = "blocked"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ApprovalDecision:
    """Outcome of the approval gate."""

    kind: DecisionKind
    reason: Optional[str] = None

    @classmethod
    def proceed(cls) -> "ApprovalDecision":
        return cls(DecisionKind.PROCEED)

    @classmethod
    def blocked(cls, reason: str) -> "ApprovalDecision":
        return cls(DecisionKind.BLOCKED, reason)

    @classmethod
    def rejected(cls, reason: str) -> "ApprovalDecision":
        return cls(DecisionKind.REJECTED, reason)

    @property
    def is_proceed(self) -> bool:
        return self.kind is DecisionKind.PROCEED

    @property
    def is_blocked(self) -> bool:
        return self.kind is DecisionKind.BLOCKED

    @property
    def is_rejected(self) -> bool:
        return self.kind is DecisionKind.REJECTED

    def __str__(self) -> str:
        if self.reason:
            return f"{self.kind.value.capitalize()}({self.reason})"
        return self.kind.value.capitalize()

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApprovalDecision":
        return cls(DecisionKind(data["kind"]), data.get("reason"))


@dataclass(frozen=True)
class DeployResult:
    """Outcome of an apply or destroy."""

    success: bool
    action: Action
    environment: Environment
    outputs: Dict[str, Any] = field(default_factory=dict)
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "action": self.action.value,
            "environment": self.environment.value,
            "outputs": self.outputs,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeployResult":
        return cls(
            success=bool(data["success"]),
            action=Action(data["action"]),
            environment=Environment(data["environment"]),
            outputs=data.get("outputs") or {},
            message=data.get("message", ""),
        )


# ---------------------------------------------------------------------------
# Run context
# ---------------------------------------------------------------------------


class RunState(str, Enum):
    """Orchestrator state machine positions."""

    CLASSIFYING = "classifying"
    VALIDATING = "validating"
    PLANNING = "planning"
    GATING = "gating"
    DEPLOYING = "deploying"
    BLOCKED = "blocked"   # paused on the approval gate
    PLANNED = "planned"   # paused after a plan-only run, waiting for `apply`
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.DONE, RunState.FAILED)

    @property
    def is_paused(self) -> bool:
        return self in (RunState.BLOCKED, RunState.PLANNED)


@dataclass(frozen=True)
class RunContext:
    """The record threaded through every stage of one pipeline run.

    Stages never mutate it; they return an updated copy via ``evolve`` or
    ``advance``. The orchestrator persists each copy so that a paused run
    can be picked up by a later process.
    """

    run_id: str
    event: Event
    state: RunState = RunState.CLASSIFYING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    environment: Optional[Environment] = None
    action: Optional[Action] = None
    should_deploy: bool = False
    branch: Optional[str] = None
    commit: Optional[str] = None
    plan_only: bool = False
    classification: Optional[PlanClassification] = None
    plan_artifact: Optional[PlanArtifact] = None
    plan_output: str = ""
    decision: Optional[ApprovalDecision] = None
    gate_opened_at: Optional[datetime] = None
    deploy_result: Optional[DeployResult] = None
    error: Optional[Dict[str, Any]] = None
    note: Optional[str] = None
    history: Tuple[Tuple[str, str], ...] = ()

    def evolve(self, **changes: Any) -> "RunContext":
        changes.setdefault("updated_at", utcnow())
        return replace(self, **changes)

    def advance(self, state: RunState, **changes: Any) -> "RunContext":
        now = changes.get("updated_at") or utcnow()
        changes["updated_at"] = now
        history = self.history + ((state.value, now.isoformat()),)
        return self.evolve(state=state, history=history, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "event": event_to_dict(self.event),
            "state": self.state.value,
            "created_at": _format_time(self.created_at),
            "updated_at": _format_time(self.updated_at),
            "environment": self.environment.value if self.environment else None,
            "action": self.action.value if self.action else None,
            "should_deploy": self.should_deploy,
            "branch": self.branch,
            "commit": self.commit,
            "plan_only": self.plan_only,
            "classification": self.classification.value if self.classification else None,
            "plan_artifact": self.plan_artifact.to_dict() if self.plan_artifact else None,
            "plan_output": self.plan_output,
            "decision": self.decision.to_dict() if self.decision else None,
            "gate_opened_at": _format_time(self.gate_opened_at),
            "deploy_result": self.deploy_result.to_dict() if self.deploy_result else None,
            "error": self.error,
            "note": self.note,
            "history": [list(entry) for entry in self.history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunContext":
        artifact = data.get("plan_artifact")
        decision = data.get("decision")
        deploy_result = data.get("deploy_result")
        return cls(
            run_id=data["run_id"],
            event=event_from_dict(data["event"]),
            state=RunState(data["state"]),
            created_at=_parse_time(data.get("created_at")) or utcnow(),
            updated_at=_parse_time(data.get("updated_at")) or utcnow(),
            environment=Environment(data["environment"]) if data.get("environment") else None,
            action=Action(data["action"]) if data.get("action") else None,
            should_deploy=bool(data.get("should_deploy", False)),
            branch=data.get("branch"),
            commit=data.get("commit"),
            plan_only=bool(data.get("plan_only", False)),
            classification=(
                PlanClassification(data["classification"]) if data.get("classification") else None
            ),
            plan_artifact=PlanArtifact.from_dict(artifact) if artifact else None,
            plan_output=data.get("plan_output", ""),
            decision=ApprovalDecision.from_dict(decision) if decision else None,
            gate_opened_at=_parse_time(data.get("gate_opened_at")),
            deploy_result=DeployResult.from_dict(deploy_result) if deploy_result else None,
            error=data.get("error"),
            note=data.get("note"),
            history=tuple(tuple(entry) for entry in data.get("history", [])),
        )
