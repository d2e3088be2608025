"""Maps trigger events to (environment, action, should_deploy)."""

from __future__ import annotations

from typing import NamedTuple, Optional

from ..errors import ClassificationError, RunSkipped
from ..models import (
    Action,
    Environment,
    Event,
    ManualDispatchEvent,
    PullRequestEvent,
    PushEvent,
)

# pull request base branch -> environment; anything else plans against dev
_PR_BASE_ENVIRONMENTS = {
    "main": Environment.PROD,
    "staging": Environment.STAGING,
}

# pushes only deploy from these branches
_PUSH_ENVIRONMENTS = {
    "staging": Environment.STAGING,
    "dev": Environment.DEV,
}


class Classification(NamedTuple):
    environment: Environment
    action: Action
    should_deploy: bool


def _branch_name(ref: str) -> str:
    return ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref


def classify(event: Event, *, watch_path: Optional[str] = None) -> Classification:
    """Classify a trigger event. Pure: same event in, same answer out.

    Raises ``ClassificationError`` for anything that is not a known event and
    ``RunSkipped`` for pushes that target no environment. When `watch_path`
    is given, a push whose changed files are known and all fall outside it is
    skipped as well.
    """
    if isinstance(event, ManualDispatchEvent):
        if not isinstance(event.environment, Environment) or not isinstance(event.action, Action):
            raise ClassificationError("Manual dispatch must name an environment and an action")
        return Classification(event.environment, event.action, True)

    if isinstance(event, PullRequestEvent):
        if not event.base_branch:
            raise ClassificationError("Pull request event has no base branch")
        environment = _PR_BASE_ENVIRONMENTS.get(_branch_name(event.base_branch), Environment.DEV)
        return Classification(environment, Action.PLAN, False)

    if isinstance(event, PushEvent):
        if not event.branch:
            raise ClassificationError("Push event has no branch")
        branch = _branch_name(event.branch)
        environment = _PUSH_ENVIRONMENTS.get(branch)
        if environment is None:
            raise RunSkipped(f"push to {branch!r} does not deploy anywhere")
        if watch_path and event.changed_files:
            prefix = watch_path.rstrip("/") + "/"
            if not any(path.startswith(prefix) for path in event.changed_files):
                raise RunSkipped(f"push to {branch!r} changed nothing under {prefix}")
        return Classification(environment, Action.PLAN, True)

    raise ClassificationError(f"Unrecognised event: {event!r}")


def source_branch(event: Event) -> Optional[str]:
    """Branch the run's code comes from, used for branch restrictions."""
    if isinstance(event, PushEvent):
        return _branch_name(event.branch)
    if isinstance(event, PullRequestEvent):
        return _branch_name(event.head_branch)
    if isinstance(event, ManualDispatchEvent):
        return _branch_name(event.ref) if event.ref else None
    return None
