"""Build trigger events from GitHub Actions webhook payloads."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import ClassificationError
from ..models import Action, Environment, Event, ManualDispatchEvent, PullRequestEvent, PushEvent


def _changed_files(payload: Dict[str, Any]) -> List[str]:
    files: List[str] = []
    for commit in payload.get("commits") or []:
        for key in ("added", "modified", "removed"):
            files.extend(commit.get(key) or [])
    return sorted(set(files))


def event_from_github(event_name: str, payload: Dict[str, Any]) -> Event:
    """Translate ``GITHUB_EVENT_NAME`` + the event payload into an Event."""
    if event_name == "push":
        ref = payload.get("ref")
        if not ref:
            raise ClassificationError("push payload has no ref")
        if not ref.startswith("refs/heads/"):
            raise ClassificationError(f"push to {ref!r} is not a branch push")
        return PushEvent(
            branch=ref[len("refs/heads/"):],
            commit=payload.get("after"),
            changed_files=tuple(_changed_files(payload)),
        )

    if event_name == "pull_request":
        pull = payload.get("pull_request") or {}
        base = (pull.get("base") or {}).get("ref")
        head = (pull.get("head") or {}).get("ref")
        if not base or not head:
            raise ClassificationError("pull_request payload is missing base/head refs")
        return PullRequestEvent(
            base_branch=base,
            head_branch=head,
            number=payload.get("number") or pull.get("number"),
            commit=(pull.get("head") or {}).get("sha"),
        )

    if event_name == "workflow_dispatch":
        inputs = payload.get("inputs") or {}
        ref: Optional[str] = payload.get("ref")
        return ManualDispatchEvent(
            environment=Environment.parse(inputs.get("environment") or "dev"),
            action=Action.parse(inputs.get("action")),
            ref=ref[len("refs/heads/"):] if ref and ref.startswith("refs/heads/") else ref,
            commit=payload.get("sha"),
        )

    raise ClassificationError(f"Unsupported GitHub event {event_name!r}")


def load_github_event(event_name: str, event_path: Path) -> Event:
    try:
        payload = json.loads(Path(event_path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ClassificationError(f"Cannot read event payload {event_path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ClassificationError(f"Event payload {event_path} is not a JSON object")
    return event_from_github(event_name, payload)
