"""Trigger classification: which environment, which action, deploy or not."""

from .classifier import Classification, classify
from .github_events import event_from_github, load_github_event

__all__ = ["Classification", "classify", "event_from_github", "load_github_event"]
