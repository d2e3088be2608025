"""Git operations helpers."""

from .manager import GitCommandError, GitRepository, GitRevision

__all__ = ["GitCommandError", "GitRepository", "GitRevision"]
