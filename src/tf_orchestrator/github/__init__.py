"""GitHub REST helpers."""

from .client import GitHubAPIError, GitHubClient, format_plan_comment

__all__ = ["GitHubAPIError", "GitHubClient", "format_plan_comment"]
