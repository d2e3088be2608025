"""Minimal GitHub REST client: PR comments and workflow-run approvals."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from ..config import GitHubConfig

logger = logging.getLogger(__name__)


class GitHubAPIError(RuntimeError):
    """Raised when the GitHub API answers with an error."""

    def __init__(self, method: str, url: str, status_code: Optional[int], message: str) -> None:
        self.method = method
        self.url = url
        self.status_code = status_code
        super().__init__(f"GitHub {method} {url} failed ({status_code}): {message}")


class GitHubClient:
    """Talks to the GitHub REST API on behalf of one repository."""

    def __init__(
        self,
        config: GitHubConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: int = 3,
    ) -> None:
        if not config.enabled:
            raise ValueError("GitHub token and repository are required")
        self.config = config
        self.base_url = config.api_url.rstrip("/")
        self.repository = config.repository
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {config.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )
        self._sleep = sleep
        self.max_retries = max_retries

    def create_issue_comment(self, number: int, body: str) -> Dict[str, Any]:
        url = f"{self.base_url}/repos/{self.repository}/issues/{number}/comments"
        return self._request("POST", url, json={"body": body})

    def run_approvals(self, run_id: str) -> List[Dict[str, Any]]:
        """Reviews recorded on a workflow run's environment deployments."""
        url = f"{self.base_url}/repos/{self.repository}/actions/runs/{run_id}/approvals"
        payload = self._request("GET", url)
        return payload if isinstance(payload, list) else []

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        for attempt in range(self.max_retries):
            try:
                response = self.session.request(method, url, timeout=self.config.timeout, **kwargs)
            except requests.RequestException as exc:
                raise GitHubAPIError(method, url, None, str(exc)) from exc

            # Handle rate limiting
            if response.status_code == 429 and attempt < self.max_retries - 1:
                wait_time = 30 * (attempt + 1)
                logger.warning("Rate limited by GitHub. Waiting %ss before retry...", wait_time)
                self._sleep(wait_time)
                continue

            if response.status_code >= 400:
                raise GitHubAPIError(method, url, response.status_code, response.text[:500])
            if response.status_code == 204 or not response.content:
                return {}
            return response.json()

        raise GitHubAPIError(method, url, 429, "rate limited after max retries")


def format_plan_comment(
    environment: str,
    branch: Optional[str],
    run_url: Optional[str] = None,
    plan_output: str = "",
    max_output_chars: int = 60000,
) -> str:
    """Body of the pull-request comment posted when a plan has changes."""
    lines = [
        f"## 📋 Terraform Plan - `{environment}`",
        "",
        "**Status:** Changes detected",
        f"**Branch:** `{branch or 'unknown'}`",
        "",
        "<details><summary>View Plan Details</summary>",
        "",
    ]
    if plan_output:
        output = plan_output
        if len(output) > max_output_chars:
            output = output[:max_output_chars] + "\n... (truncated)"
        lines.extend(["```", output, "```", ""])
    if run_url:
        lines.append(f"Plan completed successfully. Review the full output in the [Actions tab]({run_url}).")
    else:
        lines.append("Plan completed successfully.")
    lines.extend(["", "</details>"])
    return "\n".join(lines)
