"""Reads branch and commit information from the local checkout."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


class GitCommandError(RuntimeError):
    """Raised when a git command fails."""

    def __init__(self, command: list[str], exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Git command {' '.join(command)} failed with code {exit_code}: {stderr}")


@dataclass
class GitRevision:
    """Where the checkout currently points."""

    branch: Optional[str]  # None on a detached HEAD
    commit_sha: str


class GitRepository:
    """Wraps `git` CLI commands for the repository holding the Terraform code."""

    def __init__(self, root: Optional[Path] = None, git_binary: str = "git") -> None:
        self.root = root
        self.git_binary = git_binary

    def revision(self) -> GitRevision:
        commit_sha = self._run(["rev-parse", "HEAD"]).strip()
        branch = self._run(["rev-parse", "--abbrev-ref", "HEAD"]).strip()
        return GitRevision(branch=None if branch == "HEAD" else branch, commit_sha=commit_sha)

    def _run(self, args: list[str]) -> str:
        command = [self.git_binary] + args
        try:
            process = subprocess.run(
                command,
                cwd=str(self.root) if self.root else None,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise GitCommandError(command, 127, str(exc)) from exc
        if process.returncode != 0:
            raise GitCommandError(command, process.returncode, process.stderr.strip())
        return process.stdout
