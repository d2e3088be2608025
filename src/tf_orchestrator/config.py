"""Configuration loading utilities for the orchestrator."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from .models import Environment
from .paths import APPROVALS_FILE, ARTIFACTS_DIR, RUNS_DIR

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")

# Prefix for environment-scoped secrets, e.g. ORCHESTRATE_PROD_AWS_ACCESS_KEY_ID
SECRET_PREFIX = "ORCHESTRATE_"


@dataclass
class EngineConfig:
    """How the provisioning engine is invoked."""

    terraform_binary: str = "terraform"
    tf_root: str = "terraform"           # root scanned by `fmt -check`
    envs_dir: str = "envs"               # per-environment working dirs under tf_root
    aws_region: str = "af-south-1"
    init_timeout: int = 600
    plan_timeout: int = 1800
    validate_before_plan: bool = True

    def working_dir(self, environment: Environment) -> Path:
        return Path(self.tf_root) / self.envs_dir / environment.value


@dataclass
class LockConfig:
    """Bounded retry for state-lock contention."""

    max_attempts: int = 5
    backoff_seconds: float = 5.0
    backoff_factor: float = 2.0
    max_backoff_seconds: float = 60.0


@dataclass
class StorageConfig:
    """Where artifacts, run records and the approval ledger are kept."""

    artifacts_root: str = str(ARTIFACTS_DIR)
    runs_root: str = str(RUNS_DIR)
    approvals_file: str = str(APPROVALS_FILE)
    retention_hours: float = 24.0


@dataclass
class ApprovalConfig:
    """Approval oracle selection and the tunable parts of the policy table."""

    oracle: str = "ledger"  # "ledger" | "github"
    prod_wait_minutes: int = 10
    # environment name -> designated reviewers (used for destroy consensus)
    reviewers: Dict[str, List[str]] = field(default_factory=dict)

    def reviewers_for(self, environment: Environment) -> List[str]:
        return list(self.reviewers.get(environment.value, []))


@dataclass
class GitHubConfig:
    """GitHub REST access for PR comments and deployment approvals."""

    token: Optional[str] = None
    repository: Optional[str] = None  # "owner/name"
    api_url: str = "https://api.github.com"
    server_url: str = "https://github.com"
    run_id: Optional[str] = None      # GITHUB_RUN_ID of the workflow run
    timeout: int = 30
    comment_on_pull_requests: bool = True

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.repository)

    @property
    def run_url(self) -> Optional[str]:
        if not (self.repository and self.run_id):
            return None
        return f"{self.server_url.rstrip('/')}/{self.repository}/actions/runs/{self.run_id}"


@dataclass
class AppConfig:
    """Top-level configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    lock: LockConfig = field(default_factory=LockConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        def section(name: str) -> Dict[str, Any]:
            data = payload.get(name, {}) or {}
            # keys starting with an underscore are comments
            return {k: v for k, v in data.items() if not k.startswith("_")}

        return cls(
            engine=EngineConfig(**{**EngineConfig().__dict__, **section("engine")}),
            lock=LockConfig(**{**LockConfig().__dict__, **section("lock")}),
            storage=StorageConfig(**{**StorageConfig().__dict__, **section("storage")}),
            approval=ApprovalConfig(**{**ApprovalConfig().__dict__, **section("approval")}),
            github=GitHubConfig(**{**GitHubConfig().__dict__, **section("github")}),
        )


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Environment variables (higher priority than config file):
    - ORCHESTRATE_TERRAFORM_BIN: terraform executable
    - ORCHESTRATE_TF_ROOT: Terraform root directory
    - ORCHESTRATE_AWS_REGION: region exported to the engine
    - ORCHESTRATE_APPROVAL_WAIT_MINUTES: prod wait timer
    - ORCHESTRATE_APPROVAL_ORACLE: "ledger" or "github"
    - ORCHESTRATE_GITHUB_TOKEN / GITHUB_TOKEN: GitHub API token
    - ORCHESTRATE_GITHUB_REPOSITORY / GITHUB_REPOSITORY: owner/name
    - GITHUB_RUN_ID: workflow run whose approvals are queried
    """

    if path and not Path(path).is_file():
        raise FileNotFoundError(f"Could not find configuration file: {path}")

    candidate_paths = [Path(path)] if path else [_DEFAULT_CONFIG_PATH]

    config = AppConfig()
    for candidate in candidate_paths:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            config = AppConfig.from_dict(data)
            break

    _apply_env_overrides(config, os.environ)
    return config


def _apply_env_overrides(config: AppConfig, environ: Mapping[str, str]) -> None:
    binary = environ.get("ORCHESTRATE_TERRAFORM_BIN")
    if binary:
        config.engine.terraform_binary = binary

    tf_root = environ.get("ORCHESTRATE_TF_ROOT")
    if tf_root:
        config.engine.tf_root = tf_root

    region = environ.get("ORCHESTRATE_AWS_REGION")
    if region:
        config.engine.aws_region = region

    wait = environ.get("ORCHESTRATE_APPROVAL_WAIT_MINUTES")
    if wait:
        config.approval.prod_wait_minutes = int(wait)

    oracle = environ.get("ORCHESTRATE_APPROVAL_ORACLE")
    if oracle:
        config.approval.oracle = oracle

    if not config.github.token:
        config.github.token = environ.get("ORCHESTRATE_GITHUB_TOKEN") or environ.get("GITHUB_TOKEN")
    if not config.github.repository:
        config.github.repository = (
            environ.get("ORCHESTRATE_GITHUB_REPOSITORY") or environ.get("GITHUB_REPOSITORY")
        )
    if not config.github.run_id:
        config.github.run_id = environ.get("GITHUB_RUN_ID")


def scoped_secrets(environment: Environment, environ: Mapping[str, str]) -> Dict[str, str]:
    """Return the secrets scoped to `environment` with their prefix stripped.

    ``ORCHESTRATE_PROD_AWS_ACCESS_KEY_ID`` becomes ``AWS_ACCESS_KEY_ID`` for
    prod runs and is invisible to dev and staging runs.
    """
    prefix = f"{SECRET_PREFIX}{environment.value.upper()}_"
    return {
        key[len(prefix):]: value
        for key, value in environ.items()
        if key.startswith(prefix) and len(key) > len(prefix)
    }


def engine_environment(
    config: EngineConfig,
    environment: Environment,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Build the process environment for an engine invocation."""
    base = dict(os.environ if environ is None else environ)
    other_prefixes = tuple(
        f"{SECRET_PREFIX}{other.value.upper()}_" for other in Environment if other is not environment
    )
    env = {k: v for k, v in base.items() if not k.startswith(other_prefixes)}
    env["TF_IN_AUTOMATION"] = "true"
    env["AWS_REGION"] = config.aws_region
    env.update(scoped_secrets(environment, base))
    return env
