"""Per-environment approval policy table."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Tuple

from ..config import ApprovalConfig
from ..models import Action, Environment


@dataclass(frozen=True)
class EnvironmentPolicy:
    """What has to be true before an environment may be mutated."""

    environment: Environment
    required_approvals: int = 0
    allowed_branches: Optional[Tuple[str, ...]] = None  # None means any branch
    wait_minutes: int = 0
    destroy_requires_consensus: bool = False
    reviewers: Tuple[str, ...] = ()

    def branch_allowed(self, branch: Optional[str]) -> bool:
        if self.allowed_branches is None:
            return True
        return branch in self.allowed_branches

    def requires_consensus(self, action: Action) -> bool:
        return action is Action.DESTROY and self.destroy_requires_consensus


_POLICIES = {
    Environment.DEV: EnvironmentPolicy(Environment.DEV),
    Environment.STAGING: EnvironmentPolicy(
        Environment.STAGING,
        required_approvals=1,
        allowed_branches=("staging",),
    ),
    Environment.PROD: EnvironmentPolicy(
        Environment.PROD,
        required_approvals=2,
        allowed_branches=("main",),
        wait_minutes=10,
        destroy_requires_consensus=True,
    ),
}

_missing = set(Environment) - set(_POLICIES)
if _missing:
    raise RuntimeError(f"No approval policy for: {sorted(e.value for e in _missing)}")


def policy_for(environment: Environment, config: Optional[ApprovalConfig] = None) -> EnvironmentPolicy:
    """Return the fixed policy for `environment`.

    `config` only supplies the prod wait timer and the designated reviewer
    lists; reviewer counts and branch restrictions are not configurable.
    """
    policy = _POLICIES[environment]
    if config is None:
        return policy
    changes = {"reviewers": tuple(config.reviewers_for(environment))}
    if environment is Environment.PROD:
        changes["wait_minutes"] = config.prod_wait_minutes
    return replace(policy, **changes)
