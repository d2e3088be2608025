"""The approval gate: no environment is mutated unless its policy is met."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..errors import GateBlocked, GateRejected
from ..models import Action, ApprovalDecision, Environment, PlanClassification, utcnow
from .oracle import ApprovalOracle
from .policy import EnvironmentPolicy

logger = logging.getLogger(__name__)

NOTHING_TO_DEPLOY = "nothing to deploy"
NOT_DEPLOY_ELIGIBLE = "not a deploy-eligible trigger"
AWAITING_APPROVAL = "awaiting approval"
BRANCH_NOT_PERMITTED = "branch not permitted"


class ApprovalGate:
    """Decides Proceed / Blocked / Rejected for a planned deployment.

    The decision depends only on its inputs and on what the oracle reports,
    never on who started the run.
    """

    def __init__(
        self,
        oracle: ApprovalOracle,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.oracle = oracle
        self._clock = clock

    def decide(
        self,
        environment: Environment,
        classification: Optional[PlanClassification],
        should_deploy: bool,
        policy: EnvironmentPolicy,
        *,
        action: Action = Action.PLAN,
        branch: Optional[str] = None,
        run_id: Optional[str] = None,
        waiting_since: Optional[datetime] = None,
    ) -> ApprovalDecision:
        if policy.environment is not environment:
            raise ValueError(
                f"Policy for {policy.environment.value} applied to {environment.value}"
            )

        # destroy does not depend on the diff result
        if classification is not PlanClassification.CHANGES_PENDING and action is not Action.DESTROY:
            return ApprovalDecision.rejected(NOTHING_TO_DEPLOY)
        if not should_deploy:
            return ApprovalDecision.rejected(NOT_DEPLOY_ELIGIBLE)

        missing = self._missing_approvals(environment, policy, action, run_id)
        if missing:
            return ApprovalDecision.blocked(f"{AWAITING_APPROVAL}: {missing}")

        if policy.wait_minutes:
            # an unknown start means the timer starts now
            started = waiting_since or self._clock()
            ready_at = started + timedelta(minutes=policy.wait_minutes)
            remaining = (ready_at - self._clock()).total_seconds()
            if remaining > 0:
                minutes = math.ceil(remaining / 60)
                return ApprovalDecision.blocked(
                    f"{AWAITING_APPROVAL}: wait timer has {minutes} minute(s) remaining"
                )

        if not policy.branch_allowed(branch):
            allowed = ", ".join(policy.allowed_branches or ())
            return ApprovalDecision.rejected(
                f"{BRANCH_NOT_PERMITTED}: {branch or 'unknown'!r} may not deploy to "
                f"{environment.value} (allowed: {allowed})"
            )

        return ApprovalDecision.proceed()

    def _missing_approvals(
        self,
        environment: Environment,
        policy: EnvironmentPolicy,
        action: Action,
        run_id: Optional[str],
    ) -> Optional[str]:
        """Describe the unmet approval condition, or None when satisfied."""
        consensus = policy.requires_consensus(action)
        if policy.required_approvals == 0 and not consensus:
            return None

        approved = {record.reviewer for record in self.oracle.approvals(run_id or "", environment)}

        if consensus:
            if not policy.reviewers:
                return f"no {environment.value} reviewers configured for destroy consensus"
            required = max(policy.required_approvals, len(policy.reviewers))
            outstanding = [r for r in policy.reviewers if r not in approved]
            if outstanding or len(approved) < required:
                text = f"{min(len(approved), required)} of {required} required approvals (full reviewer consensus"
                if outstanding:
                    text += f"; missing: {', '.join(outstanding)}"
                return text + ")"
            return None

        if len(approved) < policy.required_approvals:
            return f"{len(approved)} of {policy.required_approvals} required approvals"
        return None


def enforce(decision: ApprovalDecision, environment: Environment) -> None:
    """Turn a non-Proceed decision into the matching exception."""
    if decision.is_rejected:
        raise GateRejected(decision.reason or "rejected", environment=environment)
    if decision.is_blocked:
        raise GateBlocked(decision.reason or AWAITING_APPROVAL, environment=environment)
