"""Approval gate, policy table and approval oracles."""

from .gate import (
    AWAITING_APPROVAL,
    BRANCH_NOT_PERMITTED,
    NOT_DEPLOY_ELIGIBLE,
    NOTHING_TO_DEPLOY,
    ApprovalGate,
    enforce,
)
from .oracle import ApprovalOracle, ApprovalRecord, GitHubApprovalOracle, LedgerApprovalOracle
from .policy import EnvironmentPolicy, policy_for

__all__ = [
    "AWAITING_APPROVAL",
    "BRANCH_NOT_PERMITTED",
    "NOT_DEPLOY_ELIGIBLE",
    "NOTHING_TO_DEPLOY",
    "ApprovalGate",
    "ApprovalOracle",
    "ApprovalRecord",
    "EnvironmentPolicy",
    "GitHubApprovalOracle",
    "LedgerApprovalOracle",
    "enforce",
    "policy_for",
]
