"""Orchestrator module for multi-environment deployment runs.

- DeploymentOrchestrator: drives a RunContext through the state machine
- retry_on_lock: bounded backoff around state-lock contention
"""

from .orchestrator import DeploymentOrchestrator
from .retry import retry_on_lock

__all__ = ["DeploymentOrchestrator", "retry_on_lock"]
