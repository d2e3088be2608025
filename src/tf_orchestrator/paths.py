"""Unified path constants for the orchestrator.

All local state lives under the .orchestrate directory:
- .orchestrate/artifacts/<env>/<run-id>/   # stored plan files + metadata
- .orchestrate/runs/<run-id>.json          # persisted run contexts
- .orchestrate/approvals.json              # local approval ledger
"""

from pathlib import Path

BASE_DIR = Path(".orchestrate")

ARTIFACTS_DIR = BASE_DIR / "artifacts"
RUNS_DIR = BASE_DIR / "runs"
APPROVALS_FILE = BASE_DIR / "approvals.json"
