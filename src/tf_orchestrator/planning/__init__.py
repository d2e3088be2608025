"""Plan executor and pre-plan validation."""

from .executor import PlanExecutor, PlanOutcome, classify_exit_code
from .validation import validate_configuration

__all__ = ["PlanExecutor", "PlanOutcome", "classify_exit_code", "validate_configuration"]
