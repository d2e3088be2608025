"""Provisioning engine adapters."""

from .base import (
    EXIT_CHANGES_PENDING,
    EXIT_ERROR,
    EXIT_NO_CHANGES,
    EngineResult,
    ProvisioningEngine,
)
from .terraform import LOCK_ERROR_MARKERS, STALE_PLAN_MARKER, TerraformEngine

__all__ = [
    "EXIT_CHANGES_PENDING",
    "EXIT_ERROR",
    "EXIT_NO_CHANGES",
    "EngineResult",
    "ProvisioningEngine",
    "TerraformEngine",
    "LOCK_ERROR_MARKERS",
    "STALE_PLAN_MARKER",
]
