"""Interface the orchestrator uses to talk to the provisioning engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import Action, Environment

# `plan -detailed-exitcode` contract
EXIT_NO_CHANGES = 0
EXIT_ERROR = 1
EXIT_CHANGES_PENDING = 2


@dataclass
class EngineResult:
    """Result of one engine invocation."""

    command: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def message(self) -> str:
        """Best human-readable account of what the engine said."""
        return self.stderr or self.stdout


class ProvisioningEngine(ABC):
    """Abstract provisioning engine (Terraform in production, fakes in tests).

    Implementations raise ``LockContention`` when the state backend refuses
    the lock; every other failure is reported through ``EngineResult``.
    """

    @abstractmethod
    def init(self, environment: Environment, *, backend: bool = True) -> EngineResult:
        """Prepare the working directory of `environment`."""

    @abstractmethod
    def fmt_check(self) -> EngineResult:
        """Check formatting of the whole configuration tree."""

    @abstractmethod
    def validate(self, environment: Environment) -> EngineResult:
        """Static validation of `environment`'s configuration."""

    @abstractmethod
    def plan(self, environment: Environment, action: Action, out_path: Path) -> EngineResult:
        """Diff desired against actual state, writing the change-set to `out_path`.

        ``exit_code`` follows the detailed-exitcode contract: 0 no changes,
        1 error, 2 changes pending.
        """

    @abstractmethod
    def apply(self, environment: Environment, plan_path: Path) -> EngineResult:
        """Apply a previously written change-set."""

    @abstractmethod
    def destroy(self, environment: Environment) -> EngineResult:
        """Remove every managed resource of `environment`."""

    @abstractmethod
    def outputs(self, environment: Environment) -> Dict[str, Any]:
        """Current root-module outputs of `environment`."""

    @abstractmethod
    def state_fingerprint(self, environment: Environment) -> Optional[str]:
        """Opaque token that changes whenever `environment`'s state changes.

        Returns None if the state could not be read.
        """
