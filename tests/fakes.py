"""Test doubles shared across the test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from tf_orchestrator.engine import EngineResult, ProvisioningEngine
from tf_orchestrator.errors import LockContention
from tf_orchestrator.models import Action, Environment


class FakeClock:
    """A clock the test moves by hand."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeEngine(ProvisioningEngine):
    """Scripted provisioning engine that records every call.

    `plan_codes` is consumed one entry per plan call; once exhausted the last
    code is reused. `lock_failures` maps an operation name ("plan", "apply",
    "destroy") to how many times it should raise ``LockContention`` first.
    """

    def __init__(
        self,
        plan_codes: Optional[List[int]] = None,
        *,
        apply_code: int = 0,
        destroy_code: int = 0,
        init_code: int = 0,
        fmt_code: int = 0,
        validate_code: int = 0,
        fingerprint: Optional[str] = "serial-1",
        outputs: Optional[Dict[str, Any]] = None,
        lock_failures: Optional[Dict[str, int]] = None,
        apply_stderr: str = "",
        plan_stderr: str = "Error: something broke",
    ) -> None:
        self.plan_codes = list(plan_codes or [2])
        self.apply_code = apply_code
        self.destroy_code = destroy_code
        self.init_code = init_code
        self.fmt_code = fmt_code
        self.validate_code = validate_code
        self.fingerprint = fingerprint
        self._outputs = outputs or {}
        self.lock_failures = dict(lock_failures or {})
        self.apply_stderr = apply_stderr
        self.plan_stderr = plan_stderr
        self.calls: List[Tuple[Any, ...]] = []

    # helpers --------------------------------------------------------------

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def _maybe_lock(self, operation: str, environment: Environment) -> None:
        remaining = self.lock_failures.get(operation, 0)
        if remaining:
            self.lock_failures[operation] = remaining - 1
            raise LockContention("State lock is held by another run", environment=environment)

    # ProvisioningEngine ---------------------------------------------------

    def init(self, environment: Environment, *, backend: bool = True) -> EngineResult:
        self.calls.append(("init", environment, backend))
        return EngineResult(["init"], self.init_code, "", "init failed" if self.init_code else "")

    def fmt_check(self) -> EngineResult:
        self.calls.append(("fmt_check",))
        return EngineResult(["fmt"], self.fmt_code, "main.tf" if self.fmt_code else "")

    def validate(self, environment: Environment) -> EngineResult:
        self.calls.append(("validate", environment))
        return EngineResult(["validate"], self.validate_code, "", "invalid" if self.validate_code else "")

    def plan(self, environment: Environment, action: Action, out_path: Path) -> EngineResult:
        self.calls.append(("plan", environment, action))
        self._maybe_lock("plan", environment)
        code = self.plan_codes.pop(0) if len(self.plan_codes) > 1 else self.plan_codes[0]
        if code == 2:
            Path(out_path).write_text(f"plan for {environment.value}", encoding="utf-8")
            return EngineResult(["plan"], 2, "Plan: 1 to add, 0 to change, 0 to destroy.")
        if code == 0:
            return EngineResult(["plan"], 0, "No changes. Your infrastructure matches the configuration.")
        return EngineResult(["plan"], code, "", self.plan_stderr)

    def apply(self, environment: Environment, plan_path: Path) -> EngineResult:
        self.calls.append(("apply", environment, Path(plan_path)))
        self._maybe_lock("apply", environment)
        if self.apply_code == 0:
            self.fingerprint = f"{self.fingerprint}+applied"
            return EngineResult(["apply"], 0, "Apply complete! Resources: 1 added.")
        return EngineResult(["apply"], self.apply_code, "", self.apply_stderr or "Error: apply failed")

    def destroy(self, environment: Environment) -> EngineResult:
        self.calls.append(("destroy", environment))
        self._maybe_lock("destroy", environment)
        if self.destroy_code == 0:
            return EngineResult(["destroy"], 0, "Destroy complete! Resources: 3 destroyed.")
        return EngineResult(["destroy"], self.destroy_code, "", "Error: destroy failed")

    def outputs(self, environment: Environment) -> Dict[str, Any]:
        self.calls.append(("outputs", environment))
        return dict(self._outputs)

    def state_fingerprint(self, environment: Environment) -> Optional[str]:
        self.calls.append(("state_fingerprint", environment))
        return self.fingerprint
