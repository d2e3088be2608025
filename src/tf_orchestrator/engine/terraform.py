"""Terraform CLI wrapper."""

from __future__ import annotations

import hashlib
import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..config import EngineConfig, engine_environment
from ..errors import LockContention
from ..models import Action, Environment
from .base import EngineResult, ProvisioningEngine

logger = logging.getLogger(__name__)

# stderr fragments Terraform prints when the backend lock is held elsewhere
LOCK_ERROR_MARKERS = (
    "Error acquiring the state lock",
    "Error locking state",
)

# stderr fragment for a plan file made against an older state
STALE_PLAN_MARKER = "Saved plan is stale"


class TerraformEngine(ProvisioningEngine):
    """Runs `terraform` commands in per-environment working directories."""

    def __init__(
        self,
        config: EngineConfig,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config = config
        self.environ = environ

    # ------------------------------------------------------------------
    # ProvisioningEngine
    # ------------------------------------------------------------------

    def init(self, environment: Environment, *, backend: bool = True) -> EngineResult:
        args = ["init", "-input=false", "-no-color"]
        if not backend:
            args.append("-backend=false")
        return self._run(
            args,
            cwd=self.config.working_dir(environment),
            environment=environment,
            timeout=self.config.init_timeout,
        )

    def fmt_check(self) -> EngineResult:
        return self._run(
            ["fmt", "-check", "-recursive", "-no-color"],
            cwd=Path(self.config.tf_root),
            environment=None,
            timeout=self.config.init_timeout,
        )

    def validate(self, environment: Environment) -> EngineResult:
        return self._run(
            ["validate", "-no-color"],
            cwd=self.config.working_dir(environment),
            environment=environment,
            timeout=self.config.init_timeout,
        )

    def plan(self, environment: Environment, action: Action, out_path: Path) -> EngineResult:
        args = [
            "plan",
            "-input=false",
            "-no-color",
            "-detailed-exitcode",
            f"-var=environment={environment.value}",
            f"-out={Path(out_path).resolve()}",
        ]
        if action is Action.DESTROY:
            args.insert(1, "-destroy")
        result = self._run(
            args,
            cwd=self.config.working_dir(environment),
            environment=environment,
            timeout=self.config.plan_timeout,
        )
        self._raise_for_lock(result, environment)
        return result

    def apply(self, environment: Environment, plan_path: Path) -> EngineResult:
        result = self._run_to_completion(
            ["apply", "-input=false", "-no-color", str(Path(plan_path).resolve())],
            cwd=self.config.working_dir(environment),
            environment=environment,
        )
        self._raise_for_lock(result, environment)
        return result

    def destroy(self, environment: Environment) -> EngineResult:
        result = self._run_to_completion(
            [
                "destroy",
                "-auto-approve",
                "-input=false",
                "-no-color",
                f"-var=environment={environment.value}",
            ],
            cwd=self.config.working_dir(environment),
            environment=environment,
        )
        self._raise_for_lock(result, environment)
        return result

    def outputs(self, environment: Environment) -> Dict[str, Any]:
        result = self._run(
            ["output", "-json", "-no-color"],
            cwd=self.config.working_dir(environment),
            environment=environment,
            timeout=self.config.init_timeout,
        )
        if not result.ok:
            logger.warning("terraform output failed for %s: %s", environment.value, result.message)
            return {}
        try:
            payload = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.warning("terraform output returned invalid JSON for %s", environment.value)
            return {}
        return {name: entry.get("value") for name, entry in payload.items()}

    def state_fingerprint(self, environment: Environment) -> Optional[str]:
        result = self._run(
            ["state", "pull"],
            cwd=self.config.working_dir(environment),
            environment=environment,
            timeout=self.config.init_timeout,
        )
        if not result.ok:
            logger.warning("terraform state pull failed for %s: %s", environment.value, result.message)
            return None
        raw = result.stdout.strip()
        if not raw:
            return "empty"
        try:
            state = json.loads(raw)
        except json.JSONDecodeError:
            return None
        token = f"{state.get('lineage', '')}:{state.get('serial', '')}"
        return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _command(self, args: List[str]) -> List[str]:
        return [self.config.terraform_binary] + args

    def _env(self, environment: Optional[Environment]) -> Optional[Dict[str, str]]:
        if environment is None:
            return dict(self.environ) if self.environ is not None else None
        return engine_environment(self.config, environment, self.environ)

    def _run(
        self,
        args: List[str],
        *,
        cwd: Path,
        environment: Optional[Environment],
        timeout: Optional[int],
    ) -> EngineResult:
        command = self._command(args)
        logger.debug("Running %s in %s", " ".join(command), cwd)
        try:
            process = subprocess.run(
                command,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=timeout,
                env=self._env(environment),
                check=False,
            )
        except FileNotFoundError as exc:
            return EngineResult(command, 127, "", f"Cannot run {command[0]}: {exc}")
        except subprocess.TimeoutExpired:
            return EngineResult(command, 1, "", f"Command timed out after {timeout} seconds")
        return EngineResult(command, process.returncode, process.stdout.strip(), process.stderr.strip())

    def _run_to_completion(
        self,
        args: List[str],
        *,
        cwd: Path,
        environment: Environment,
    ) -> EngineResult:
        """Run a mutating command that must not be interrupted once started.

        The child runs in its own session so a terminal Ctrl-C does not reach
        it, and interrupts delivered to this process are logged and ignored
        until the engine exits.
        """
        command = self._command(args)
        logger.debug("Running %s in %s", " ".join(command), cwd)
        try:
            process = subprocess.Popen(
                command,
                cwd=str(cwd),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=self._env(environment),
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            return EngineResult(command, 127, "", f"Cannot run {command[0]}: {exc}")

        while True:
            try:
                stdout, stderr = process.communicate()
                break
            except KeyboardInterrupt:
                logger.warning(
                    "⚠️ Interrupt ignored: terraform %s is mutating %s, waiting for it to finish",
                    args[0],
                    environment.value,
                )
        return EngineResult(command, process.returncode, (stdout or "").strip(), (stderr or "").strip())

    def _raise_for_lock(self, result: EngineResult, environment: Environment) -> None:
        if result.ok or result.exit_code == 2:
            return
        if any(marker in result.stderr for marker in LOCK_ERROR_MARKERS):
            raise LockContention(
                "State lock is held by another run",
                environment=environment,
                detail=result.stderr,
            )
