import json
import subprocess
import unittest
from pathlib import Path
from unittest import mock

from tf_orchestrator.config import EngineConfig
from tf_orchestrator.engine import TerraformEngine
from tf_orchestrator.errors import LockContention
from tf_orchestrator.models import Action, Environment

ENVIRON = {
    "PATH": "/usr/bin",
    "ORCHESTRATE_DEV_AWS_ACCESS_KEY_ID": "dev-key",
    "ORCHESTRATE_PROD_AWS_ACCESS_KEY_ID": "prod-key",
}


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TerraformEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = EngineConfig(terraform_binary="tf", tf_root="infra", aws_region="eu-west-1")
        self.engine = TerraformEngine(self.config, environ=ENVIRON)
        patcher = mock.patch("tf_orchestrator.engine.terraform.subprocess.run")
        self.run = patcher.start()
        self.addCleanup(patcher.stop)

    def _call(self):
        args, kwargs = self.run.call_args
        return args[0], kwargs

    def test_plan_command_and_environment(self) -> None:
        self.run.return_value = _completed(2, "Plan: 1 to add")
        result = self.engine.plan(Environment.DEV, Action.PLAN, Path("out/tfplan"))

        self.assertEqual(result.exit_code, 2)
        command, kwargs = self._call()
        self.assertEqual(command[:2], ["tf", "plan"])
        self.assertIn("-detailed-exitcode", command)
        self.assertIn("-var=environment=dev", command)
        self.assertIn(f"-out={Path('out/tfplan').resolve()}", command)
        self.assertNotIn("-destroy", command)
        self.assertEqual(kwargs["cwd"], str(Path("infra/envs/dev")))

        env = kwargs["env"]
        self.assertEqual(env["AWS_ACCESS_KEY_ID"], "dev-key")
        self.assertEqual(env["AWS_REGION"], "eu-west-1")
        self.assertEqual(env["TF_IN_AUTOMATION"], "true")
        self.assertNotIn("ORCHESTRATE_PROD_AWS_ACCESS_KEY_ID", env)

    def test_destroy_plan(self) -> None:
        self.run.return_value = _completed(2)
        self.engine.plan(Environment.PROD, Action.DESTROY, Path("tfplan"))
        command, kwargs = self._call()
        self.assertEqual(command[:3], ["tf", "plan", "-destroy"])
        self.assertEqual(kwargs["env"]["AWS_ACCESS_KEY_ID"], "prod-key")

    def test_lock_error_raises_contention(self) -> None:
        self.run.return_value = _completed(1, stderr="Error: Error acquiring the state lock\nLock Info: ...")
        with self.assertRaises(LockContention) as caught:
            self.engine.plan(Environment.STAGING, Action.PLAN, Path("tfplan"))
        self.assertIs(caught.exception.environment, Environment.STAGING)

    def test_other_failures_are_returned(self) -> None:
        self.run.return_value = _completed(1, stderr="Error: Invalid resource type")
        result = self.engine.plan(Environment.DEV, Action.PLAN, Path("tfplan"))
        self.assertFalse(result.ok)
        self.assertEqual(result.message, "Error: Invalid resource type")

    def test_missing_binary(self) -> None:
        self.run.side_effect = FileNotFoundError("tf")
        result = self.engine.init(Environment.DEV)
        self.assertEqual(result.exit_code, 127)

    def test_timeout(self) -> None:
        self.run.side_effect = subprocess.TimeoutExpired(cmd="tf", timeout=5)
        result = self.engine.plan(Environment.DEV, Action.PLAN, Path("tfplan"))
        self.assertEqual(result.exit_code, 1)
        self.assertIn("timed out", result.stderr)

    def test_init_without_backend(self) -> None:
        self.run.return_value = _completed()
        self.engine.init(Environment.DEV, backend=False)
        command, _ = self._call()
        self.assertIn("-backend=false", command)

    def test_fmt_check_runs_in_root(self) -> None:
        self.run.return_value = _completed()
        self.engine.fmt_check()
        command, kwargs = self._call()
        self.assertEqual(command[:4], ["tf", "fmt", "-check", "-recursive"])
        self.assertEqual(kwargs["cwd"], "infra")

    def test_outputs(self) -> None:
        payload = {"bucket": {"value": "b-1", "type": "string"}, "count": {"value": 3}}
        self.run.return_value = _completed(0, json.dumps(payload))
        self.assertEqual(self.engine.outputs(Environment.DEV), {"bucket": "b-1", "count": 3})

    def test_outputs_failure_returns_empty(self) -> None:
        self.run.return_value = _completed(1, stderr="no state")
        self.assertEqual(self.engine.outputs(Environment.DEV), {})

    def test_state_fingerprint(self) -> None:
        state = {"lineage": "abc", "serial": 4, "resources": []}
        self.run.return_value = _completed(0, json.dumps(state))
        first = self.engine.state_fingerprint(Environment.DEV)
        self.assertEqual(first, self.engine.state_fingerprint(Environment.DEV))

        self.run.return_value = _completed(0, json.dumps({**state, "serial": 5}))
        self.assertNotEqual(first, self.engine.state_fingerprint(Environment.DEV))

        self.run.return_value = _completed(0, "")
        self.assertEqual(self.engine.state_fingerprint(Environment.DEV), "empty")

        self.run.return_value = _completed(1, stderr="backend unreachable")
        self.assertIsNone(self.engine.state_fingerprint(Environment.DEV))


class TerraformMutationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = TerraformEngine(EngineConfig(terraform_binary="tf"), environ=ENVIRON)
        patcher = mock.patch("tf_orchestrator.engine.terraform.subprocess.Popen")
        self.popen = patcher.start()
        self.addCleanup(patcher.stop)
        self.process = self.popen.return_value
        self.process.returncode = 0

    def test_apply_runs_in_own_session(self) -> None:
        self.process.communicate.return_value = ("Apply complete!", "")
        result = self.engine.apply(Environment.DEV, Path("tfplan"))

        self.assertTrue(result.ok)
        command = self.popen.call_args[0][0]
        self.assertEqual(command[1], "apply")
        self.assertEqual(command[-1], str(Path("tfplan").resolve()))
        self.assertTrue(self.popen.call_args[1]["start_new_session"])

    def test_interrupt_waits_for_engine(self) -> None:
        self.process.communicate.side_effect = [KeyboardInterrupt(), ("Apply complete!", "")]
        result = self.engine.apply(Environment.DEV, Path("tfplan"))
        self.assertTrue(result.ok)
        self.assertEqual(self.process.communicate.call_count, 2)

    def test_destroy_lock_contention(self) -> None:
        self.process.returncode = 1
        self.process.communicate.return_value = ("", "Error locking state: ConditionalCheckFailed")
        with self.assertRaises(LockContention):
            self.engine.destroy(Environment.PROD)
        command = self.popen.call_args[0][0]
        self.assertIn("-auto-approve", command)


if __name__ == "__main__":
    unittest.main()
