import os
import unittest
from pathlib import Path
from unittest import mock

from tf_orchestrator.config import (
    AppConfig,
    EngineConfig,
    engine_environment,
    load_config,
    scoped_secrets,
)
from tf_orchestrator.models import Environment


class ConfigTests(unittest.TestCase):
    def test_loads_default_config(self) -> None:
        config = load_config()
        self.assertIsInstance(config, AppConfig)
        self.assertEqual(config.lock.max_attempts, 5)
        self.assertEqual(config.storage.retention_hours, 24)
        self.assertIn(config.approval.oracle, ("ledger", "github"))

    def test_loads_custom_config(self) -> None:
        temp_file = Path("tests/tmp_config.json")
        temp_file.write_text(
            """
{
  \"engine\": {\"_comment\": \"ignored\", \"tf_root\": \"infra\", \"validate_before_plan\": false},
  \"lock\": {\"max_attempts\": 2},
  \"approval\": {\"reviewers\": {\"prod\": [\"alice\", \"bob\"]}}
}
""".strip()
        )
        try:
            with mock.patch.dict(os.environ, {}, clear=False):
                os.environ.pop("ORCHESTRATE_TF_ROOT", None)
                config = load_config(str(temp_file))
            self.assertEqual(config.engine.tf_root, "infra")
            self.assertFalse(config.engine.validate_before_plan)
            self.assertEqual(config.engine.terraform_binary, "terraform")
            self.assertEqual(config.lock.max_attempts, 2)
            self.assertEqual(config.lock.backoff_seconds, 5.0)
            self.assertEqual(config.approval.reviewers_for(Environment.PROD), ["alice", "bob"])
            self.assertEqual(config.approval.reviewers_for(Environment.DEV), [])
        finally:
            temp_file.unlink(missing_ok=True)

    def test_missing_explicit_config_raises(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_config("tests/does_not_exist.json")

    def test_env_vars_override_file(self) -> None:
        overrides = {
            "ORCHESTRATE_TERRAFORM_BIN": "/opt/terraform",
            "ORCHESTRATE_AWS_REGION": "us-east-2",
            "ORCHESTRATE_APPROVAL_WAIT_MINUTES": "3",
            "ORCHESTRATE_APPROVAL_ORACLE": "github",
            "ORCHESTRATE_GITHUB_TOKEN": "ghs_secret",
            "ORCHESTRATE_GITHUB_REPOSITORY": "acme/infra",
            "GITHUB_RUN_ID": "12345",
        }
        with mock.patch.dict(os.environ, overrides):
            config = load_config()
        self.assertEqual(config.engine.terraform_binary, "/opt/terraform")
        self.assertEqual(config.engine.aws_region, "us-east-2")
        self.assertEqual(config.approval.prod_wait_minutes, 3)
        self.assertEqual(config.approval.oracle, "github")
        self.assertTrue(config.github.enabled)
        self.assertEqual(
            config.github.run_url, "https://github.com/acme/infra/actions/runs/12345"
        )

    def test_working_dir(self) -> None:
        config = EngineConfig(tf_root="terraform", envs_dir="envs")
        self.assertEqual(config.working_dir(Environment.STAGING), Path("terraform/envs/staging"))


class ScopedSecretTests(unittest.TestCase):
    environ = {
        "HOME": "/home/ci",
        "ORCHESTRATE_DEV_DB_PASSWORD": "dev-pw",
        "ORCHESTRATE_PROD_DB_PASSWORD": "prod-pw",
        "ORCHESTRATE_PROD_": "ignored",
    }

    def test_secrets_are_scoped_to_environment(self) -> None:
        self.assertEqual(scoped_secrets(Environment.PROD, self.environ), {"DB_PASSWORD": "prod-pw"})
        self.assertEqual(scoped_secrets(Environment.STAGING, self.environ), {})

    def test_engine_environment_hides_other_environments(self) -> None:
        env = engine_environment(EngineConfig(aws_region="af-south-1"), Environment.DEV, self.environ)
        self.assertEqual(env["DB_PASSWORD"], "dev-pw")
        self.assertEqual(env["HOME"], "/home/ci")
        self.assertEqual(env["AWS_REGION"], "af-south-1")
        self.assertEqual(env["TF_IN_AUTOMATION"], "true")
        self.assertFalse(any(key.startswith("ORCHESTRATE_PROD_") for key in env))


if __name__ == "__main__":
    unittest.main()
