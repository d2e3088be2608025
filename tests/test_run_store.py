import json
import os
import tempfile
import unittest
from pathlib import Path

from fakes import FakeClock

from tf_orchestrator.errors import ClassificationError, PlanError, UnknownRunError
from tf_orchestrator.models import (
    Action,
    ApprovalDecision,
    DeployResult,
    Environment,
    ManualDispatchEvent,
    PlanArtifact,
    PlanClassification,
    PullRequestEvent,
    RunContext,
    RunState,
    event_from_dict,
)
from tf_orchestrator.runs import RunStore, generate_run_id


class RunContextTests(unittest.TestCase):
    def test_advance_records_history_and_keeps_original(self) -> None:
        ctx = RunContext(run_id="r1", event=PullRequestEvent("main", "fix", 3))
        moved = ctx.advance(RunState.PLANNING, environment=Environment.PROD)

        self.assertIs(ctx.state, RunState.CLASSIFYING)
        self.assertIsNone(ctx.environment)
        self.assertIs(moved.state, RunState.PLANNING)
        self.assertEqual([state for state, _ in moved.history], ["planning"])

    def test_full_context_survives_persistence(self) -> None:
        clock = FakeClock()
        ctx = RunContext(
            run_id="r1",
            event=ManualDispatchEvent(Environment.PROD, Action.DESTROY, ref="main", commit="abc"),
            created_at=clock(),
            updated_at=clock(),
        ).advance(
            RunState.DONE,
            environment=Environment.PROD,
            action=Action.DESTROY,
            should_deploy=True,
            classification=PlanClassification.CHANGES_PENDING,
            plan_artifact=PlanArtifact(
                artifact_id="tfplan-prod-r1",
                environment=Environment.PROD,
                run_id="r1",
                commit="abc",
                created_at=clock(),
                action=Action.DESTROY,
                path="/tmp/tfplan",
                state_fingerprint="fp",
            ),
            decision=ApprovalDecision.proceed(),
            gate_opened_at=clock(),
            deploy_result=DeployResult(True, Action.DESTROY, Environment.PROD, {"ip": "10.0.0.1"}),
            error=None,
            note="done",
        )
        self.assertEqual(RunContext.from_dict(json.loads(json.dumps(ctx.to_dict()))), ctx)

    def test_unknown_event_type(self) -> None:
        with self.assertRaises(ClassificationError):
            event_from_dict({"type": "schedule"})

    def test_state_kinds(self) -> None:
        self.assertTrue(RunState.DONE.is_terminal)
        self.assertTrue(RunState.FAILED.is_terminal)
        self.assertTrue(RunState.BLOCKED.is_paused)
        self.assertTrue(RunState.PLANNED.is_paused)
        self.assertFalse(RunState.GATING.is_terminal or RunState.GATING.is_paused)

    def test_environment_and_action_parsing(self) -> None:
        self.assertIs(Environment.parse(" Prod "), Environment.PROD)
        self.assertIs(Action.parse(None), Action.PLAN)
        with self.assertRaises(ClassificationError):
            Environment.parse("qa")
        with self.assertRaises(ClassificationError):
            Action.parse("import")


class ErrorTests(unittest.TestCase):
    def test_error_carries_stage_environment_and_detail(self) -> None:
        error = PlanError("terraform plan failed", environment=Environment.DEV, detail="Error: x")
        self.assertEqual(str(error), "[planning] dev: terraform plan failed\nError: x")
        self.assertEqual(
            error.to_dict(),
            {
                "type": "PlanError",
                "stage": "planning",
                "environment": "dev",
                "message": "terraform plan failed",
                "detail": "Error: x",
            },
        )


class RunStoreTests(unittest.TestCase):
    def test_save_load_and_list(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = RunStore(Path(tmp))
            first = RunContext(run_id="aaa", event=PullRequestEvent("dev", "x"))
            second = RunContext(run_id="bbb", event=PullRequestEvent("dev", "y"))
            store.save(first)
            store.save(second)
            os.utime(store.path_for("aaa"), (1, 1))

            self.assertTrue(store.exists("aaa"))
            self.assertEqual(store.load("aaa"), first)
            self.assertEqual([run.run_id for run in store.list()], ["bbb", "aaa"])
            self.assertEqual(list(Path(tmp).glob("*.tmp")), [])

    def test_unknown_run(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(UnknownRunError):
                RunStore(Path(tmp)).load("missing")

    def test_generated_ids_are_unique(self) -> None:
        ids = {generate_run_id("push") for _ in range(50)}
        self.assertEqual(len(ids), 50)
        self.assertTrue(all(len(run_id) == 12 for run_id in ids))


if __name__ == "__main__":
    unittest.main()
