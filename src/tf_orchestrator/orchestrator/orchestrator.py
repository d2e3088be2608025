"""Deployment orchestrator: sequences classify -> validate -> plan -> gate -> deploy."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, Optional

from ..approval import ApprovalGate, enforce, policy_for
from ..artifacts import ArtifactStore
from ..config import AppConfig
from ..deploy import DeployExecutor
from ..engine import ProvisioningEngine
from ..errors import (
    DeployError,
    GateBlocked,
    GateRejected,
    OrchestratorError,
    PlanError,
    RunSkipped,
)
from ..github import GitHubAPIError, format_plan_comment
from ..models import (
    Action,
    Environment,
    Event,
    PlanClassification,
    PullRequestEvent,
    RunContext,
    RunState,
    utcnow,
)
from ..planning import PlanExecutor, validate_configuration
from ..runs import RunStore, generate_run_id
from ..trigger import classify
from ..trigger.classifier import source_branch
from .retry import retry_on_lock

if TYPE_CHECKING:
    from ..github import GitHubClient

logger = logging.getLogger(__name__)


class DeploymentOrchestrator:
    """
    Runs one pipeline run through the state machine

        classifying -> validating -> planning -> gating -> deploying -> done

    with ``failed`` reachable from every stage. ``blocked`` (approval gate)
    and ``planned`` (plan-only run) are pauses: the RunContext is persisted
    and the run continues later through `resume` or `apply_planned`.
    """

    def __init__(
        self,
        config: AppConfig,
        engine: ProvisioningEngine,
        artifact_store: ArtifactStore,
        run_store: RunStore,
        gate: ApprovalGate,
        *,
        github: Optional["GitHubClient"] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.engine = engine
        self.artifact_store = artifact_store
        self.run_store = run_store
        self.gate = gate
        self.github = github
        self._sleep = sleep
        self._clock = clock
        self._cancelled = False

        self.plan_executor = PlanExecutor(engine, artifact_store)
        self.deploy_executor = DeployExecutor(engine, artifact_store)

        self._handlers: Dict[RunState, Callable[[RunContext], RunContext]] = {
            RunState.CLASSIFYING: self._classify,
            RunState.VALIDATING: self._validate,
            RunState.PLANNING: self._plan,
            RunState.GATING: self._gate,
            RunState.DEPLOYING: self._deploy,
        }

    # ------------------------------------------------------------------
    # entry points
    # ------------------------------------------------------------------

    def start(
        self,
        event: Event,
        *,
        plan_only: bool = False,
        commit: Optional[str] = None,
        branch: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> RunContext:
        """Begin a new run for `event` and drive it as far as it can go."""
        now = self._clock()
        ctx = RunContext(
            run_id=run_id or generate_run_id(repr(event)),
            event=event,
            created_at=now,
            updated_at=now,
            plan_only=plan_only,
            commit=getattr(event, "commit", None) or commit,
            branch=branch,
        ).advance(RunState.CLASSIFYING, updated_at=now)

        logger.info("=" * 60)
        logger.info("🚀 DEPLOYMENT ORCHESTRATION  run=%s", ctx.run_id)
        logger.info("=" * 60)
        self._save(ctx)
        return self._drive(ctx)

    def resume(self, run_id: str) -> RunContext:
        """Re-evaluate the approval gate of a blocked run."""
        ctx = self.run_store.load(run_id)
        if ctx.state is not RunState.BLOCKED:
            raise OrchestratorError(
                f"Run {run_id} is {ctx.state.value}; only blocked runs can be resumed",
                environment=ctx.environment,
                stage="resume",
            )
        logger.info("▶️ Resuming run %s (%s)", run_id, ctx.environment.value)
        return self._drive(ctx.advance(RunState.GATING))

    def apply_planned(self, run_id: str, environment: Environment) -> RunContext:
        """Continue a plan-only run into the gate with action Apply."""
        ctx = self.run_store.load(run_id)
        if ctx.environment is not environment:
            planned_for = ctx.environment.value if ctx.environment else "no environment"
            raise DeployError(
                f"Run {run_id} was planned for {planned_for}, not {environment.value}",
                environment=environment,
            )
        if ctx.state is not RunState.PLANNED:
            raise OrchestratorError(
                f"Run {run_id} is {ctx.state.value}; only planned runs can be applied",
                environment=environment,
                stage="apply",
            )
        logger.info("▶️ Applying planned run %s (%s)", run_id, environment.value)
        return self._drive(ctx.advance(RunState.GATING, action=Action.APPLY, should_deploy=True))

    def cancel(self) -> None:
        """Stop the run before its next stage. A started deploy is not interrupted."""
        self._cancelled = True

    # ------------------------------------------------------------------
    # state machine
    # ------------------------------------------------------------------

    def _drive(self, ctx: RunContext) -> RunContext:
        while not (ctx.state.is_terminal or ctx.state.is_paused):
            stage = ctx.state
            if self._cancelled and stage is not RunState.DEPLOYING:
                ctx = self._fail(
                    ctx,
                    OrchestratorError("Run cancelled", environment=ctx.environment, stage=stage.value),
                )
                break
            try:
                ctx = self._handlers[stage](ctx)
            except RunSkipped as skip:
                logger.info("⏭️ Skipping run: %s", skip.reason)
                ctx = ctx.advance(RunState.DONE, note=f"skipped: {skip.reason}")
            except OrchestratorError as exc:
                ctx = self._fail(ctx, exc)
            except KeyboardInterrupt:
                ctx = self._fail(
                    ctx,
                    OrchestratorError(
                        "Run cancelled by interrupt", environment=ctx.environment, stage=stage.value
                    ),
                )
                if stage is RunState.DEPLOYING:
                    # the engine has already waited for any running mutation
                    self._save(ctx)
                    raise
            except Exception as exc:
                logger.exception("Unexpected error in %s", stage.value)
                ctx = self._fail(
                    ctx,
                    OrchestratorError(
                        f"Unexpected {type(exc).__name__}: {exc}",
                        environment=ctx.environment,
                        stage=stage.value,
                    ),
                )
            self._save(ctx)

        self._log_outcome(ctx)
        return ctx

    def _classify(self, ctx: RunContext) -> RunContext:
        environment, action, should_deploy = classify(ctx.event, watch_path=self.config.engine.tf_root)
        branch = ctx.branch or source_branch(ctx.event)
        logger.info("🎯 Target environment: %s", environment.value)
        logger.info("   Action: %s  should_deploy: %s  branch: %s", action.value, should_deploy, branch)
        next_state = RunState.VALIDATING if self.config.engine.validate_before_plan else RunState.PLANNING
        return ctx.advance(
            next_state,
            environment=environment,
            action=action,
            should_deploy=should_deploy,
            branch=branch,
        )

    def _validate(self, ctx: RunContext) -> RunContext:
        validate_configuration(self.engine, ctx.environment)
        return ctx.advance(RunState.PLANNING)

    def _plan(self, ctx: RunContext) -> RunContext:
        environment = ctx.environment
        outcome = retry_on_lock(
            lambda: self.plan_executor.plan(
                environment, ctx.action, run_id=ctx.run_id, commit=ctx.commit
            ),
            self.config.lock,
            sleep=self._sleep,
            description=f"plan of {environment.value}",
        )
        ctx = ctx.evolve(
            classification=outcome.classification,
            plan_artifact=outcome.artifact,
            plan_output=outcome.output,
        )

        if outcome.classification is PlanClassification.FAILED:
            return self._fail(
                ctx, PlanError("terraform plan failed", environment=environment, detail=outcome.output)
            )

        if outcome.classification is PlanClassification.CHANGES_PENDING:
            self._comment_on_pull_request(ctx)

        if ctx.plan_only:
            if outcome.classification is PlanClassification.CHANGES_PENDING:
                return ctx.advance(
                    RunState.PLANNED,
                    note=f"apply with: orchestrate apply --env {environment.value} --artifact {ctx.run_id}",
                )
            return ctx.advance(RunState.DONE, note="no changes")

        return ctx.advance(RunState.GATING)

    def _gate(self, ctx: RunContext) -> RunContext:
        environment = ctx.environment
        opened_at = ctx.gate_opened_at or self._clock()
        policy = policy_for(environment, self.config.approval)
        decision = self.gate.decide(
            environment,
            ctx.classification,
            ctx.should_deploy,
            policy,
            action=ctx.action,
            branch=ctx.branch,
            run_id=ctx.run_id,
            waiting_since=opened_at,
        )
        ctx = ctx.evolve(decision=decision, gate_opened_at=opened_at)
        logger.info("🚦 Approval gate: %s", decision)

        try:
            enforce(decision, environment)
        except GateBlocked as blocked:
            logger.info("⏸️ Run %s paused: %s", ctx.run_id, blocked.message)
            return ctx.advance(RunState.BLOCKED, note=blocked.message)
        except GateRejected as rejected:
            return self._fail(ctx, rejected)
        return ctx.advance(RunState.DEPLOYING)

    def _deploy(self, ctx: RunContext) -> RunContext:
        environment = ctx.environment
        if ctx.decision is None or not ctx.decision.is_proceed:
            raise DeployError("Refusing to deploy without a Proceed decision", environment=environment)

        action = Action.DESTROY if ctx.action is Action.DESTROY else Action.APPLY
        result = retry_on_lock(
            lambda: self.deploy_executor.execute(environment, action, ctx.plan_artifact),
            self.config.lock,
            sleep=self._sleep,
            description=f"{action.value} of {environment.value}",
        )

        artifact = ctx.plan_artifact
        if artifact is not None and action is Action.APPLY:
            artifact = self.artifact_store.load(environment, artifact.run_id)
        if result.outputs:
            logger.info("📤 Terraform Outputs:")
            for name, value in result.outputs.items():
                logger.info("   %s = %s", name, value)
        return ctx.advance(RunState.DONE, deploy_result=result, plan_artifact=artifact)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _fail(self, ctx: RunContext, exc: OrchestratorError) -> RunContext:
        logger.error("❌ %s", exc)
        error = exc.to_dict()
        # errors raised outside a stage-specific class carry the stage they happened in
        if type(exc) is OrchestratorError and exc.stage == OrchestratorError.stage:
            error["stage"] = ctx.state.value
        return ctx.advance(RunState.FAILED, error=error)

    def _save(self, ctx: RunContext) -> None:
        self.run_store.save(ctx)

    def _comment_on_pull_request(self, ctx: RunContext) -> None:
        event = ctx.event
        if not isinstance(event, PullRequestEvent) or not event.number:
            return
        if self.github is None or not self.config.github.comment_on_pull_requests:
            return
        body = format_plan_comment(
            ctx.environment.value,
            event.head_branch,
            run_url=self.config.github.run_url,
            plan_output=ctx.plan_output,
        )
        try:
            self.github.create_issue_comment(event.number, body)
            logger.info("💬 Posted plan summary on PR #%s", event.number)
        except GitHubAPIError as exc:
            logger.warning("Could not comment on PR #%s: %s", event.number, exc)

    def _log_outcome(self, ctx: RunContext) -> None:
        logger.info("=" * 60)
        if ctx.state is RunState.DONE:
            logger.info("🎉 Run %s finished%s", ctx.run_id, f" ({ctx.note})" if ctx.note else "")
        elif ctx.state is RunState.FAILED:
            logger.error("❌ Run %s failed in %s", ctx.run_id, (ctx.error or {}).get("stage"))
        elif ctx.state is RunState.BLOCKED:
            logger.info("⏸️ Run %s blocked: %s", ctx.run_id, ctx.note)
            logger.info("   resume with: orchestrate resume --run-id %s", ctx.run_id)
        elif ctx.state is RunState.PLANNED:
            logger.info("📋 Run %s planned; %s", ctx.run_id, ctx.note)
        logger.info("=" * 60)
