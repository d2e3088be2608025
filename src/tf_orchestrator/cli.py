"""Command-line interface for the deployment orchestrator."""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .approval import ApprovalGate, ApprovalOracle, GitHubApprovalOracle, LedgerApprovalOracle
from .artifacts import ArtifactStore
from .config import AppConfig, load_config
from .engine import TerraformEngine
from .errors import OrchestratorError
from .github import GitHubClient
from .gitops import GitCommandError, GitRepository, GitRevision
from .interaction import CLIInteractionHandler, ConfirmationRequest, UserInteractionHandler
from .models import Action, Environment, ManualDispatchEvent, RunContext, RunState
from .orchestrator import DeploymentOrchestrator
from .planning import validate_configuration
from .runs import RunStore
from .trigger import load_github_event
from .utils.logging import get_logger

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_BLOCKED = 2

_STATUS_EMOJI = {
    "done": "✅",
    "failed": "❌",
    "blocked": "⏸️",
    "planned": "📋",
}


@dataclass
class CLIContext:
    """Everything a command handler needs, built once from CLI arguments."""

    config: AppConfig
    interaction: UserInteractionHandler
    console: Console
    artifact_store: ArtifactStore
    run_store: RunStore
    oracle: ApprovalOracle
    orchestrator: DeploymentOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orchestrate",
        description="Plan, gate and deploy Terraform environments (dev, staging, prod).",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    env_choices = [e.value for e in Environment]
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser("plan", help="Plan an environment without deploying")
    plan_parser.add_argument("--env", required=True, choices=env_choices)

    apply_parser = subparsers.add_parser("apply", help="Apply a stored plan artifact")
    apply_parser.add_argument("--env", required=True, choices=env_choices)
    apply_parser.add_argument(
        "--artifact", required=True, help="Run id (or tfplan-<env>-<run-id>) printed by `plan`"
    )

    destroy_parser = subparsers.add_parser("destroy", help="Destroy every resource in an environment")
    destroy_parser.add_argument("--env", required=True, choices=env_choices)
    destroy_parser.add_argument(
        "--confirm", action="store_true", help="Skip the interactive confirmation"
    )

    run_parser = subparsers.add_parser("run", help="Run the pipeline for a CI event")
    run_parser.add_argument(
        "--event-name", default=None, help="GitHub event name (default: $GITHUB_EVENT_NAME)"
    )
    run_parser.add_argument(
        "--event-path", default=None, help="Event payload JSON (default: $GITHUB_EVENT_PATH)"
    )

    resume_parser = subparsers.add_parser("resume", help="Re-evaluate the gate of a blocked run")
    resume_parser.add_argument("--run-id", required=True)

    approve_parser = subparsers.add_parser("approve", help="Record a reviewer approval for a run")
    approve_parser.add_argument("--run-id", required=True)
    approve_parser.add_argument("--reviewer", required=True)
    approve_parser.add_argument(
        "--no-resume", action="store_true", help="Only record the approval, do not resume the run"
    )

    validate_parser = subparsers.add_parser("validate", help="Format-check and validate configurations")
    group = validate_parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--env", choices=env_choices)
    group.add_argument("--all", action="store_true", help="Validate every environment")

    runs_parser = subparsers.add_parser("runs", help="Inspect recorded runs")
    runs_parser.add_argument("--list", "-l", action="store_true", dest="list_runs")
    runs_parser.add_argument("--show", metavar="RUN_ID", help="Show one run")
    runs_parser.add_argument("--output", action="store_true", help="Include the plan output")

    artifacts_parser = subparsers.add_parser("artifacts", help="List or purge stored plan artifacts")
    artifacts_parser.add_argument("--purge", action="store_true", help="Delete expired artifacts")

    return parser


def build_oracle(config: AppConfig, github: Optional[GitHubClient]) -> ApprovalOracle:
    choice = config.approval.oracle.lower()
    if choice == "ledger":
        return LedgerApprovalOracle(Path(config.storage.approvals_file))
    if choice == "github":
        if github is None or not config.github.run_id:
            raise OrchestratorError(
                "GitHub approvals need a token, a repository and GITHUB_RUN_ID",
                stage="config",
            )
        return GitHubApprovalOracle(github, config.github.run_id)
    raise OrchestratorError(f"Unknown approval oracle {config.approval.oracle!r}", stage="config")


def _build_context(
    args: argparse.Namespace,
    interaction: Optional[UserInteractionHandler] = None,
    console: Optional[Console] = None,
) -> CLIContext:
    config = load_config(args.config)
    console = console or Console()
    interaction = interaction or CLIInteractionHandler(console)

    artifact_store = ArtifactStore(
        Path(config.storage.artifacts_root), retention_hours=config.storage.retention_hours
    )
    run_store = RunStore(Path(config.storage.runs_root))
    github = GitHubClient(config.github) if config.github.enabled else None
    oracle = build_oracle(config, github)
    orchestrator = DeploymentOrchestrator(
        config=config,
        engine=TerraformEngine(config.engine),
        artifact_store=artifact_store,
        run_store=run_store,
        gate=ApprovalGate(oracle),
        github=github,
    )
    return CLIContext(
        config=config,
        interaction=interaction,
        console=console,
        artifact_store=artifact_store,
        run_store=run_store,
        oracle=oracle,
        orchestrator=orchestrator,
    )


def exit_code_for(ctx: RunContext) -> int:
    if ctx.state in (RunState.DONE, RunState.PLANNED):
        return EXIT_OK
    if ctx.state is RunState.BLOCKED:
        return EXIT_BLOCKED
    return EXIT_FATAL


def _local_revision() -> Optional[GitRevision]:
    try:
        return GitRepository().revision()
    except GitCommandError as exc:
        logger.warning("Could not read git revision: %s", exc)
        return None


def _manual_event(environment: Environment, action: Action) -> ManualDispatchEvent:
    revision = _local_revision()
    return ManualDispatchEvent(
        environment=environment,
        action=action,
        ref=os.getenv("GITHUB_REF_NAME") or (revision.branch if revision else None),
        commit=os.getenv("GITHUB_SHA") or (revision.commit_sha if revision else None),
    )


def _run_id_from_artifact(value: str, environment: Environment) -> str:
    prefix = f"tfplan-{environment.value}-"
    return value[len(prefix):] if value.startswith(prefix) else value


def report_run(context: CLIContext, ctx: RunContext) -> int:
    """Print the outcome of a run and return the process exit code."""
    notify = context.interaction.notify
    env = ctx.environment.value if ctx.environment else "-"
    if ctx.state is RunState.DONE:
        notify(f"✅ Run {ctx.run_id} ({env}) done{f': {ctx.note}' if ctx.note else ''}", "success")
        if ctx.deploy_result and ctx.deploy_result.outputs:
            notify("📤 Outputs:")
            for name, value in ctx.deploy_result.outputs.items():
                notify(f"   {name} = {json.dumps(value)}")
    elif ctx.state is RunState.PLANNED:
        notify(f"📋 Changes pending for {env}. Run id: {ctx.run_id}", "info")
        notify(f"   {ctx.note}")
    elif ctx.state is RunState.BLOCKED:
        notify(f"⏸️  Run {ctx.run_id} ({env}) blocked: {ctx.note}", "warning")
        notify(f"   Resume with: orchestrate resume --run-id {ctx.run_id}")
    else:
        error = ctx.error or {}
        notify(
            f"❌ Run {ctx.run_id} failed in {error.get('stage', ctx.state.value)} "
            f"({error.get('environment') or env}): {error.get('message', 'unknown error')}",
            "error",
        )
        if error.get("detail"):
            notify(error["detail"], "error")
    return exit_code_for(ctx)


# ----------------------------------------------------------------------
# command handlers
# ----------------------------------------------------------------------


def handle_plan(args: argparse.Namespace, context: CLIContext) -> int:
    event = _manual_event(Environment.parse(args.env), Action.PLAN)
    return report_run(context, context.orchestrator.start(event, plan_only=True))


def handle_apply(args: argparse.Namespace, context: CLIContext) -> int:
    environment = Environment.parse(args.env)
    run_id = _run_id_from_artifact(args.artifact, environment)
    return report_run(context, context.orchestrator.apply_planned(run_id, environment))


def handle_destroy(args: argparse.Namespace, context: CLIContext) -> int:
    environment = Environment.parse(args.env)
    if not args.confirm:
        confirmed = context.interaction.confirm(
            ConfirmationRequest(
                question=f"Destroy ALL managed infrastructure in {environment.value}?",
                context="This cannot be undone. Pass --confirm to skip this prompt.",
            )
        )
        if not confirmed:
            context.interaction.notify("Destroy not confirmed, nothing was changed", "error")
            return EXIT_FATAL
    event = _manual_event(environment, Action.DESTROY)
    return report_run(context, context.orchestrator.start(event))


def handle_run(args: argparse.Namespace, context: CLIContext) -> int:
    event_name = args.event_name or os.getenv("GITHUB_EVENT_NAME")
    event_path = args.event_path or os.getenv("GITHUB_EVENT_PATH")
    if not event_name or not event_path:
        context.interaction.notify(
            "An event name and payload path are required (--event-name/--event-path)", "error"
        )
        return EXIT_FATAL
    event = load_github_event(event_name, Path(event_path))
    ctx = context.orchestrator.start(event, commit=os.getenv("GITHUB_SHA"))
    return report_run(context, ctx)


def handle_resume(args: argparse.Namespace, context: CLIContext) -> int:
    return report_run(context, context.orchestrator.resume(args.run_id))


def handle_approve(args: argparse.Namespace, context: CLIContext) -> int:
    if not isinstance(context.oracle, LedgerApprovalOracle):
        context.interaction.notify(
            "Approvals are managed by GitHub for this configuration; approve the deployment there",
            "error",
        )
        return EXIT_FATAL
    ctx = context.run_store.load(args.run_id)
    if ctx.environment is None:
        context.interaction.notify(f"Run {args.run_id} never resolved an environment", "error")
        return EXIT_FATAL
    try:
        context.oracle.record(args.run_id, ctx.environment, args.reviewer)
    except ValueError as exc:
        context.interaction.notify(str(exc), "error")
        return EXIT_FATAL
    context.interaction.notify(
        f"✅ Approval by {args.reviewer} recorded for run {args.run_id} ({ctx.environment.value})",
        "success",
    )
    if args.no_resume or ctx.state is not RunState.BLOCKED:
        return EXIT_OK
    return report_run(context, context.orchestrator.resume(args.run_id))


def handle_validate(args: argparse.Namespace, context: CLIContext) -> int:
    environments: List[Environment] = list(Environment) if args.all else [Environment.parse(args.env)]
    engine = context.orchestrator.engine
    for index, environment in enumerate(environments):
        context.interaction.notify(f"🔍 Validating {environment.value} environment...")
        validate_configuration(engine, environment, check_format=index == 0)
    context.interaction.notify("✅ All validation checks passed!", "success")
    return EXIT_OK


def handle_runs(args: argparse.Namespace, context: CLIContext) -> int:
    if args.show:
        show_run(context, context.run_store.load(args.show), include_output=args.output)
        return EXIT_OK

    runs = context.run_store.list()
    if not runs:
        context.interaction.notify("📁 No runs recorded yet.")
        return EXIT_OK

    if not args.list_runs:
        show_run(context, runs[0], include_output=args.output)
        return EXIT_OK

    table = Table(title=f"Runs in {context.run_store.root}")
    for column in ("#", "Run", "Status", "Env", "Action", "Event", "Updated"):
        table.add_column(column)
    for i, run in enumerate(runs, 1):
        status = run.state.value
        table.add_row(
            str(i),
            run.run_id,
            f"{_STATUS_EMOJI.get(status, '🔄')} {status}",
            run.environment.value if run.environment else "-",
            run.action.value if run.action else "-",
            type(run.event).__name__.replace("Event", ""),
            run.updated_at.isoformat()[:19].replace("T", " "),
        )
    context.console.print(table)
    return EXIT_OK


def show_run(context: CLIContext, run: RunContext, include_output: bool = False) -> None:
    """Display one run record."""
    console = context.console

    def echo(text: str) -> None:
        console.print(text, markup=False, highlight=False)

    status = run.state.value
    echo(f"\n{'=' * 60}")
    echo(f"{_STATUS_EMOJI.get(status, '🔄')} Run {run.run_id}: {status}")
    echo("=" * 60)
    echo(f"Environment:    {run.environment.value if run.environment else '-'}")
    echo(f"Action:         {run.action.value if run.action else '-'}")
    echo(f"Should deploy:  {run.should_deploy}")
    echo(f"Branch:         {run.branch or '-'}")
    echo(f"Commit:         {run.commit or '-'}")
    echo(f"Classification: {run.classification.value if run.classification else '-'}")
    echo(f"Decision:       {run.decision or '-'}")
    if run.plan_artifact:
        consumed = " (consumed)" if run.plan_artifact.consumed else ""
        echo(f"Artifact:       {run.plan_artifact.artifact_id}{consumed}")
    if run.note:
        echo(f"Note:           {run.note}")
    if run.error:
        echo(f"Error:          [{run.error.get('stage')}] {run.error.get('message')}")
        if run.error.get("detail"):
            echo(run.error["detail"])
    echo("\nHistory:")
    for state, timestamp in run.history:
        echo(f"  {timestamp[:19].replace('T', ' ')}  {state}")
    if include_output and run.plan_output:
        echo("\nPlan output:")
        echo(run.plan_output)


def handle_artifacts(args: argparse.Namespace, context: CLIContext) -> int:
    store = context.artifact_store
    if args.purge:
        removed = store.purge_expired()
        context.interaction.notify(f"🧹 Removed {len(removed)} expired artifact(s)", "success")
        return EXIT_OK

    artifacts = store.list()
    if not artifacts:
        context.interaction.notify("📁 No plan artifacts stored.")
        return EXIT_OK
    table = Table(title=f"Plan artifacts in {store.root}")
    for column in ("Artifact", "Env", "Commit", "Created", "Status"):
        table.add_column(column)
    for artifact in artifacts:
        if artifact.consumed:
            status = "consumed"
        elif store.is_expired(artifact):
            status = "expired"
        else:
            status = "available"
        table.add_row(
            artifact.artifact_id,
            artifact.environment.value,
            (artifact.commit or "-")[:12],
            artifact.created_at.isoformat()[:19].replace("T", " "),
            status,
        )
    context.console.print(table)
    return EXIT_OK


_HANDLERS = {
    "plan": handle_plan,
    "apply": handle_apply,
    "destroy": handle_destroy,
    "run": handle_run,
    "resume": handle_resume,
    "approve": handle_approve,
    "validate": handle_validate,
    "runs": handle_runs,
    "artifacts": handle_artifacts,
}


def run_cli(
    argv: Optional[List[str]] = None,
    *,
    interaction: Optional[UserInteractionHandler] = None,
    console: Optional[Console] = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    get_logger(verbose=args.verbose)

    console = console or Console()
    interaction = interaction or CLIInteractionHandler(console)

    try:
        context = _build_context(args, interaction=interaction, console=console)
        return _HANDLERS[args.command](args, context)
    except (FileNotFoundError, OrchestratorError) as exc:
        interaction.notify(f"❌ {exc}", "error")
        return EXIT_FATAL
