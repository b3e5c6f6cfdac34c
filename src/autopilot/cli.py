from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import click

from autopilot.backends import AgentFailure, ClaudeCodeBackend
from autopilot.bridge import handle_stop_hook
from autopilot.config import CONFIG_FILENAME, AutopilotConfig, load_config, save_config
from autopilot.layout import WorkspaceLayout
from autopilot.orchestrator import Orchestrator, RunSummary
from autopilot.state import RunState, RunStateError, RunStateStore, TaskBacklog
from autopilot.state.files import append_note

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(slots=True)
class Runtime:
    layout: WorkspaceLayout
    config_path: Path
    config: AutopilotConfig
    orchestrator: Orchestrator


def _resolve_config_path(repo_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = repo_root / config_path
    return config_path.resolve()


def _load_runtime(config_value: str) -> Runtime:
    layout = WorkspaceLayout.for_root(Path.cwd())
    config_path = _resolve_config_path(layout.repo_root, config_value)
    try:
        config = load_config(config_path)
    except (TypeError, ValueError) as exc:
        raise click.ClickException(f"Invalid config {config_path}: {exc}") from exc
    backend = ClaudeCodeBackend(binary=config.agent.binary, working_directory=layout.repo_root)
    return Runtime(
        layout=layout,
        config_path=config_path,
        config=config,
        orchestrator=Orchestrator(layout, config, backend),
    )


def _format_rate(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.0f}%"


def _echo_summary(summary: RunSummary) -> None:
    stats = summary.stats
    click.echo(f"Goal: {summary.goal}")
    click.echo(f"Phase: {summary.phase}")
    click.echo(f"Tasks: {stats.tasks_completed}/{stats.tasks_attempted} completed")
    click.echo(
        f"Reviews: {stats.approvals} approved, {stats.minor_issues} minor, "
        f"{stats.rejections} rejected"
    )
    click.echo(f"Fixes: {stats.fix_successes}/{stats.fix_attempts} successful")
    click.echo(f"First-pass accept rate: {_format_rate(summary.first_pass_accept_rate)}")
    click.echo(f"Fix success rate: {_format_rate(summary.fix_success_rate)}")
    click.echo(f"Agent invocations: {stats.agent_invocations}")
    for subject in summary.abandoned_tasks:
        click.echo(f"Abandoned: {subject}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Autopilot CLI."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


@cli.command("init")
@click.argument("goal")
@click.option("--test-cmd", "test_command", default=None, help="Command that runs the tests.")
@click.option("--constraints", default=None, help="Extra rules passed to every phase.")
@click.option("--skip-planner", is_flag=True, default=False)
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing run.")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def init_command(
    goal: str,
    test_command: str | None,
    constraints: str | None,
    skip_planner: bool,
    force: bool,
    config_value: str,
) -> None:
    layout = WorkspaceLayout.for_root(Path.cwd())
    config_path = _resolve_config_path(layout.repo_root, config_value)
    store = RunStateStore(layout)
    if store.exists() and not force:
        raise click.ClickException(
            f"A run already exists in {layout.state_dir}. Use --force to start over."
        )
    config = load_config(config_path)
    if test_command is not None:
        config.project.test_command = test_command
    if constraints is not None:
        config.project.constraints = constraints
    save_config(config_path, config)

    layout.ensure()
    state = RunState(
        goal=goal,
        test_command=config.project.test_command,
        constraints=config.project.constraints,
    )
    store.save(state)
    store.write_status(state, "Initialized")
    TaskBacklog(layout).initialize()
    append_note(layout.notes_file, f"Initialized with goal: {goal}")

    click.echo(f"Initialized autopilot in {layout.repo_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"State: {layout.state_dir}")

    if skip_planner:
        return
    runtime = _load_runtime(config_value)
    try:
        completed = asyncio.run(runtime.orchestrator.plan())
    except (RunStateError, AgentFailure) as exc:
        raise click.ClickException(str(exc)) from exc
    if completed:
        click.echo("Planning complete. Start the loop with `autopilot run`.")
    else:
        click.echo("Planner exited before finishing; rerun with `autopilot plan`.")


@cli.command("plan")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def plan_command(config_value: str) -> None:
    runtime = _load_runtime(config_value)
    try:
        completed = asyncio.run(runtime.orchestrator.plan())
    except (RunStateError, AgentFailure) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo("Planning complete." if completed else "Planner exited before finishing.")


@cli.command("run")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def run_command(config_value: str) -> None:
    runtime = _load_runtime(config_value)
    try:
        summary = asyncio.run(runtime.orchestrator.run())
    except (RunStateError, AgentFailure) as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_summary(summary)


@cli.command("resume")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def resume_command(config_value: str) -> None:
    runtime = _load_runtime(config_value)
    try:
        summary = asyncio.run(runtime.orchestrator.resume())
    except (RunStateError, AgentFailure) as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_summary(summary)


@cli.command("prune")
@click.option("--aggressive", is_flag=True, default=False, help="Also fold medium-priority tasks.")
@click.option("--dry-run", is_flag=True, default=False, help="Print the pruner prompt and exit.")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def prune_command(aggressive: bool, dry_run: bool, config_value: str) -> None:
    """Group, deduplicate and close stale backlog tasks."""
    runtime = _load_runtime(config_value)
    try:
        if dry_run:
            click.echo(runtime.orchestrator.pruner_prompt(aggressive=aggressive), nl=False)
            return
        asyncio.run(runtime.orchestrator.prune(aggressive=aggressive))
    except (RunStateError, AgentFailure) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo("Backlog pruned.")


@cli.command("status")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def status_command(config_value: str) -> None:
    runtime = _load_runtime(config_value)
    try:
        payload = runtime.orchestrator.status()
    except RunStateError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@cli.command("_stop-hook", hidden=True)
def stop_hook_command() -> None:
    # Hooks run with the agent's project directory exported.
    layout = WorkspaceLayout.for_root(Path(os.environ.get("CLAUDE_PROJECT_DIR") or Path.cwd()))
    stdin_text = click.get_text_stream("stdin").read()
    click.echo(handle_stop_hook(stdin_text, layout))
