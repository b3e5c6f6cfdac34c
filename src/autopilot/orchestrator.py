from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from autopilot.backends.base import AgentBackend, AgentFailure
from autopilot.commits import CommitEnforcer, CommitStatus
from autopilot.config import AutopilotConfig
from autopilot.controller import ReviewOutcome, RetryFixController, prompt_params
from autopilot.git import CommitFailure, GitRepository
from autopilot.hooks import install_stop_hook, remove_stop_hook, resolve_hook_command
from autopilot.layout import WorkspaceLayout
from autopilot.phases import build_prompts
from autopilot.runner import PhaseRunner
from autopilot.state.backlog import TaskBacklog
from autopilot.state.files import append_note
from autopilot.state.markers import ControlMarker
from autopilot.state.run_state import REVIEWED_STATUS, RunState, RunStateStore, Stats

logger = logging.getLogger(__name__)

NOTES_TAIL_LINES = 10
# Signal-only backlogs: consecutive tasks without backlog or commit progress before giving up.
MAX_STALLED_TASKS = 3


@dataclass(slots=True)
class RunSummary:
    goal: str
    phase: str
    iterations: int
    stats: Stats
    abandoned_tasks: list[str] = field(default_factory=list)

    @property
    def first_pass_accept_rate(self) -> float | None:
        return self.stats.first_pass_accept_rate()

    @property
    def fix_success_rate(self) -> float | None:
        return self.stats.fix_success_rate()


class Orchestrator:
    def __init__(
        self,
        layout: WorkspaceLayout,
        config: AutopilotConfig,
        backend: AgentBackend,
        *,
        repo: GitRepository | None = None,
    ) -> None:
        self.layout = layout
        self.config = config
        self.repo = repo or GitRepository(layout.repo_root)
        self.store = RunStateStore(layout)
        self.backlog = TaskBacklog(layout)
        self.prompts = build_prompts(layout.prompts_dir)
        settings = self.repo.relative_path(self.settings_path)
        self.hook_settings = (settings,) if settings else ()
        self.enforcer = CommitEnforcer(
            self.repo,
            notes_file=layout.notes_file,
            prefix=config.workflow.commit_prefix,
            excluded=self.hook_settings,
        )
        self.runner = PhaseRunner(
            layout,
            backend,
            self.store,
            self.repo,
            permission_mode=config.agent.permission_mode,
        )
        self.controller = RetryFixController(
            layout, self.runner, self.store, self.enforcer, self.prompts, config
        )

    @property
    def settings_path(self) -> Path:
        return self.layout.repo_root / self.config.hooks.settings_path

    @contextmanager
    def _stop_hook(self) -> Iterator[None]:
        self._exclude_hook_settings()
        install_stop_hook(self.settings_path, resolve_hook_command(self.config.hooks.command))
        try:
            yield
        finally:
            remove_stop_hook(self.settings_path)

    def _exclude_hook_settings(self) -> None:
        if not self.hook_settings or not self.repo.is_repository():
            return
        try:
            self.repo.exclude_locally(self.hook_settings[0])
        except (CommitFailure, OSError) as exc:
            logger.warning("Could not exclude %s from git: %s", self.hook_settings[0], exc)

    def _summary(self, state: RunState) -> RunSummary:
        return RunSummary(
            goal=state.goal,
            phase=state.phase,
            iterations=state.iteration,
            stats=state.stats,
            abandoned_tasks=list(state.abandoned_tasks),
        )

    def _record_failure(self, state: RunState, exc: Exception) -> None:
        state.last_error = str(exc)
        self.store.save(state)
        self.store.write_status(state, f"Stopped: {exc}")
        append_note(self.layout.notes_file, f"Run stopped during {state.phase}: {exc}")

    async def plan(self) -> bool:
        """Run the interactive planner; returns whether it confirmed completion."""
        state = self.store.load()
        self.layout.ensure()
        marker = ControlMarker(self.layout.planning_marker)
        marker.consume()
        self.store.write_status(state, "Planning")
        with self._stop_hook():
            await self.runner.run(
                state,
                "planner",
                self.prompts["planner"].render(prompt_params(state)),
                model=self.config.model_for("planner"),
            )
        completed = marker.consume()
        if not completed:
            logger.warning("Planner exited without confirming the plan was complete")
        return completed

    def pruner_prompt(self, *, aggressive: bool = False) -> str:
        state = self.store.load()
        return self._render_pruner(state, "aggressive" if aggressive else "normal")

    async def prune(self, *, aggressive: bool = False) -> None:
        """Run the backlog pruner once, outside the main loop."""
        state = self.store.load()
        self.layout.ensure()
        with self._stop_hook():
            await self._prune(state, "aggressive" if aggressive else "normal")

    async def run(self) -> RunSummary:
        state = self.store.load()
        self.layout.ensure()
        state.reset_for_run()
        self.store.transition(state, "coder", status="run")
        self.store.write_status(state, "Starting run")
        try:
            with self._stop_hook():
                await self._drive(state)
        except AgentFailure as exc:
            self._record_failure(state, exc)
            raise
        return self._summary(state)

    async def resume(self) -> RunSummary:
        state = self.store.load()
        if state.phase == "done":
            logger.info("Run already complete; nothing to resume")
            return self._summary(state)

        self.layout.ensure()
        if self.config.workflow.recover_dirty_on_resume:
            outcome = self.enforcer.checkpoint(f"checkpoint before resuming {state.phase}")
            if outcome.status is CommitStatus.FORCED:
                state.last_commit = outcome.head
                logger.info("Committed leftover changes as %s before resuming", outcome.head)

        logger.info("Resuming at %s (task %s)", state.phase, state.iteration)
        try:
            with self._stop_hook():
                if state.phase == "evaluator":
                    await self._drive(state, evaluate_first=True)
                else:
                    if state.task_in_flight():
                        if state.phase == "coder":
                            state.retry_count = 0
                            await self._implement(state)
                        await self._review(state)
                    await self._drive(state)
        except AgentFailure as exc:
            self._record_failure(state, exc)
            raise
        return self._summary(state)

    def _has_work(self, state: RunState) -> bool:
        return self.backlog.has_pending(state.settled_tasks())

    def _progress(self) -> tuple[tuple[str, ...], str]:
        head = self.repo.head() if self.repo.is_repository() else ""
        return self.backlog.fingerprint(), head

    def _stalled_since(self, before: tuple[tuple[str, ...], str]) -> bool:
        # Only the pending signal can stay "yes" forever without naming a task to skip.
        return self.backlog.tasks() is None and self._progress() == before

    async def _drive(self, state: RunState, *, evaluate_first: bool = False) -> None:
        stalled = 0
        while True:
            if not evaluate_first:
                while stalled < MAX_STALLED_TASKS and self._has_work(state):
                    before = self._progress()
                    await self._next_task(state)
                    stalled = stalled + 1 if self._stalled_since(before) else 0
            evaluate_first = False
            before = self._progress()
            await self._evaluate(state)
            if not self._has_work(state):
                break
            if stalled >= MAX_STALLED_TASKS:
                if self._progress() == before:
                    logger.warning(
                        "Backlog still reports pending work after %s tasks without progress; "
                        "stopping",
                        MAX_STALLED_TASKS,
                    )
                    append_note(
                        self.layout.notes_file,
                        f"Stopped after {MAX_STALLED_TASKS} tasks that changed neither the "
                        "backlog nor the commit history.",
                    )
                    break
                stalled = 0
            logger.info("Evaluator queued more work; continuing")

        state.current_task = ""
        self.store.transition(state, "done", status="completed")
        self.store.write_status(state, "Complete")
        logger.info("All tasks complete after %s iteration(s)", state.iteration)

    async def _next_task(self, state: RunState) -> None:
        task = self.backlog.next_task(state.settled_tasks())
        state.iteration += 1
        state.retry_count = 0
        state.current_task = task.subject if task else ""
        state.stats.tasks_attempted += 1
        self.store.transition(state, "coder")
        await self._implement(state)
        await self._review(state)

    async def _implement(self, state: RunState) -> None:
        self.store.write_status(state, "Working on next pending task")
        result = await self.runner.run(
            state,
            "coder",
            self.prompts["coder"].render(prompt_params(state)),
            model=self.config.model_for("coder"),
        )
        outcome = self.enforcer.enforce(result.head_before, "coder")
        if outcome.head:
            state.last_commit = outcome.head
        self.store.save(state)

    async def _review(self, state: RunState) -> ReviewOutcome:
        outcome = await self.controller.review(state)
        if state.current_task:
            settled = state.accepted_tasks if outcome.accepted else state.abandoned_tasks
            settled.append(state.current_task)
        state.current_task = ""
        state.retry_count = 0
        self.store.transition(state, "coder", status=REVIEWED_STATUS)
        interval = self.config.workflow.prune_interval
        if outcome.accepted and interval > 0 and state.stats.tasks_completed % interval == 0:
            await self._prune(state, "normal")
        return outcome

    def _render_pruner(self, state: RunState, mode: str) -> str:
        params = prompt_params(state)
        params.prune_mode = mode
        return self.prompts["pruner"].render(params)

    async def _prune(self, state: RunState, mode: str) -> None:
        self.store.write_status(state, f"Pruning the backlog ({mode})")
        result = await self.runner.run(
            state,
            "pruner",
            self._render_pruner(state, mode),
            model=self.config.model_for("pruner"),
        )
        outcome = self.enforcer.enforce(result.head_before, "pruner")
        if outcome.head:
            state.last_commit = outcome.head
        self.store.save(state)
        append_note(
            self.layout.notes_file,
            f"Backlog pruned ({mode}) after {state.stats.tasks_completed} completed task(s).",
        )

    async def _evaluate(self, state: RunState) -> None:
        marker = ControlMarker(self.layout.evaluation_marker)
        state.current_task = ""
        self.store.transition(state, "evaluator")
        self.store.write_status(state, "Running evaluator")
        marker.consume()
        result = await self.runner.run(
            state,
            "evaluator",
            self.prompts["evaluator"].render(prompt_params(state)),
            model=self.config.model_for("evaluator"),
        )
        if not marker.consume():
            logger.info("Evaluator exited without marking evaluation complete")
        # Also picks up follow-up tasks queued from minor review findings.
        outcome = self.enforcer.enforce(result.head_before, "evaluator")
        if outcome.head:
            state.last_commit = outcome.head
        self.store.save(state)

    def status(self) -> dict[str, Any]:
        state = self.store.load()
        stats = state.stats
        return {
            "goal": state.goal,
            "phase": state.phase,
            "iteration": state.iteration,
            "retry_count": state.retry_count,
            "current_task": state.current_task,
            "last_commit": state.last_commit,
            "last_error": state.last_error,
            "abandoned_tasks": list(state.abandoned_tasks),
            "accepted_tasks": list(state.accepted_tasks),
            "backlog": self.backlog.summary(),
            "markers": {
                "planning_complete": self.layout.planning_marker.exists(),
                "evaluation_complete": self.layout.evaluation_marker.exists(),
                "agent_running": self.layout.session_file.exists(),
            },
            "stats": {
                **state.to_dict()["stats"],
                "first_pass_accept_rate": stats.first_pass_accept_rate(),
                "fix_success_rate": stats.fix_success_rate(),
            },
            "notes": self._notes_tail(),
        }

    def _notes_tail(self) -> list[str]:
        try:
            content = self.layout.notes_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        lines = [line for line in content.splitlines() if line.startswith("- [")]
        return lines[-NOTES_TAIL_LINES:]
