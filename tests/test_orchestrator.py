import asyncio
import json
import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

from autopilot.backends.base import AgentBackend, AgentFailure, AgentResult, SpawnCallback
from autopilot.config import AutopilotConfig
from autopilot.layout import WorkspaceLayout
from autopilot.orchestrator import Orchestrator
from autopilot.state import NotInitialized, RunState, RunStateStore, TaskBacklog


class SimulatedAgent(AgentBackend):
    """Plays every phase: completes tasks, writes verdicts and markers."""

    def __init__(
        self,
        layout: WorkspaceLayout,
        *,
        verdicts: list[str] | None = None,
        default_verdict: str = "APPROVED",
        complete_tasks: bool = True,
        commit: bool = False,
        on_evaluate: Callable[[int], None] | None = None,
        fail_phase: str | None = None,
    ) -> None:
        self.layout = layout
        self.verdicts = list(verdicts or [])
        self.default_verdict = default_verdict
        self.complete_tasks = complete_tasks
        self.commit = commit
        self.on_evaluate = on_evaluate
        self.fail_phase = fail_phase
        self.phases: list[str] = []
        self.hook_registered: list[bool] = []
        self.evaluations = 0

    def _complete_current_task(self) -> None:
        current = RunStateStore(self.layout).load().current_task
        payload = json.loads(self.layout.tasks_file.read_text(encoding="utf-8"))
        for task in payload["tasks"]:
            if task["subject"] == current:
                task["status"] = "completed"
        self.layout.tasks_file.write_text(json.dumps(payload), encoding="utf-8")

    def _write_code(self) -> None:
        root = self.layout.repo_root
        (root / f"module_{len(self.phases)}.py").write_text("VALUE = 1\n", encoding="utf-8")
        if self.commit:
            subprocess.run(["git", "add", "-A"], cwd=root, check=True, capture_output=True)
            subprocess.run(
                ["git", "commit", "-m", "agent work"], cwd=root, check=True, capture_output=True
            )

    async def execute(
        self,
        prompt: str,
        *,
        phase: str,
        permission_mode: str,
        model: str | None = None,
        on_spawn: SpawnCallback | None = None,
    ) -> AgentResult:
        self.phases.append(phase)
        settings = self.layout.repo_root / ".claude" / "settings.local.json"
        self.hook_registered.append(settings.exists() and "_stop-hook" in settings.read_text())
        if on_spawn is not None:
            on_spawn(4000 + len(self.phases))
        if phase == self.fail_phase:
            return AgentResult(phase=phase, exit_code=1)
        if phase == "coder":
            if self.complete_tasks:
                self._complete_current_task()
            self._write_code()
        elif phase == "critic":
            verdict = self.verdicts.pop(0) if self.verdicts else self.default_verdict
            self.layout.verdict_file.write_text(verdict, encoding="utf-8")
        elif phase == "evaluator":
            self.evaluations += 1
            if self.on_evaluate is not None:
                self.on_evaluate(self.evaluations)
            self.layout.evaluation_marker.write_text("done\n", encoding="utf-8")
        return AgentResult(phase=phase, exit_code=0)


def _init_run(layout: WorkspaceLayout, subjects: list[str]) -> None:
    RunStateStore(layout).save(RunState(goal="todo app", test_command="pytest"))
    _write_tasks(layout, [{"subject": subject, "status": "pending"} for subject in subjects])


def _write_tasks(layout: WorkspaceLayout, tasks: list[dict]) -> None:
    layout.tasks_file.write_text(json.dumps({"tasks": tasks}), encoding="utf-8")


def _orchestrator(
    layout: WorkspaceLayout, agent: AgentBackend, config: AutopilotConfig | None = None
) -> Orchestrator:
    return Orchestrator(layout, config or AutopilotConfig.default(), agent)


def test_run_requires_initialization(layout: WorkspaceLayout) -> None:
    orchestrator = _orchestrator(layout, SimulatedAgent(layout))

    with pytest.raises(NotInitialized):
        asyncio.run(orchestrator.run())


def test_all_tasks_approved_then_done(layout: WorkspaceLayout) -> None:
    _init_run(layout, ["Model", "Storage", "CLI"])
    agent = SimulatedAgent(layout)

    summary = asyncio.run(_orchestrator(layout, agent).run())

    assert agent.phases == ["coder", "critic"] * 3 + ["evaluator"]
    assert all(agent.hook_registered)
    assert summary.phase == "done"
    assert summary.iterations == 3
    assert summary.stats.tasks_attempted == 3
    assert summary.stats.tasks_completed == 3
    assert summary.stats.approvals == 3
    assert summary.stats.agent_invocations == 7
    assert summary.first_pass_accept_rate == pytest.approx(100.0)
    saved = RunStateStore(layout).load()
    assert saved.phase == "done"
    assert saved.stats.agent_invocations == 7
    assert not layout.evaluation_marker.exists()
    assert not (layout.repo_root / ".claude" / "settings.local.json").exists()


def test_tasks_are_taken_in_priority_order(layout: WorkspaceLayout) -> None:
    RunStateStore(layout).save(RunState(goal="g", test_command="t"))
    _write_tasks(
        layout,
        [
            {"subject": "Polish", "status": "pending", "priority": "low"},
            {"subject": "Core", "status": "pending", "priority": "high"},
        ],
    )
    seen: list[str] = []

    class RecordingAgent(SimulatedAgent):
        def _complete_current_task(self) -> None:
            seen.append(RunStateStore(self.layout).load().current_task)
            super()._complete_current_task()

    asyncio.run(_orchestrator(layout, RecordingAgent(layout)).run())

    assert seen == ["Core", "Polish"]


def test_evaluator_adding_work_restarts_the_loop(layout: WorkspaceLayout) -> None:
    _init_run(layout, ["First"])

    def add_work(evaluation: int) -> None:
        if evaluation == 1:
            payload = json.loads(layout.tasks_file.read_text(encoding="utf-8"))
            payload["tasks"].append({"subject": "Second", "status": "pending"})
            layout.tasks_file.write_text(json.dumps(payload), encoding="utf-8")

    agent = SimulatedAgent(layout, on_evaluate=add_work)
    summary = asyncio.run(_orchestrator(layout, agent).run())

    assert agent.phases == ["coder", "critic", "evaluator", "coder", "critic", "evaluator"]
    assert summary.iterations == 2
    assert summary.phase == "done"


def test_abandoned_task_does_not_loop_forever(layout: WorkspaceLayout) -> None:
    _init_run(layout, ["Impossible", "Easy"])
    agent = SimulatedAgent(
        layout,
        verdicts=["NEEDS_FIXES\n- nope"] * 3,
        complete_tasks=True,
    )
    complete_any = agent._complete_current_task

    def complete_only_easy() -> None:
        if RunStateStore(layout).load().current_task == "Easy":
            complete_any()

    agent._complete_current_task = complete_only_easy  # type: ignore[method-assign]

    summary = asyncio.run(_orchestrator(layout, agent).run())

    assert summary.abandoned_tasks == ["Impossible"]
    assert summary.stats.tasks_attempted == 2
    assert summary.stats.tasks_completed == 1
    assert summary.stats.fix_attempts == 2
    assert agent.phases.count("evaluator") == 1
    assert TaskBacklog(layout).has_pending() is True


def test_approved_task_left_pending_is_not_picked_again(layout: WorkspaceLayout) -> None:
    _init_run(layout, ["Forgotten"])
    agent = SimulatedAgent(layout, complete_tasks=False)

    summary = asyncio.run(_orchestrator(layout, agent).run())

    assert agent.phases == ["coder", "critic", "evaluator"]
    assert summary.iterations == 1
    assert summary.phase == "done"
    assert RunStateStore(layout).load().accepted_tasks == ["Forgotten"]


def test_signal_only_backlog_stops_when_nothing_changes(layout: WorkspaceLayout) -> None:
    RunStateStore(layout).save(RunState(goal="g", test_command="t"))
    layout.pending_flag.write_text("yes\n", encoding="utf-8")
    agent = SimulatedAgent(layout, complete_tasks=False)

    summary = asyncio.run(_orchestrator(layout, agent).run())

    assert agent.phases == ["coder", "critic"] * 3 + ["evaluator"]
    assert summary.phase == "done"
    assert "Stopped after 3 tasks" in layout.notes_file.read_text(encoding="utf-8")


def test_signal_only_backlog_keeps_going_while_commits_land(git_repo: Path) -> None:
    layout = WorkspaceLayout.for_root(git_repo)
    layout.ensure()
    RunStateStore(layout).save(RunState(goal="g", test_command="t"))
    layout.pending_flag.write_text("yes\n", encoding="utf-8")

    class FinishingAgent(SimulatedAgent):
        def _write_code(self) -> None:
            super()._write_code()
            if self.phases.count("coder") == 5:
                self.layout.pending_flag.write_text("no\n", encoding="utf-8")

    agent = FinishingAgent(layout, complete_tasks=False)
    asyncio.run(_orchestrator(layout, agent).run())

    assert agent.phases == ["coder", "critic"] * 5 + ["evaluator"]


def test_agent_failure_is_recorded_and_hook_removed(layout: WorkspaceLayout) -> None:
    _init_run(layout, ["Only"])
    agent = SimulatedAgent(layout, fail_phase="critic")

    with pytest.raises(AgentFailure):
        asyncio.run(_orchestrator(layout, agent).run())

    saved = RunStateStore(layout).load()
    assert saved.phase == "critic"
    assert "critic agent exited with code 1" in saved.last_error
    assert not (layout.repo_root / ".claude" / "settings.local.json").exists()


def test_resume_at_critic_continues_from_saved_retry(layout: WorkspaceLayout) -> None:
    _init_run(layout, ["Only"])
    _write_tasks(layout, [{"subject": "Only", "status": "completed"}])
    store = RunStateStore(layout)
    state = store.load()
    state.iteration = 1
    state.current_task = "Only"
    state.retry_count = 1
    store.transition(state, "critic")
    agent = SimulatedAgent(layout)

    summary = asyncio.run(_orchestrator(layout, agent).resume())

    assert agent.phases == ["critic", "evaluator"]
    assert summary.phase == "done"
    assert summary.stats.approvals == 1


def test_resume_at_coder_reruns_the_current_task(layout: WorkspaceLayout) -> None:
    _init_run(layout, ["Only"])
    store = RunStateStore(layout)
    state = store.load()
    state.iteration = 1
    state.current_task = "Only"
    store.transition(state, "coder")
    agent = SimulatedAgent(layout)

    summary = asyncio.run(_orchestrator(layout, agent).resume())

    assert agent.phases == ["coder", "critic", "evaluator"]
    assert summary.iterations == 1


def test_resume_at_evaluator_reruns_evaluation(layout: WorkspaceLayout) -> None:
    _init_run(layout, [])
    store = RunStateStore(layout)
    store.transition(store.load(), "evaluator")
    layout.evaluation_marker.write_text("stale\n", encoding="utf-8")
    agent = SimulatedAgent(layout)

    asyncio.run(_orchestrator(layout, agent).resume())

    assert agent.phases == ["evaluator"]
    assert store.load().phase == "done"


def test_resume_when_done_does_nothing(layout: WorkspaceLayout) -> None:
    _init_run(layout, [])
    store = RunStateStore(layout)
    store.transition(store.load(), "done")
    agent = SimulatedAgent(layout)

    summary = asyncio.run(_orchestrator(layout, agent).resume())

    assert agent.phases == []
    assert summary.phase == "done"


def test_coder_changes_are_committed_in_git(git_repo: Path) -> None:
    layout = WorkspaceLayout.for_root(git_repo)
    layout.ensure()
    _init_run(layout, ["Feature"])
    agent = SimulatedAgent(layout)

    asyncio.run(_orchestrator(layout, agent).run())

    log = subprocess.run(
        ["git", "log", "--format=%s"], cwd=git_repo, check=True, text=True, capture_output=True
    ).stdout.splitlines()
    assert log[0] == "autopilot: coder changes (auto-committed)"
    assert RunStateStore(layout).load().last_commit != ""


def test_resume_checkpoints_dirty_tree(git_repo: Path) -> None:
    layout = WorkspaceLayout.for_root(git_repo)
    layout.ensure()
    _init_run(layout, [])
    store = RunStateStore(layout)
    store.transition(store.load(), "evaluator")
    (git_repo / "leftover.py").write_text("x = 1\n", encoding="utf-8")

    asyncio.run(_orchestrator(layout, SimulatedAgent(layout)).resume())

    subject = subprocess.run(
        ["git", "log", "-1", "--format=%s"],
        cwd=git_repo,
        check=True,
        text=True,
        capture_output=True,
    ).stdout.strip()
    assert subject == "autopilot: checkpoint before resuming evaluator"


def test_plan_consumes_planning_marker(layout: WorkspaceLayout) -> None:
    _init_run(layout, [])

    class Planner(SimulatedAgent):
        async def execute(self, prompt: str, **kwargs) -> AgentResult:
            self.layout.planning_marker.write_text("done\n", encoding="utf-8")
            return AgentResult(phase=kwargs["phase"], exit_code=0)

    completed = asyncio.run(_orchestrator(layout, Planner(layout)).plan())

    assert completed is True
    assert not layout.planning_marker.exists()


def test_status_reports_progress(layout: WorkspaceLayout) -> None:
    _init_run(layout, ["A", "B"])
    _write_tasks(
        layout,
        [{"subject": "A", "status": "completed"}, {"subject": "B", "status": "pending"}],
    )

    status = _orchestrator(layout, SimulatedAgent(layout)).status()

    assert status["goal"] == "todo app"
    assert status["phase"] == "coder"
    assert status["backlog"]["remaining"] == ["B"]
    assert status["markers"]["agent_running"] is False
    assert status["stats"]["first_pass_accept_rate"] is None


def test_backlog_is_pruned_every_interval(layout: WorkspaceLayout) -> None:
    _init_run(layout, ["A", "B", "C"])
    config = AutopilotConfig.default()
    config.workflow.prune_interval = 2
    agent = SimulatedAgent(layout)

    asyncio.run(_orchestrator(layout, agent, config).run())

    assert agent.phases == [
        "coder",
        "critic",
        "coder",
        "critic",
        "pruner",
        "coder",
        "critic",
        "evaluator",
    ]
    assert "Backlog pruned (normal) after 2" in layout.notes_file.read_text(encoding="utf-8")


def test_prune_runs_the_pruner_alone(layout: WorkspaceLayout) -> None:
    _init_run(layout, ["A"])
    agent = SimulatedAgent(layout)

    asyncio.run(_orchestrator(layout, agent).prune(aggressive=True))

    assert agent.phases == ["pruner"]
    assert agent.hook_registered == [True]
    prompt = layout.current_prompt.read_text(encoding="utf-8")
    assert "Pruning mode: aggressive." in prompt
    assert RunStateStore(layout).load().phase == "coder"


def test_resume_after_finished_review_does_not_review_again(layout: WorkspaceLayout) -> None:
    _init_run(layout, ["Only"])
    config = AutopilotConfig.default()
    config.workflow.prune_interval = 1

    with pytest.raises(AgentFailure):
        asyncio.run(
            _orchestrator(layout, SimulatedAgent(layout, fail_phase="pruner"), config).run()
        )
    interrupted = RunStateStore(layout).load()
    assert interrupted.phase == "coder"
    assert interrupted.task_in_flight() is False

    agent = SimulatedAgent(layout)
    summary = asyncio.run(_orchestrator(layout, agent).resume())

    assert agent.phases == ["evaluator"]
    assert summary.stats.approvals == 1
    assert summary.stats.tasks_completed == 1


def test_run_leaves_worktree_clean_and_hook_settings_uncommitted(git_repo: Path) -> None:
    layout = WorkspaceLayout.for_root(git_repo)
    layout.ensure()
    _init_run(layout, ["A", "B"])
    agent = SimulatedAgent(layout, verdicts=["MINOR_ISSUES\n- Add docstrings"])

    asyncio.run(_orchestrator(layout, agent).run())

    status = subprocess.run(
        ["git", "status", "--porcelain", "--untracked-files=all"],
        cwd=git_repo,
        check=True,
        text=True,
        capture_output=True,
    ).stdout
    assert status == ""
    committed = subprocess.run(
        ["git", "log", "--name-only", "--format="],
        cwd=git_repo,
        check=True,
        text=True,
        capture_output=True,
    ).stdout.splitlines()
    assert ".claude/settings.local.json" not in committed
    assert ".autopilot/NOTES.md" not in committed
    assert agent.phases.count("coder") == 3
    assert all(agent.hook_registered)
