import json
from pathlib import Path

import pytest

from autopilot.layout import WorkspaceLayout
from autopilot.state import (
    MAX_FIX_RETRIES,
    NotInitialized,
    RunState,
    RunStateError,
    RunStateStore,
    Stats,
)
from autopilot.state.files import atomic_write_text, read_json


def test_load_without_record_raises_not_initialized(layout: WorkspaceLayout) -> None:
    store = RunStateStore(layout)

    assert store.exists() is False
    with pytest.raises(NotInitialized, match="autopilot init"):
        store.load()


def test_run_state_roundtrip(layout: WorkspaceLayout) -> None:
    store = RunStateStore(layout)
    state = RunState(goal="build a parser", test_command="pytest", constraints="no deps")
    state.iteration = 4
    state.retry_count = 2
    state.current_task = "Handle escapes"
    state.stats.approvals = 3
    state.abandoned_tasks.append("Support unicode")
    state.accepted_tasks.append("Parse numbers")

    store.transition(state, "critic")
    loaded = store.load()

    assert loaded.phase == "critic"
    assert loaded.iteration == 4
    assert loaded.retry_count == 2
    assert loaded.current_task == "Handle escapes"
    assert loaded.stats.approvals == 3
    assert loaded.abandoned_tasks == ["Support unicode"]
    assert loaded.accepted_tasks == ["Parse numbers"]
    assert loaded.settled_tasks() == ["Support unicode", "Parse numbers"]
    assert loaded.phase_history[-1]["phase"] == "critic"


def test_corrupt_record_raises_run_state_error(layout: WorkspaceLayout) -> None:
    layout.state_file.write_text("{not json", encoding="utf-8")

    with pytest.raises(RunStateError, match="Failed to parse"):
        RunStateStore(layout).load()


def test_unknown_phase_is_rejected(layout: WorkspaceLayout) -> None:
    layout.state_file.write_text(
        json.dumps({"goal": "g", "test_command": "t", "phase": "deploying"}), encoding="utf-8"
    )

    with pytest.raises(RunStateError, match="deploying"):
        RunStateStore(layout).load()


def test_retry_count_is_clamped_into_range(layout: WorkspaceLayout) -> None:
    layout.state_file.write_text(
        json.dumps({"goal": "g", "test_command": "t", "phase": "critic", "retry_count": 9}),
        encoding="utf-8",
    )

    assert RunStateStore(layout).load().retry_count == MAX_FIX_RETRIES - 1


def test_phase_history_is_bounded(layout: WorkspaceLayout) -> None:
    store = RunStateStore(layout)
    state = RunState(goal="g", test_command="t")

    for _ in range(60):
        store.transition(state, "coder")
        store.transition(state, "critic")

    assert len(store.load().phase_history) == 50


def test_reset_for_run_clears_progress_but_keeps_goal() -> None:
    state = RunState(goal="g", test_command="t", phase="evaluator", iteration=7)
    state.stats.tasks_completed = 5
    state.abandoned_tasks.append("x")
    state.accepted_tasks.append("y")

    state.reset_for_run()

    assert state.phase == "coder"
    assert state.iteration == 0
    assert state.stats == Stats()
    assert state.abandoned_tasks == []
    assert state.accepted_tasks == []
    assert state.goal == "g"


def test_task_in_flight_until_review_is_recorded(layout: WorkspaceLayout) -> None:
    store = RunStateStore(layout)
    state = RunState(goal="g", test_command="t")
    assert state.task_in_flight() is False

    state.iteration = 1
    store.transition(state, "coder")
    assert state.task_in_flight() is True
    store.transition(state, "critic")
    assert state.task_in_flight() is True

    store.transition(state, "coder", status="reviewed")
    assert state.task_in_flight() is False
    store.transition(state, "evaluator")
    assert state.task_in_flight() is False


def test_stats_rates() -> None:
    stats = Stats(approvals=2, minor_issues=1, rejections=1, fix_attempts=2, fix_successes=1)

    assert stats.first_pass_accept_rate() == pytest.approx(75.0)
    assert stats.fix_success_rate() == pytest.approx(50.0)
    assert Stats().first_pass_accept_rate() is None
    assert Stats().fix_success_rate() is None


def test_stats_from_dict_ignores_unknown_and_invalid_values() -> None:
    stats = Stats.from_dict({"approvals": "3", "rejections": "many", "bogus": 1})

    assert stats.approvals == 3
    assert stats.rejections == 0


def test_write_status_renders_progress(layout: WorkspaceLayout) -> None:
    store = RunStateStore(layout)
    state = RunState(goal="ship it", test_command="make test", phase="critic", iteration=2)
    state.retry_count = 1
    state.current_task = "Add CLI"

    store.write_status(state, "Reviewing")
    content = layout.status_file.read_text(encoding="utf-8")

    assert "**Current Step:** critic (attempt 2/3)" in content
    assert "**Current Task:** Add CLI" in content
    assert "Reviewing" in content


def test_atomic_write_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "state.json"

    atomic_write_text(target, '{"a": 1}\n')
    atomic_write_text(target, '{"a": 2}\n')

    assert read_json(target) == {"a": 2}
    assert [path.name for path in target.parent.iterdir()] == ["state.json"]


def test_read_json_tolerates_missing_and_invalid_files(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")

    assert read_json(tmp_path / "missing.json") is None
    assert read_json(broken) is None


def test_ensure_adds_missing_volatile_entries(tmp_path: Path) -> None:
    workspace = WorkspaceLayout.for_root(tmp_path)
    workspace.state_dir.mkdir()
    gitignore = workspace.state_dir / ".gitignore"
    gitignore.write_text("state.json\nscratch/\n", encoding="utf-8")

    workspace.ensure()
    workspace.ensure()

    lines = gitignore.read_text(encoding="utf-8").splitlines()
    assert lines[:2] == ["state.json", "scratch/"]
    assert lines.count("state.json") == 1
    assert "NOTES.md" in lines
    assert "tasks.json" not in lines
