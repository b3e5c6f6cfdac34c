from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Literal

from autopilot.layout import WorkspaceLayout
from autopilot.state.files import atomic_write_json, atomic_write_text, utcnow_iso

Phase = Literal["coder", "critic", "evaluator", "done"]
PHASES: tuple[str, ...] = ("coder", "critic", "evaluator", "done")

MAX_FIX_RETRIES = 3
PHASE_HISTORY_LIMIT = 50
# History status recorded once a task's review cycle is over.
REVIEWED_STATUS = "reviewed"


class RunStateError(RuntimeError):
    """Raised when the durable run record cannot be read or written."""


class NotInitialized(RunStateError):
    """Raised when no run record exists for the working directory."""

    def __init__(
        self, message: str = "autopilot not initialized. Run `autopilot init` first."
    ) -> None:
        super().__init__(message)


@dataclass(slots=True)
class Stats:
    agent_invocations: int = 0
    tasks_attempted: int = 0
    tasks_completed: int = 0
    approvals: int = 0
    rejections: int = 0
    minor_issues: int = 0
    fix_attempts: int = 0
    fix_successes: int = 0

    @classmethod
    def from_dict(cls, payload: Any) -> Stats:
        if not isinstance(payload, dict):
            return cls()
        known = {item.name for item in fields(cls)}
        values: dict[str, int] = {}
        for key, value in payload.items():
            if key not in known:
                continue
            try:
                values[key] = max(0, int(value))
            except (TypeError, ValueError):
                continue
        return cls(**values)

    def first_pass_accept_rate(self) -> float | None:
        reviews = self.approvals + self.minor_issues + self.rejections
        if reviews == 0:
            return None
        return (self.approvals + self.minor_issues) / reviews * 100.0

    def fix_success_rate(self) -> float | None:
        if self.fix_attempts == 0:
            return None
        return self.fix_successes / self.fix_attempts * 100.0


def _subjects(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


@dataclass(slots=True)
class RunState:
    goal: str
    test_command: str
    phase: Phase = "coder"
    iteration: int = 0
    retry_count: int = 0
    constraints: str = ""
    current_task: str = ""
    last_commit: str = ""
    last_error: str = ""
    stats: Stats = field(default_factory=Stats)
    abandoned_tasks: list[str] = field(default_factory=list)
    accepted_tasks: list[str] = field(default_factory=list)
    phase_history: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> RunState:
        phase = str(payload.get("phase", "coder"))
        if phase not in PHASES:
            raise RunStateError(f"Unknown phase in run state: {phase!r}")
        retry_count = int(payload.get("retry_count", 0))
        history = payload.get("phase_history", [])
        return cls(
            goal=str(payload.get("goal", "")),
            test_command=str(payload.get("test_command", "")),
            phase=phase,  # type: ignore[arg-type]
            iteration=max(0, int(payload.get("iteration", 0))),
            retry_count=min(max(0, retry_count), MAX_FIX_RETRIES - 1),
            constraints=str(payload.get("constraints", "")),
            current_task=str(payload.get("current_task", "")),
            last_commit=str(payload.get("last_commit", "")),
            last_error=str(payload.get("last_error", "")),
            stats=Stats.from_dict(payload.get("stats")),
            abandoned_tasks=_subjects(payload.get("abandoned_tasks")),
            accepted_tasks=_subjects(payload.get("accepted_tasks")),
            phase_history=[item for item in history if isinstance(item, dict)]
            if isinstance(history, list)
            else [],
        )

    def reset_for_run(self) -> None:
        self.phase = "coder"
        self.iteration = 0
        self.retry_count = 0
        self.current_task = ""
        self.last_error = ""
        self.stats = Stats()
        self.abandoned_tasks = []
        self.accepted_tasks = []

    def settled_tasks(self) -> list[str]:
        """Subjects already reviewed this run; backlog queries skip them."""
        return [*self.abandoned_tasks, *self.accepted_tasks]

    def task_in_flight(self) -> bool:
        """Whether the last task picked still has coder or review work outstanding."""
        if self.iteration == 0 or self.phase not in {"coder", "critic"}:
            return False
        last = self.phase_history[-1] if self.phase_history else {}
        return last.get("status") != REVIEWED_STATUS


class RunStateStore:
    """Durable run record, one per working directory.

    Every mutation is followed by :meth:`save`; a transition is only complete once
    the save has returned, which is what lets ``resume`` re-enter at exactly the
    last recorded phase.
    """

    def __init__(self, layout: WorkspaceLayout) -> None:
        self.layout = layout

    def exists(self) -> bool:
        return self.layout.state_file.is_file()

    def load(self) -> RunState:
        path = self.layout.state_file
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotInitialized() from exc
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RunStateError(f"Failed to parse run state at {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise RunStateError(f"Run state at {path} is not an object.")
        try:
            return RunState.from_dict(payload)
        except (TypeError, ValueError) as exc:
            raise RunStateError(f"Run state at {path} is malformed: {exc}") from exc

    def save(self, state: RunState) -> None:
        try:
            atomic_write_json(self.layout.state_file, state.to_dict())
        except OSError as exc:
            raise RunStateError(f"Failed to write run state: {exc}") from exc

    def transition(self, state: RunState, phase: Phase, *, status: str = "started") -> None:
        state.phase = phase
        state.phase_history.append({"phase": phase, "status": status, "at": utcnow_iso()})
        state.phase_history = state.phase_history[-PHASE_HISTORY_LIMIT:]
        self.save(state)

    def write_status(self, state: RunState, message: str) -> None:
        retry_info = ""
        if state.phase == "critic" and state.retry_count > 0:
            retry_info = f" (attempt {state.retry_count + 1}/{MAX_FIX_RETRIES})"
        task_line = f"**Current Task:** {state.current_task}\n" if state.current_task else ""
        content = (
            "# Status\n\n"
            f"**Current Step:** {state.phase}{retry_info}\n"
            f"**Task #:** {state.iteration}\n"
            f"{task_line}"
            f"**Goal:** {state.goal}\n"
            f"**Test Command:** {state.test_command}\n\n"
            "## Latest Update\n"
            f"{message}\n"
        )
        atomic_write_text(self.layout.status_file, content)
