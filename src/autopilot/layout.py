from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

STATE_DIRNAME = ".autopilot"

# Written by the orchestrator itself; kept out of commits.
VOLATILE_FILES = (
    "state.json",
    "STATUS.md",
    "current_prompt.md",
    "agent_session.json",
    "handoff",
    "critic_verdict.md",
    "planning_complete",
    "evaluation_complete",
    "NOTES.md",
)


@dataclass(frozen=True, slots=True)
class WorkspaceLayout:
    """Paths of every artifact shared between the orchestrator and the agent."""

    repo_root: Path

    @classmethod
    def for_root(cls, repo_root: Path) -> WorkspaceLayout:
        return cls(repo_root=repo_root.resolve())

    @property
    def state_dir(self) -> Path:
        return self.repo_root / STATE_DIRNAME

    @property
    def state_file(self) -> Path:
        return self.state_dir / "state.json"

    @property
    def tasks_file(self) -> Path:
        return self.state_dir / "tasks.json"

    @property
    def todo_file(self) -> Path:
        return self.state_dir / "TODO.md"

    @property
    def pending_flag(self) -> Path:
        return self.state_dir / "pending_tasks"

    @property
    def verdict_file(self) -> Path:
        return self.state_dir / "critic_verdict.md"

    @property
    def status_file(self) -> Path:
        return self.state_dir / "STATUS.md"

    @property
    def notes_file(self) -> Path:
        return self.state_dir / "NOTES.md"

    @property
    def prompts_dir(self) -> Path:
        return self.state_dir / "prompts"

    @property
    def current_prompt(self) -> Path:
        return self.state_dir / "current_prompt.md"

    @property
    def session_file(self) -> Path:
        return self.state_dir / "agent_session.json"

    @property
    def handoff_marker(self) -> Path:
        return self.state_dir / "handoff"

    @property
    def planning_marker(self) -> Path:
        return self.state_dir / "planning_complete"

    @property
    def evaluation_marker(self) -> Path:
        return self.state_dir / "evaluation_complete"

    def marker_for(self, phase: str) -> Path | None:
        if phase == "planner":
            return self.planning_marker
        if phase == "evaluator":
            return self.evaluation_marker
        return None

    def ensure(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        gitignore = self.state_dir / ".gitignore"
        try:
            lines = gitignore.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            lines = []
        missing = [name for name in VOLATILE_FILES if name not in lines]
        if missing:
            gitignore.write_text("\n".join([*lines, *missing]) + "\n", encoding="utf-8")
