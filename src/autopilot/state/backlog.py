from __future__ import annotations

import re
from collections.abc import Collection
from dataclasses import asdict, dataclass
from typing import Any, Literal

from autopilot.layout import WorkspaceLayout
from autopilot.state.files import atomic_write_json, read_json

TaskStatus = Literal["pending", "completed"]
TaskPriority = Literal["high", "medium", "low"]

PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}
CHECKBOX_PATTERN = re.compile(r"^- \[( |x|X)\]\s*(.*)$")
PRIORITY_LINE_PATTERN = re.compile(r"^-\s*Priority:\s*(\w+)", re.IGNORECASE)


@dataclass(slots=True)
class Task:
    subject: str
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"

    @property
    def pending(self) -> bool:
        return self.status == "pending"

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Task | None:
        subject = str(payload.get("subject", "")).strip()
        if not subject:
            return None
        status = str(payload.get("status", "pending")).strip().lower()
        if status not in {"pending", "completed"}:
            # in_progress and friends still count as outstanding work
            status = "pending"
        return cls(
            subject=subject,
            status=status,  # type: ignore[arg-type]
            priority=_normalize_priority(payload.get("priority")),
        )


def _normalize_priority(value: Any) -> TaskPriority:
    normalized = str(value or "medium").strip().lower()
    if normalized in PRIORITY_RANK:
        return normalized  # type: ignore[return-value]
    return "medium"


def parse_checklist(content: str) -> list[Task]:
    """Parse a markdown ``- [ ]`` checklist, honoring a ``- Priority:`` line below an item."""
    lines = content.splitlines()
    tasks: list[Task] = []
    for index, raw_line in enumerate(lines):
        match = CHECKBOX_PATTERN.match(raw_line.strip())
        if not match:
            continue
        subject = match.group(2).strip()
        if not subject:
            continue
        priority: TaskPriority = "medium"
        if index + 1 < len(lines):
            priority_match = PRIORITY_LINE_PATTERN.match(lines[index + 1].strip())
            if priority_match:
                priority = _normalize_priority(priority_match.group(1))
        status: TaskStatus = "pending" if match.group(1) == " " else "completed"
        tasks.append(Task(subject=subject, status=status, priority=priority))
    return tasks


class TaskBacklog:
    """Read-side view of the backlog the agent maintains during the coder phase.

    A missing or unreadable backlog reports no pending work, so a broken artifact
    ends the loop instead of spinning it forever.
    """

    def __init__(self, layout: WorkspaceLayout) -> None:
        self.layout = layout

    def _structured_tasks(self) -> list[Task] | None:
        payload = read_json(self.layout.tasks_file)
        if payload is None:
            return None
        items = payload.get("tasks") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            return None
        tasks: list[Task] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            task = Task.from_dict(item)
            if task is not None:
                tasks.append(task)
        return tasks

    def _checklist_tasks(self) -> list[Task] | None:
        try:
            content = self.layout.todo_file.read_text(encoding="utf-8")
        except (FileNotFoundError, IsADirectoryError, PermissionError, UnicodeDecodeError):
            return None
        return parse_checklist(content)

    def tasks(self) -> list[Task] | None:
        """Return the checklist, or ``None`` when only the pending signal is available."""
        structured = self._structured_tasks()
        if structured is not None:
            return structured
        return self._checklist_tasks()

    def _pending_signal(self) -> bool:
        try:
            content = self.layout.pending_flag.read_text(encoding="utf-8")
        except (FileNotFoundError, IsADirectoryError, PermissionError, UnicodeDecodeError):
            return False
        return content.strip().lower() == "yes"

    def has_pending(self, skip: Collection[str] = ()) -> bool:
        """Whether outstanding work remains, ignoring subjects listed in ``skip``."""
        tasks = self.tasks()
        if tasks is None:
            return self._pending_signal()
        skipped = {subject.casefold() for subject in skip}
        return any(task.pending and task.subject.casefold() not in skipped for task in tasks)

    def next_task(self, skip: Collection[str] = ()) -> Task | None:
        tasks = self.tasks()
        if not tasks:
            return None
        skipped = {subject.casefold() for subject in skip}
        ranked = [
            (PRIORITY_RANK[task.priority], position, task)
            for position, task in enumerate(tasks)
            if task.pending and task.subject.casefold() not in skipped
        ]
        if not ranked:
            return None
        return min(ranked, key=lambda item: (item[0], item[1]))[2]

    def append_tasks(self, subjects: list[str], priority: TaskPriority = "low") -> int:
        """Append new pending tasks, skipping subjects the backlog already lists."""
        structured = self._structured_tasks()
        checklist = self._checklist_tasks() if structured is None else None
        existing = structured if structured is not None else (checklist or [])
        known = {task.subject.casefold() for task in existing}
        new_tasks: list[Task] = []
        for subject in subjects:
            cleaned = subject.strip()
            if not cleaned or cleaned.casefold() in known:
                continue
            new_tasks.append(Task(subject=cleaned, status="pending", priority=priority))
            known.add(cleaned.casefold())
        if not new_tasks:
            return 0

        if checklist is not None:
            lines = [f"- [ ] {task.subject}\n  - Priority: {task.priority}" for task in new_tasks]
            with self.layout.todo_file.open("a", encoding="utf-8") as handle:
                handle.write("\n" + "\n".join(lines) + "\n")
        else:
            payload = {"tasks": [asdict(task) for task in [*existing, *new_tasks]]}
            atomic_write_json(self.layout.tasks_file, payload)
        return len(new_tasks)

    def fingerprint(self) -> tuple[str, ...]:
        """Raw content of every backlog source; unchanged content means no progress."""
        contents: list[str] = []
        for path in (self.layout.tasks_file, self.layout.todo_file, self.layout.pending_flag):
            try:
                contents.append(path.read_text(encoding="utf-8"))
            except (FileNotFoundError, IsADirectoryError, PermissionError, UnicodeDecodeError):
                contents.append("")
        return tuple(contents)

    def initialize(self) -> None:
        if not self.layout.tasks_file.exists():
            atomic_write_json(self.layout.tasks_file, {"tasks": []})

    def summary(self) -> dict[str, Any]:
        structured = self._structured_tasks()
        tasks = structured if structured is not None else self._checklist_tasks()
        if tasks is None:
            return {
                "source": "signal",
                "pending": self._pending_signal(),
                "completed": None,
                "total": None,
                "remaining": [],
            }
        completed = [task for task in tasks if not task.pending]
        remaining = [task for task in tasks if task.pending]
        return {
            "source": "tasks.json" if structured is not None else "TODO.md",
            "pending": bool(remaining),
            "completed": len(completed),
            "total": len(tasks),
            "remaining": [task.subject for task in remaining],
        }
