from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from autopilot.layout import WorkspaceLayout
from autopilot.state.files import atomic_write_json, read_json, remove_file, utcnow_iso


class ControlMarker:
    """Presence-only rendezvous file; absence means "not yet confirmed"."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def create(self, content: str = "done") -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(content + "\n", encoding="utf-8")

    def consume(self) -> bool:
        """Delete the marker, returning whether it was present."""
        return remove_file(self.path)


@dataclass(frozen=True, slots=True)
class AgentSession:
    pid: int
    phase: str
    started_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"pid": self.pid, "phase": self.phase, "started_at": self.started_at}


class SessionRecord:
    """Records which agent process is live and which phase it is serving."""

    def __init__(self, layout: WorkspaceLayout) -> None:
        self.path = layout.session_file

    def write(self, pid: int, phase: str) -> AgentSession:
        session = AgentSession(pid=pid, phase=phase, started_at=utcnow_iso())
        atomic_write_json(self.path, session.to_dict())
        return session

    def read(self) -> AgentSession | None:
        payload = read_json(self.path)
        if not isinstance(payload, dict):
            return None
        try:
            pid = int(payload["pid"])
        except (KeyError, TypeError, ValueError):
            return None
        phase = payload.get("phase")
        if pid <= 0 or not isinstance(phase, str):
            return None
        return AgentSession(pid=pid, phase=phase, started_at=str(payload.get("started_at", "")))

    def clear(self) -> None:
        remove_file(self.path)
