from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass


class AgentFailure(RuntimeError):
    """Raised when an agent phase ends abnormally without a handoff."""

    def __init__(
        self,
        message: str,
        *,
        phase: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.phase = phase
        self.exit_code = exit_code


class BackendProcessError(AgentFailure):
    """Raised when the agent process cannot be started at all."""


SpawnCallback = Callable[[int], None]


@dataclass(slots=True)
class AgentResult:
    phase: str
    exit_code: int
    head_before: str = ""
    handed_off: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 or self.handed_off


class AgentBackend(ABC):
    name = "agent"

    @abstractmethod
    async def execute(
        self,
        prompt: str,
        *,
        phase: str,
        permission_mode: str,
        model: str | None = None,
        on_spawn: SpawnCallback | None = None,
    ) -> AgentResult:
        """Run one interactive agent turn and wait for the process to exit."""
