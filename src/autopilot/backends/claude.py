from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from autopilot.backends.base import AgentBackend, AgentResult, BackendProcessError, SpawnCallback

logger = logging.getLogger(__name__)


class ClaudeCodeBackend(AgentBackend):
    """Runs the ``claude`` CLI interactively; it inherits the terminal."""

    name = "claude"

    def __init__(self, binary: str = "claude", working_directory: Path | None = None) -> None:
        self.binary = binary
        self.working_directory = working_directory

    def build_command(
        self, prompt: str, *, permission_mode: str, model: str | None = None
    ) -> list[str]:
        command = [self.binary, "--permission-mode", permission_mode]
        if model:
            command.extend(["--model", model])
        command.extend(["--", prompt])
        return command

    async def execute(
        self,
        prompt: str,
        *,
        phase: str,
        permission_mode: str,
        model: str | None = None,
        on_spawn: SpawnCallback | None = None,
    ) -> AgentResult:
        command = self.build_command(prompt, permission_mode=permission_mode, model=model)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self.working_directory) if self.working_directory else None,
            )
        except FileNotFoundError as exc:
            raise BackendProcessError(
                f"Claude binary not found: {self.binary}", phase=phase
            ) from exc

        logger.debug("Started %s agent (pid %s)", phase, process.pid)
        if on_spawn is not None:
            on_spawn(process.pid)

        try:
            return_code = await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.terminate()
                await process.wait()
            raise
        logger.debug("%s agent exited with code %s", phase, return_code)
        return AgentResult(phase=phase, exit_code=return_code)
