from __future__ import annotations

import logging

from autopilot.backends.base import AgentBackend, AgentFailure, AgentResult
from autopilot.git import GitRepository
from autopilot.layout import WorkspaceLayout
from autopilot.state.files import atomic_write_text
from autopilot.state.markers import ControlMarker, SessionRecord
from autopilot.state.run_state import RunState, RunStateStore

logger = logging.getLogger(__name__)


class PhaseRunner:
    """Runs one agent phase to completion and reports how it ended.

    The call blocks until the agent process exits, either on its own or because
    the stop hook interrupted it. Nothing but the filesystem crosses phase
    boundaries.
    """

    def __init__(
        self,
        layout: WorkspaceLayout,
        backend: AgentBackend,
        store: RunStateStore,
        repo: GitRepository,
        *,
        permission_mode: str = "acceptEdits",
    ) -> None:
        self.layout = layout
        self.backend = backend
        self.store = store
        self.repo = repo
        self.permission_mode = permission_mode
        self.sessions = SessionRecord(layout)
        self.handoff = ControlMarker(layout.handoff_marker)

    def _head(self) -> str:
        if not self.repo.is_repository():
            return ""
        return self.repo.head()

    async def run(
        self, state: RunState, phase: str, prompt: str, *, model: str | None = None
    ) -> AgentResult:
        head_before = self._head()
        atomic_write_text(self.layout.current_prompt, prompt)
        self.handoff.consume()

        state.stats.agent_invocations += 1
        self.store.save(state)

        logger.info("Running %s phase", phase)
        try:
            result = await self.backend.execute(
                prompt,
                phase=phase,
                permission_mode=self.permission_mode,
                model=model,
                on_spawn=lambda pid: self.sessions.write(pid, phase),
            )
        finally:
            self.sessions.clear()
        result.head_before = head_before
        result.handed_off = self.handoff.consume()

        if result.exit_code != 0 and not result.handed_off:
            raise AgentFailure(
                f"{phase} agent exited with code {result.exit_code}",
                phase=phase,
                exit_code=result.exit_code,
            )
        return result
