"""Stop-hook handler that hands control back from the agent to the orchestrator.

The agent runtime invokes ``autopilot _stop-hook`` every time the agent pauses
for input, while the orchestrator is still blocked waiting on the agent
process. The handler decides whether the phase is over and, if so, interrupts
the agent so the orchestrator's wait returns. It must always answer and never
hang the agent.
"""

from __future__ import annotations

import json
import logging
import os
import signal
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from autopilot.layout import WorkspaceLayout
from autopilot.state.markers import AgentSession, ControlMarker, SessionRecord

logger = logging.getLogger(__name__)

TERMINATE_ON_PAUSE = frozenset({"coder", "critic", "fixer", "pruner"})
TERMINATE_WHEN_MARKED = frozenset({"planner", "evaluator"})

KillFunc = Callable[[int, int], None]


@dataclass(frozen=True, slots=True)
class StopHookInput:
    session_id: str = ""
    transcript_path: str = ""
    stop_hook_active: bool = False
    last_assistant_message: str = ""

    @classmethod
    def from_json(cls, raw: str) -> StopHookInput:
        payload: Any = json.loads(raw) if raw.strip() else {}
        if not isinstance(payload, dict):
            raise ValueError("stop hook input must be a JSON object")
        return cls(
            session_id=str(payload.get("session_id") or ""),
            transcript_path=str(payload.get("transcript_path") or ""),
            stop_hook_active=payload.get("stop_hook_active") is True,
            last_assistant_message=str(payload.get("last_assistant_message") or ""),
        )


@dataclass(frozen=True, slots=True)
class HookDecision:
    decision: Literal["allow", "block"] = "allow"
    reason: str = ""
    terminated: bool = False

    def to_json(self) -> str:
        # The runtime treats a missing decision as "let the agent stop".
        if self.decision == "allow":
            return "{}"
        return json.dumps({"decision": self.decision, "reason": self.reason})


def _terminate(session: AgentSession, layout: WorkspaceLayout, kill: KillFunc) -> HookDecision:
    handoff = ControlMarker(layout.handoff_marker)
    handoff.create(session.phase)
    try:
        kill(session.pid, signal.SIGINT)
    except ProcessLookupError:
        logger.debug("agent process %s already exited", session.pid)
    except Exception:
        # The agent keeps running, so its eventual exit is not a handoff.
        handoff.consume()
        raise
    return HookDecision(terminated=True)


def decide(
    hook_input: StopHookInput, layout: WorkspaceLayout, *, kill: KillFunc = os.kill
) -> HookDecision:
    if hook_input.stop_hook_active:
        return HookDecision()
    session = SessionRecord(layout).read()
    if session is None:
        return HookDecision()
    if session.phase in TERMINATE_ON_PAUSE:
        return _terminate(session, layout, kill)
    if session.phase in TERMINATE_WHEN_MARKED:
        marker = layout.marker_for(session.phase)
        if marker is not None and marker.exists():
            return _terminate(session, layout, kill)
    return HookDecision()


def handle_stop_hook(
    stdin_text: str, layout: WorkspaceLayout, *, kill: KillFunc = os.kill
) -> str:
    """Return the JSON decision for one pause event; never raises."""
    try:
        decision = decide(StopHookInput.from_json(stdin_text), layout, kill=kill)
    except Exception:  # noqa: BLE001
        logger.debug("stop hook failed open", exc_info=True)
        decision = HookDecision()
    return decision.to_json()
