from autopilot.state.backlog import Task, TaskBacklog
from autopilot.state.markers import AgentSession, ControlMarker, SessionRecord
from autopilot.state.run_state import (
    MAX_FIX_RETRIES,
    NotInitialized,
    RunState,
    RunStateError,
    RunStateStore,
    Stats,
)
from autopilot.state.verdict import Verdict, VerdictKind, VerdictStore

__all__ = [
    "MAX_FIX_RETRIES",
    "AgentSession",
    "ControlMarker",
    "NotInitialized",
    "RunState",
    "RunStateError",
    "RunStateStore",
    "SessionRecord",
    "Stats",
    "Task",
    "TaskBacklog",
    "Verdict",
    "VerdictKind",
    "VerdictStore",
]
