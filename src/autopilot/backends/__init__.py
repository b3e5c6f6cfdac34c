from autopilot.backends.base import (
    AgentBackend,
    AgentFailure,
    AgentResult,
    BackendProcessError,
    SpawnCallback,
)
from autopilot.backends.claude import ClaudeCodeBackend

__all__ = [
    "AgentBackend",
    "AgentFailure",
    "AgentResult",
    "BackendProcessError",
    "ClaudeCodeBackend",
    "SpawnCallback",
]
