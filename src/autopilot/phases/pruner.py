from __future__ import annotations

from autopilot.phases.base import PhasePrompt


class PrunerPrompt(PhasePrompt):
    role = "pruner"
    prompt_file = "pruner.md"
    fallback_prompt = """
You are tidying the task backlog of a project working towards: {{GOAL}}

The backlog lives in `.autopilot/tasks.json` (or `.autopilot/TODO.md`). Pruning mode: {{PRUNE_MODE}}.
{{CONSTRAINTS}}
- Merge pending tasks that describe the same work into one task.
- Group closely related low-priority tasks into a single task.
- Mark a low-priority task `completed` when the code already does what it asks.
- Keep every high-priority task and never drop work that is still needed.

In `aggressive` mode, also fold medium-priority tasks into larger ones and close
low-priority tasks that do not serve the goal. Do not modify source files.
When the backlog is tidy, stop immediately.
""".strip()
