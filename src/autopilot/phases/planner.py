from __future__ import annotations

from autopilot.phases.base import PhasePrompt


class PlannerPrompt(PhasePrompt):
    role = "planner"
    prompt_file = "planner.md"
    fallback_prompt = """
You are planning the implementation of:

{{GOAL}}

Tests are run with `{{TEST_CMD}}`.
{{CONSTRAINTS}}
Discuss the design with the user as needed, then write the backlog to
`.autopilot/tasks.json` as `{"tasks": [{"subject": ..., "status": "pending",
"priority": "high" | "medium" | "low"}]}`, one small, testable task per entry.
When the plan is agreed, create the file `.autopilot/planning_complete` and stop.
""".strip()
