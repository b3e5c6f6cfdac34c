from __future__ import annotations

from autopilot.phases.base import PhasePrompt


class CoderPrompt(PhasePrompt):
    role = "coder"
    prompt_file = "coder.md"
    fallback_prompt = """
You are working on: {{GOAL}}

## Current Task
{{CURRENT_TASK}}

The backlog lives in `.autopilot/tasks.json`. Implement the current task only,
then mark it `completed` there. Add any new work you discover as `pending` tasks.

## Rules
1. Run tests after changes: `{{TEST_CMD}}`
2. Do not declare success until tests pass.
3. Commit all changes with `git add -A && git commit -m "<message>"`.
{{CONSTRAINTS}}
When the task is committed, stop immediately.
""".strip()
