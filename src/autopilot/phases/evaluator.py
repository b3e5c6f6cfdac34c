from __future__ import annotations

from autopilot.phases.base import PhasePrompt


class EvaluatorPrompt(PhasePrompt):
    role = "evaluator"
    prompt_file = "evaluator.md"
    fallback_prompt = """
You are evaluating whether this project fully achieves its goal:

{{GOAL}}

Run `{{TEST_CMD}}`, exercise the result and compare it with the goal.
{{CONSTRAINTS}}
For every gap you find, add a `pending` task to `.autopilot/tasks.json`.
When you are finished, create the file `.autopilot/evaluation_complete` and stop.
""".strip()
