from __future__ import annotations

from autopilot.phases.base import PhasePrompt


class FixerPrompt(PhasePrompt):
    role = "fixer"
    prompt_file = "fixer.md"
    fallback_prompt = """
You are fixing review findings for: {{GOAL}}

Current task: {{CURRENT_TASK}}

## Review Feedback
{{FIX_INSTRUCTIONS}}

## Rules
1. Fix only the issues above; do not start other tasks.
2. Run tests after changes: `{{TEST_CMD}}`
3. Commit all changes with `git add -A && git commit -m "<message>"`.

Once the issues are fixed and tests pass, stop immediately.
""".strip()
