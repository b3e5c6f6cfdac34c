from __future__ import annotations

from autopilot.phases.base import PhasePrompt


class CriticPrompt(PhasePrompt):
    role = "critic"
    prompt_file = "critic.md"
    fallback_prompt = """
You are a demanding code reviewer for: {{GOAL}}

Review the most recent commit, which implements: {{CURRENT_TASK}}
Run `{{TEST_CMD}}` and check correctness, edge cases and tests.
{{CONSTRAINTS}}
Write your verdict to `.autopilot/critic_verdict.md`. Its first word must be one of:

- `APPROVED` when the change is correct and complete.
- `MINOR_ISSUES` when it is acceptable; list each follow-up as a `- ` bullet.
- `NEEDS_FIXES` when it must be fixed; describe every problem below the first line.

Do not modify source files. After writing the verdict, stop immediately.
""".strip()
