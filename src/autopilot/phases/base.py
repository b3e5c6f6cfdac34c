from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True)
class PromptParams:
    goal: str
    test_command: str
    constraints: str = ""
    current_task: str = ""
    fix_instructions: str = ""
    prune_mode: str = "normal"


class PhasePrompt:
    role: str = "phase"
    prompt_file: str | None = None
    fallback_prompt: str = "You are a software engineer working on: {{GOAL}}"

    def __init__(self, prompts_dir: Path | None = None) -> None:
        self.prompts_dir = prompts_dir

    def _load_template(self) -> str:
        if self.prompts_dir is None or not self.prompt_file:
            return self.fallback_prompt.strip()
        try:
            template = (self.prompts_dir / self.prompt_file).read_text(encoding="utf-8").strip()
        except (FileNotFoundError, IsADirectoryError, PermissionError, UnicodeDecodeError):
            return self.fallback_prompt.strip()
        return template or self.fallback_prompt.strip()

    def render(self, params: PromptParams) -> str:
        constraints = ""
        if params.constraints.strip():
            constraints = f"\n## Additional Constraints\n{params.constraints.strip()}\n"
        replacements = {
            "{{GOAL}}": params.goal,
            "{{TEST_CMD}}": params.test_command or "(no test command configured)",
            "{{CONSTRAINTS}}": constraints,
            "{{CURRENT_TASK}}": params.current_task or "(none)",
            "{{FIX_INSTRUCTIONS}}": params.fix_instructions.strip() or "(no details recorded)",
            "{{PRUNE_MODE}}": params.prune_mode,
        }
        rendered = self._load_template()
        for placeholder, value in replacements.items():
            rendered = rendered.replace(placeholder, value)
        return rendered + "\n"
