from pathlib import Path

from autopilot.phases.base import PhasePrompt, PromptParams
from autopilot.phases.coder import CoderPrompt
from autopilot.phases.critic import CriticPrompt
from autopilot.phases.evaluator import EvaluatorPrompt
from autopilot.phases.fixer import FixerPrompt
from autopilot.phases.planner import PlannerPrompt
from autopilot.phases.pruner import PrunerPrompt

PROMPT_TYPES: dict[str, type[PhasePrompt]] = {
    "planner": PlannerPrompt,
    "coder": CoderPrompt,
    "critic": CriticPrompt,
    "fixer": FixerPrompt,
    "evaluator": EvaluatorPrompt,
    "pruner": PrunerPrompt,
}


def build_prompts(prompts_dir: Path | None = None) -> dict[str, PhasePrompt]:
    return {role: prompt_type(prompts_dir) for role, prompt_type in PROMPT_TYPES.items()}


__all__ = [
    "PROMPT_TYPES",
    "CoderPrompt",
    "CriticPrompt",
    "EvaluatorPrompt",
    "FixerPrompt",
    "PhasePrompt",
    "PlannerPrompt",
    "PromptParams",
    "PrunerPrompt",
    "build_prompts",
]
