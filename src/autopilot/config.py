from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

PermissionMode = Literal["acceptEdits", "plan", "default", "bypassPermissions"]

CONFIG_FILENAME = "autopilot.toml"


@dataclass(slots=True)
class ProjectConfig:
    test_command: str = ""
    constraints: str = ""


@dataclass(slots=True)
class AgentConfig:
    binary: str = "claude"
    permission_mode: PermissionMode = "acceptEdits"
    model: str = ""
    coder_model: str = ""


@dataclass(slots=True)
class WorkflowConfig:
    commit_prefix: str = "autopilot"
    recover_dirty_on_resume: bool = True
    append_minor_issues: bool = True
    # Completed tasks between backlog prunes; 0 disables pruning during runs.
    prune_interval: int = 5


@dataclass(slots=True)
class HooksConfig:
    settings_path: str = ".claude/settings.local.json"
    command: str = ""


@dataclass(slots=True)
class AutopilotConfig:
    project: ProjectConfig = field(default_factory=ProjectConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    hooks: HooksConfig = field(default_factory=HooksConfig)

    @classmethod
    def default(cls) -> AutopilotConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> AutopilotConfig:
        return cls(
            project=ProjectConfig(**data.get("project", {})),
            agent=AgentConfig(**data.get("agent", {})),
            workflow=WorkflowConfig(**data.get("workflow", {})),
            hooks=HooksConfig(**data.get("hooks", {})),
        )

    def to_dict(self) -> dict:
        return {
            "project": {
                "test_command": self.project.test_command,
                "constraints": self.project.constraints,
            },
            "agent": {
                "binary": self.agent.binary,
                "permission_mode": self.agent.permission_mode,
                "model": self.agent.model,
                "coder_model": self.agent.coder_model,
            },
            "workflow": {
                "commit_prefix": self.workflow.commit_prefix,
                "recover_dirty_on_resume": self.workflow.recover_dirty_on_resume,
                "append_minor_issues": self.workflow.append_minor_issues,
                "prune_interval": self.workflow.prune_interval,
            },
            "hooks": {
                "settings_path": self.hooks.settings_path,
                "command": self.hooks.command,
            },
        }

    def model_for(self, phase: str) -> str | None:
        if phase in {"coder", "fixer"} and self.agent.coder_model.strip():
            return self.agent.coder_model.strip()
        return self.agent.model.strip() or None


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: AutopilotConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    section_order = ["project", "agent", "workflow", "hooks"]
    for section in section_order:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> AutopilotConfig:
    if not path.exists():
        return AutopilotConfig.default()
    return AutopilotConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: AutopilotConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
