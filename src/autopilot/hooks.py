from __future__ import annotations

import shutil
import sys
from pathlib import Path
from typing import Any

from autopilot.state.files import atomic_write_json, read_json, remove_file

STOP_HOOK_SUBCOMMAND = "_stop-hook"


def resolve_hook_command(configured: str = "") -> str:
    """Command the agent runtime should execute when the agent pauses."""
    if configured.strip():
        return configured.strip()
    executable = shutil.which("autopilot")
    if executable:
        return f"{executable} {STOP_HOOK_SUBCOMMAND}"
    return f"{sys.executable} -m autopilot {STOP_HOOK_SUBCOMMAND}"


def _load_settings(path: Path) -> dict[str, Any]:
    payload = read_json(path)
    return payload if isinstance(payload, dict) else {}


def _is_autopilot_entry(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    hooks = entry.get("hooks")
    if not isinstance(hooks, list):
        return False
    return any(
        isinstance(hook, dict)
        and str(hook.get("command", "")).rstrip().endswith(STOP_HOOK_SUBCOMMAND)
        for hook in hooks
    )


def install_stop_hook(settings_path: Path, command: str) -> bool:
    """Register the stop hook, replacing a stale registration. Returns True if changed."""
    settings = _load_settings(settings_path)
    hooks = settings.get("hooks")
    if not isinstance(hooks, dict):
        hooks = {}
    stop_entries = hooks.get("Stop")
    if not isinstance(stop_entries, list):
        stop_entries = []

    entry = {"hooks": [{"type": "command", "command": command}]}
    if entry in stop_entries:
        return False
    stop_entries = [item for item in stop_entries if not _is_autopilot_entry(item)]
    stop_entries.append(entry)
    hooks["Stop"] = stop_entries
    settings["hooks"] = hooks
    atomic_write_json(settings_path, settings)
    return True


def remove_stop_hook(settings_path: Path) -> bool:
    if not settings_path.exists():
        return False
    settings = _load_settings(settings_path)
    hooks = settings.get("hooks")
    if not isinstance(hooks, dict) or not isinstance(hooks.get("Stop"), list):
        return False
    remaining = [item for item in hooks["Stop"] if not _is_autopilot_entry(item)]
    if len(remaining) == len(hooks["Stop"]):
        return False
    if remaining:
        hooks["Stop"] = remaining
    else:
        hooks.pop("Stop")
    if not hooks:
        settings.pop("hooks")
    if settings:
        atomic_write_json(settings_path, settings)
    else:
        remove_file(settings_path)
    return True

