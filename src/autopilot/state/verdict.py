from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from autopilot.layout import WorkspaceLayout
from autopilot.state.files import remove_file

BULLET_PATTERN = re.compile(r"^(?:[-*]|\d+[.)])\s+(?:\[[ xX]\]\s*)?(.+)$")


class VerdictKind(str, Enum):
    APPROVED = "APPROVED"
    NEEDS_FIXES = "NEEDS_FIXES"
    MINOR_ISSUES = "MINOR_ISSUES"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True, slots=True)
class Verdict:
    kind: VerdictKind
    detail: str = ""

    @property
    def is_success(self) -> bool:
        return self.kind in {VerdictKind.APPROVED, VerdictKind.MINOR_ISSUES}

    def follow_up_items(self) -> list[str]:
        """Bullet items listed in the verdict body, used as follow-up tasks."""
        items: list[str] = []
        for raw_line in self.detail.splitlines():
            match = BULLET_PATTERN.match(raw_line.strip())
            if match:
                item = match.group(1).strip()
                if item:
                    items.append(item)
        return items


def parse_verdict(content: str | None) -> Verdict:
    """Classify verdict text by its first token; anything else is ``UNKNOWN``."""
    if content is None:
        return Verdict(VerdictKind.UNKNOWN)
    stripped = content.lstrip()
    first_line, _, remainder = stripped.partition("\n")
    tokens = first_line.split(maxsplit=1)
    if not tokens:
        return Verdict(VerdictKind.UNKNOWN, content)
    head = tokens[0].strip(":*#`").upper()
    for kind in (VerdictKind.NEEDS_FIXES, VerdictKind.MINOR_ISSUES, VerdictKind.APPROVED):
        if head == kind.value:
            inline = tokens[1].strip() if len(tokens) > 1 else ""
            detail = "\n".join(part for part in (inline, remainder.strip()) if part)
            return Verdict(kind, detail)
    return Verdict(VerdictKind.UNKNOWN, content)


class VerdictStore:
    """Side-channel file the critic writes its verdict into.

    Only the agent writes it; the orchestrator clears it before every review attempt
    so a stale verdict can never be read as the answer to a newer review.
    """

    def __init__(self, layout: WorkspaceLayout) -> None:
        self.layout = layout

    def clear(self) -> None:
        remove_file(self.layout.verdict_file)

    def read(self) -> Verdict:
        try:
            content = self.layout.verdict_file.read_text(encoding="utf-8")
        except (FileNotFoundError, IsADirectoryError, PermissionError, UnicodeDecodeError):
            return Verdict(VerdictKind.UNKNOWN)
        return parse_verdict(content)
