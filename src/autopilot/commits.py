from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from autopilot.git import CommitFailure, GitRepository
from autopilot.state.files import append_note

logger = logging.getLogger(__name__)


class CommitStatus(str, Enum):
    AGENT_COMMITTED = "agent_committed"
    CLEAN = "clean"
    FORCED = "forced"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class CommitOutcome:
    status: CommitStatus
    head: str = ""
    error: str = ""

    @property
    def committed(self) -> bool:
        return self.status in {CommitStatus.AGENT_COMMITTED, CommitStatus.FORCED}


class CommitEnforcer:
    """Guarantees every agent phase ends with its changes committed.

    Git errors never abort the loop: they are logged, noted and reported as a
    ``failed`` outcome. Paths in ``excluded`` (the orchestrator's hook settings)
    are never staged and never make the tree count as dirty.
    """

    def __init__(
        self,
        repo: GitRepository,
        *,
        notes_file: Path | None = None,
        prefix: str = "autopilot",
        excluded: tuple[str, ...] = (),
    ) -> None:
        self.repo = repo
        self.notes_file = notes_file
        self.prefix = prefix
        self.excluded = excluded

    def _note(self, message: str) -> None:
        if self.notes_file is not None:
            append_note(self.notes_file, message)

    def enforce(self, before: str, phase: str) -> CommitOutcome:
        if not self.repo.is_repository():
            return CommitOutcome(CommitStatus.SKIPPED)
        try:
            after = self.repo.head()
            if after and after != before:
                logger.debug("%s phase committed %s", phase, after)
                return CommitOutcome(CommitStatus.AGENT_COMMITTED, head=after)
            if self.repo.is_clean(self.excluded):
                return CommitOutcome(CommitStatus.CLEAN, head=after)
            head = self._commit_all(f"{self.prefix}: {phase} changes (auto-committed)")
        except CommitFailure as exc:
            logger.warning("Could not commit %s changes: %s", phase, exc)
            self._note(f"Commit failed after {phase} phase: {exc}")
            return CommitOutcome(CommitStatus.FAILED, error=str(exc))
        logger.info("Agent left uncommitted %s changes; auto-committed as %s", phase, head)
        self._note(f"Auto-committed uncommitted {phase} changes ({head}).")
        return CommitOutcome(CommitStatus.FORCED, head=head)

    def checkpoint(self, message: str) -> CommitOutcome:
        """Commit whatever is in the working tree, e.g. leftovers of an interrupted run."""
        if not self.repo.is_repository():
            return CommitOutcome(CommitStatus.SKIPPED)
        try:
            if self.repo.is_clean(self.excluded):
                return CommitOutcome(CommitStatus.CLEAN, head=self.repo.head())
            head = self._commit_all(f"{self.prefix}: {message}")
        except CommitFailure as exc:
            logger.warning("Could not create checkpoint commit: %s", exc)
            self._note(f"Checkpoint commit failed: {exc}")
            return CommitOutcome(CommitStatus.FAILED, error=str(exc))
        self._note(f"Checkpoint commit {head}: {message}")
        return CommitOutcome(CommitStatus.FORCED, head=head)

    def _commit_all(self, message: str) -> str:
        self.repo.stage_all(self.excluded)
        return self.repo.commit(message)
