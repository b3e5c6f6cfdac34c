from __future__ import annotations

import logging
from dataclasses import dataclass

from autopilot.commits import CommitEnforcer
from autopilot.config import AutopilotConfig
from autopilot.layout import WorkspaceLayout
from autopilot.phases import PhasePrompt, PromptParams
from autopilot.runner import PhaseRunner
from autopilot.state.backlog import TaskBacklog
from autopilot.state.files import append_note
from autopilot.state.run_state import MAX_FIX_RETRIES, RunState, RunStateStore
from autopilot.state.verdict import Verdict, VerdictKind, VerdictStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReviewOutcome:
    accepted: bool
    verdict: Verdict
    attempts: int
    fixes: int = 0

    @property
    def abandoned(self) -> bool:
        return not self.accepted


def prompt_params(state: RunState, fix_instructions: str = "") -> PromptParams:
    return PromptParams(
        goal=state.goal,
        test_command=state.test_command,
        constraints=state.constraints,
        current_task=state.current_task,
        fix_instructions=fix_instructions,
    )


class RetryFixController:
    """Bounded review/fix cycle for the task the coder just finished.

    Each attempt runs the critic once. ``NEEDS_FIXES`` triggers a fixer run
    before the next attempt, except on the last attempt; an unreadable verdict
    only triggers another review. After ``MAX_FIX_RETRIES`` attempts the task
    is abandoned.
    """

    def __init__(
        self,
        layout: WorkspaceLayout,
        runner: PhaseRunner,
        store: RunStateStore,
        enforcer: CommitEnforcer,
        prompts: dict[str, PhasePrompt],
        config: AutopilotConfig,
    ) -> None:
        self.layout = layout
        self.runner = runner
        self.store = store
        self.enforcer = enforcer
        self.prompts = prompts
        self.config = config
        self.verdicts = VerdictStore(layout)
        self.backlog = TaskBacklog(layout)

    async def review(self, state: RunState) -> ReviewOutcome:
        fixes = 0
        verdict = Verdict(VerdictKind.UNKNOWN)
        for attempt in range(state.retry_count, MAX_FIX_RETRIES):
            state.retry_count = attempt
            self.store.transition(state, "critic")
            self.store.write_status(
                state, f"Reviewing task {state.iteration} (attempt {attempt + 1})"
            )
            self.verdicts.clear()
            await self.runner.run(
                state,
                "critic",
                self.prompts["critic"].render(prompt_params(state)),
                model=self.config.model_for("critic"),
            )
            verdict = self.verdicts.read()
            logger.info("Critic verdict for task %s: %s", state.iteration, verdict.kind.value)

            if verdict.kind is VerdictKind.APPROVED:
                state.stats.approvals += 1
                return self._accept(state, verdict, attempt, fixes)
            if verdict.kind is VerdictKind.MINOR_ISSUES:
                state.stats.minor_issues += 1
                self._record_follow_ups(verdict)
                return self._accept(state, verdict, attempt, fixes)
            if verdict.kind is VerdictKind.UNKNOWN:
                logger.warning("Critic left no recognizable verdict; reviewing again")
                append_note(
                    self.layout.notes_file,
                    f"Task {state.iteration}: critic verdict missing or unrecognized.",
                )
                continue

            state.stats.rejections += 1
            self.store.save(state)
            if attempt >= MAX_FIX_RETRIES - 1:
                break
            await self._fix(state, verdict)
            fixes += 1

        logger.warning(
            "Abandoning task %s after %s review attempts", state.iteration, MAX_FIX_RETRIES
        )
        append_note(
            self.layout.notes_file,
            f"Task {state.iteration} abandoned after {MAX_FIX_RETRIES} review attempts: "
            f"{state.current_task or '(unnamed task)'}",
        )
        self.store.save(state)
        return ReviewOutcome(
            accepted=False, verdict=verdict, attempts=MAX_FIX_RETRIES, fixes=fixes
        )

    def _accept(
        self, state: RunState, verdict: Verdict, attempt: int, fixes: int
    ) -> ReviewOutcome:
        state.stats.tasks_completed += 1
        if fixes:
            state.stats.fix_successes += 1
        self.store.save(state)
        return ReviewOutcome(accepted=True, verdict=verdict, attempts=attempt + 1, fixes=fixes)

    async def _fix(self, state: RunState, verdict: Verdict) -> None:
        state.stats.fix_attempts += 1
        # The fixer works under the coder phase so a resume re-runs implementation.
        self.store.transition(state, "coder", status="fixing")
        self.store.write_status(state, f"Fixing review findings for task {state.iteration}")
        result = await self.runner.run(
            state,
            "fixer",
            self.prompts["fixer"].render(prompt_params(state, verdict.detail)),
            model=self.config.model_for("fixer"),
        )
        outcome = self.enforcer.enforce(result.head_before, "fixer")
        if outcome.head:
            state.last_commit = outcome.head
        self.store.save(state)

    def _record_follow_ups(self, verdict: Verdict) -> None:
        if not self.config.workflow.append_minor_issues:
            return
        items = verdict.follow_up_items()
        if not items:
            return
        added = self.backlog.append_tasks(items, priority="low")
        if added:
            logger.info("Queued %s follow-up task(s) from minor review findings", added)
