"""Session orchestrator: walks a step registry to completion."""

from __future__ import annotations

from contextlib import ExitStack
from typing import TYPE_CHECKING, Optional

from ..errors import (
    FailureKind,
    Lockout,
    ProvisioningError,
    SaveRequested,
    UserCancelled,
    format_failure,
)
from ..utils.logging import get_logger
from .models import (
    FailureContext,
    RecoveryAction,
    SessionResult,
    SessionStatus,
    StepContext,
    StepOutcome,
)
from .recovery import RecoveryController
from .registry import StepRegistry
from .step_executor import StepExecutor

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..interaction import UserInteractionHandler
    from ..state import SessionLock, StateTracker

logger = get_logger(__name__)


class SessionOrchestrator:
    """
    Runs the steps of a registry in order against one persisted document.

    After every attempt the document is saved, so a crash loses at most the
    step that was in flight.
    """

    def __init__(
        self,
        registry: StepRegistry,
        tracker: "StateTracker",
        config: "AppConfig",
        interaction: "UserInteractionHandler",
        recovery: RecoveryController,
        *,
        executor: Optional[StepExecutor] = None,
        lock: Optional["SessionLock"] = None,
        resume_hint: Optional[str] = None,
        title: str = "Workflow",
    ) -> None:
        self.registry = registry
        self.tracker = tracker
        self.config = config
        self.interaction = interaction
        self.recovery = recovery
        self.executor = executor or StepExecutor()
        self.lock = lock
        self.resume_hint = resume_hint
        self.title = title

    @property
    def max_retries(self) -> int:
        return self.recovery.max_retries

    def run(self) -> SessionResult:
        with ExitStack() as stack:
            if self.lock is not None:
                stack.enter_context(self.lock)
            try:
                return self._run_steps()
            except KeyboardInterrupt:
                return self._interrupted()

    def _banner(self) -> None:
        progress = self.registry.progress(self.tracker)
        logger.info("=" * 60)
        logger.info("🚀 %s: %s", self.title, progress.describe())
        for index, step in enumerate(self.registry, 1):
            mark = "✓" if self.tracker.is_resolved(step.name) else " "
            logger.info("  [%s] %d. %s", mark, index, step.name)
        logger.info("=" * 60)

    def _run_steps(self) -> SessionResult:
        self._banner()
        while True:
            name = self.registry.next_incomplete_step(self.tracker)
            if name is None:
                break
            result = self._run_step(name)
            if result is not None:
                return result

        self.tracker.mark_finished()
        logger.info("🎉 %s completed", self.title)
        return SessionResult(status=SessionStatus.COMPLETED, message=f"{self.title} completed")

    def _run_step(self, name: str) -> Optional[SessionResult]:
        """Attempt one step until it is resolved; a SessionResult means stop."""
        step = self.registry.get(name)
        index = self.registry.index_of(name)
        attempt = 1
        while True:
            self.tracker.enter_step(name, index)
            ctx = StepContext(
                tracker=self.tracker,
                config=self.config,
                interaction=self.interaction,
                attempt=attempt,
            )
            logger.info("📍 Step %d/%d: %s", index + 1, len(self.registry), name)
            try:
                outcome = self.executor.run(step, ctx)
            except Lockout as exc:
                return self._locked_out(name, exc)
            except SaveRequested as exc:
                return self._save_and_exit(name, str(exc) or None)
            except UserCancelled:
                self.tracker.save()
                logger.info("👋 %s cancelled by user at %s", self.title, name)
                return SessionResult(
                    status=SessionStatus.CANCELLED,
                    last_step=name,
                    message="Cancelled by user",
                    resume_hint=self.resume_hint,
                )

            if outcome.ok:
                self.tracker.mark_step_completed(name, outcome.data)
                return None
            if not outcome.is_failure:
                self.tracker.mark_step_skipped(name, outcome.data.get("skip_reason"))
                return None

            failure = self._record_failure(step.critical, attempt, outcome)
            action = self.recovery.handle(failure)
            logger.info("🔧 Recovery decision for %s: %s", name, action.value)

            if action is RecoveryAction.RETRY:
                attempt += 1
                continue
            if action is RecoveryAction.SKIP:
                self.tracker.mark_step_skipped(name, f"skipped after failure: {failure.message}")
                return None
            if action is RecoveryAction.SAVE_AND_EXIT:
                return self._save_and_exit(name)
            self.tracker.save()
            return SessionResult(
                status=SessionStatus.CANCELLED,
                last_step=name,
                message=f"Cancelled after '{name}' failed",
                resume_hint=self.resume_hint,
                error=outcome.error,
            )

    def _save_and_exit(self, name: str, reason: Optional[str] = None) -> SessionResult:
        self.tracker.save()
        message = "💾 Progress saved."
        if reason:
            message = f"💾 {reason}."
        if self.resume_hint:
            message += f" Resume with: {self.resume_hint}"
        self.interaction.notify(message, "info")
        return SessionResult(
            status=SessionStatus.SAVED,
            last_step=name,
            message=message,
            resume_hint=self.resume_hint,
        )

    def _record_failure(self, critical: bool, attempt: int, outcome: StepOutcome) -> FailureContext:
        error = outcome.error
        kind = outcome.kind or FailureKind.TRANSIENT
        code = error.code if isinstance(error, ProvisioningError) else type(error).__name__
        suggestions = tuple(error.suggestions) if isinstance(error, ProvisioningError) else ()
        message = str(error) if error is not None else "unknown error"

        self.tracker.add_error(outcome.step_name, message, kind=kind.value, code=code)
        if error is not None:
            self.interaction.notify(format_failure(error, step=outcome.step_name), "error")
        return FailureContext(
            step_name=outcome.step_name,
            critical=critical,
            attempt=attempt,
            max_retries=self.max_retries,
            kind=kind,
            message=message,
            code=code,
            suggestions=suggestions,
            detail=outcome.detail,
        )

    def _locked_out(self, name: str, exc: Lockout) -> SessionResult:
        # connection is left as it was: it still names the last verified path
        self.tracker.add_error(name, exc.message, kind=FailureKind.LOCKOUT.value, code=exc.code)
        self.interaction.notify(format_failure(exc, step=name), "error")
        return SessionResult(
            status=SessionStatus.LOCKED_OUT,
            last_step=name,
            message=exc.message,
            error=exc,
        )

    def _interrupted(self) -> SessionResult:
        try:
            self.tracker.save()
        except (OSError, ProvisioningError) as exc:
            logger.error("Could not save state after interrupt: %s", exc)
        message = "⏹️ Interrupted."
        if self.resume_hint:
            message += f" Resume with: {self.resume_hint}"
        logger.warning(message)
        return SessionResult(
            status=SessionStatus.INTERRUPTED,
            message=message,
            resume_hint=self.resume_hint,
        )
