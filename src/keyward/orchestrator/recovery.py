"""Bounded recovery decisions after a step failure."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional, Protocol, Sequence, Union

from .. import diagnostics
from ..errors import FailureKind
from ..utils.logging import get_logger
from .models import FailureContext, RecoveryAction, RecoveryModeAction

if TYPE_CHECKING:
    from ..interaction import UserInteractionHandler
    from ..state import StateTracker

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 3

RECOVERY_MODE_OPTIONS = [
    RecoveryModeAction.SHOW_DETAIL,
    RecoveryModeAction.RUN_DIAGNOSTICS,
    RecoveryModeAction.RESET_STEP,
    RecoveryModeAction.WRITE_BUNDLE,
    RecoveryModeAction.RETURN,
]


class DecisionSource(Protocol):
    """Something that picks one of the offered actions."""

    def decide(self, failure: FailureContext, options: Sequence[RecoveryAction]) -> RecoveryAction: ...

    def decide_recovery(
        self, failure: FailureContext, options: Sequence[RecoveryModeAction]
    ) -> RecoveryModeAction: ...


def options_for(failure: FailureContext) -> List[RecoveryAction]:
    """The actions the operator may pick for *failure*. Pure.

    Lockout only offers terminal choices. Configuration errors are not
    offered a plain retry because repeating the same input cannot succeed.
    Critical steps never offer skip.
    """
    if failure.kind is FailureKind.LOCKOUT:
        return [RecoveryAction.SAVE_AND_EXIT, RecoveryAction.CANCEL]

    options: List[RecoveryAction] = []
    if failure.kind is FailureKind.TRANSIENT and not failure.retries_exhausted:
        options.append(RecoveryAction.RETRY)
    if not failure.critical:
        options.append(RecoveryAction.SKIP)
    options.extend(
        [RecoveryAction.SAVE_AND_EXIT, RecoveryAction.RECOVERY_MODE, RecoveryAction.CANCEL]
    )
    return options


class RecoveryController:
    """Drives the decision menu until it settles on a terminal action or a retry.

    Recovery-mode actions that only inspect (details, diagnostics, support
    report) loop back to the recovery menu; resetting the step or returning
    both resolve to RETRY.
    """

    def __init__(
        self,
        decisions: DecisionSource,
        interaction: "UserInteractionHandler",
        tracker: "StateTracker",
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        support_dir: Optional[Union[str, Path]] = None,
        run_checks: Optional[Callable[[], List[diagnostics.CheckResult]]] = None,
    ) -> None:
        self.decisions = decisions
        self.interaction = interaction
        self.tracker = tracker
        self.max_retries = max_retries
        self.support_dir = Path(support_dir) if support_dir else Path.cwd() / ".keyward" / "support"
        self._run_checks = run_checks or diagnostics.run_diagnostics
        self.last_bundle: Optional[Path] = None

    def options_for(self, failure: FailureContext) -> List[RecoveryAction]:
        return options_for(failure)

    def handle(self, failure: FailureContext) -> RecoveryAction:
        while True:
            options = self.options_for(failure)
            action = self.decisions.decide(failure, options)
            if action not in options:
                raise ValueError(f"Decision {action!r} is not one of {[o.value for o in options]}")
            if action is not RecoveryAction.RECOVERY_MODE:
                return action
            if self._recovery_mode(failure):
                return RecoveryAction.RETRY

    def _recovery_mode(self, failure: FailureContext) -> bool:
        """Return True when the step should be attempted again."""
        self.interaction.notify("🛠️ Entering recovery mode", "warning")
        while True:
            choice = self.decisions.decide_recovery(failure, RECOVERY_MODE_OPTIONS)
            if choice is RecoveryModeAction.SHOW_DETAIL:
                self.interaction.notify(self._detail_text(failure), "info")
            elif choice is RecoveryModeAction.RUN_DIAGNOSTICS:
                results = self._run_checks()
                self.interaction.notify(diagnostics.format_checks(results), "info")
            elif choice is RecoveryModeAction.WRITE_BUNDLE:
                self.last_bundle = self.write_bundle(failure)
                self.interaction.notify(
                    f"📞 Support report generated: {self.last_bundle}\n"
                    "Please include this file when asking for help.",
                    "success",
                )
            elif choice is RecoveryModeAction.RESET_STEP:
                self.tracker.reset_step_data(failure.step_name)
                self.interaction.notify(f"Step data reset: {failure.step_name}", "success")
                return True
            else:
                return True

    def write_bundle(self, failure: FailureContext) -> Path:
        document = self.tracker.document
        snapshot = document.to_dict() if hasattr(document, "to_dict") else None
        return diagnostics.write_support_bundle(
            self.support_dir,
            failed_step=failure.step_name,
            error={
                "message": failure.message,
                "code": failure.code,
                "kind": failure.kind.value,
                "attempt": failure.attempt,
                "traceback": failure.detail,
            },
            document=snapshot,
        )

    @staticmethod
    def _detail_text(failure: FailureContext) -> str:
        lines = [
            "🔍 Detailed error information",
            f"Step: {failure.step_name} (attempt {failure.attempt}/{failure.max_retries})",
            f"Kind: {failure.kind.value}",
            f"Message: {failure.message}",
        ]
        if failure.code:
            lines.append(f"Error code: {failure.code}")
        if failure.detail:
            lines.append("Traceback:")
            lines.append(failure.detail.rstrip())
        return "\n".join(lines)
