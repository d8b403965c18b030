"""Decision sources for the recovery controller."""

from __future__ import annotations

from collections import deque
from typing import Iterable, List, Sequence, Union

from ..orchestrator.models import (
    RECOVERY_LABELS,
    FailureContext,
    RecoveryAction,
    RecoveryModeAction,
)
from ..utils.logging import get_logger
from .handler import QuestionCategory, UserInteractionHandler

logger = get_logger(__name__)


class InteractiveDecisions:
    """Puts the recovery menu in front of the operator."""

    def __init__(self, handler: UserInteractionHandler) -> None:
        self.handler = handler

    def decide(self, failure: FailureContext, options: Sequence[RecoveryAction]) -> RecoveryAction:
        if RecoveryAction.RETRY in options:
            remaining = failure.max_retries - failure.attempt
            context = f"{remaining} retr{'y' if remaining == 1 else 'ies'} remaining"
        else:
            context = "No automatic retries left"
        default = RECOVERY_LABELS[options[0]]
        return self._pick(
            f"Step '{failure.step_name}' failed. How would you like to proceed?",
            options,
            default=default,
            context=context,
            on_cancel=RecoveryAction.CANCEL if RecoveryAction.CANCEL in options else options[-1],
        )

    def decide_recovery(
        self, failure: FailureContext, options: Sequence[RecoveryModeAction]
    ) -> RecoveryModeAction:
        return self._pick(
            "Select recovery action:",
            options,
            default=RECOVERY_LABELS[RecoveryModeAction.RETURN],
            context=None,
            on_cancel=RecoveryModeAction.RETURN,
        )

    def _pick(self, question, options, *, default, context, on_cancel):
        labels = [RECOVERY_LABELS[option] for option in options]
        answer = self.handler.choose(
            question,
            labels,
            default=default,
            category=QuestionCategory.ERROR_RECOVERY,
            context=context,
        )
        if answer is None:
            return on_cancel
        return options[labels.index(answer)]


class ScriptedDecisions:
    """Replays a fixed list of decisions; for tests and unattended harnesses."""

    def __init__(
        self,
        actions: Iterable[Union[RecoveryAction, RecoveryModeAction]] = (),
    ) -> None:
        self._actions = deque(actions)
        self.seen: List[Sequence[RecoveryAction]] = []

    @property
    def remaining(self) -> int:
        return len(self._actions)

    def _next(self, expected: type):
        if not self._actions:
            raise RuntimeError("Scripted decisions exhausted")
        action = self._actions.popleft()
        if not isinstance(action, expected):
            raise RuntimeError(f"Expected a {expected.__name__}, script has {action!r}")
        return action

    def decide(self, failure: FailureContext, options: Sequence[RecoveryAction]) -> RecoveryAction:
        self.seen.append(list(options))
        return self._next(RecoveryAction)

    def decide_recovery(
        self, failure: FailureContext, options: Sequence[RecoveryModeAction]
    ) -> RecoveryModeAction:
        return self._next(RecoveryModeAction)


class AutoDecisions:
    """Unattended policy: retry while allowed, otherwise save and exit."""

    def decide(self, failure: FailureContext, options: Sequence[RecoveryAction]) -> RecoveryAction:
        if RecoveryAction.RETRY in options:
            logger.info("🤖 Auto-retrying %s (attempt %d)", failure.step_name, failure.attempt + 1)
            return RecoveryAction.RETRY
        logger.info("🤖 Saving progress after %s failed", failure.step_name)
        return RecoveryAction.SAVE_AND_EXIT

    def decide_recovery(
        self, failure: FailureContext, options: Sequence[RecoveryModeAction]
    ) -> RecoveryModeAction:
        return RecoveryModeAction.RETURN
