"""Runs one step once and classifies the outcome."""

from __future__ import annotations

import traceback

from ..errors import (
    FailureKind,
    Lockout,
    OrderingViolation,
    UserCancelled,
    classify,
)
from ..utils.logging import get_logger
from .models import Step, StepContext, StepOutcome

logger = get_logger(__name__)


class StepExecutor:
    """Invokes a step's action and turns whatever happens into a StepOutcome.

    The executor never persists anything: recording the outcome is the
    caller's job. Lockout and UserCancelled are re-raised untouched so no
    retry machinery can swallow them. KeyboardInterrupt is not caught.
    """

    def check_prerequisites(self, step: Step, ctx: StepContext) -> None:
        missing = [name for name in step.prerequisites if not ctx.tracker.is_completed(name)]
        if missing:
            raise OrderingViolation(
                f"Step '{step.name}' requires {', '.join(missing)} to be completed first",
                suggestions=["Resume the workflow so earlier steps run in order"],
            )
        step.check_ready(ctx)

    def run(self, step: Step, ctx: StepContext) -> StepOutcome:
        try:
            self.check_prerequisites(step, ctx)
        except OrderingViolation as exc:
            logger.error("⛔ %s", exc.message)
            return StepOutcome.failed(step.name, exc, FailureKind.CONFIGURATION)

        reason = step.skip_reason(ctx)
        if reason:
            logger.info("⏭️ %s: %s", step.name, reason)
            return StepOutcome.skipped(step.name, reason)

        logger.info("▶️ Running step %s (attempt %d)", step.name, ctx.attempt)
        try:
            result = step.run(ctx)
        except (Lockout, UserCancelled):
            raise
        except Exception as exc:
            kind = classify(exc)
            logger.error("❌ Step %s failed (%s): %s", step.name, kind.value, exc)
            return StepOutcome.failed(step.name, exc, kind, detail=traceback.format_exc())

        if isinstance(result, StepOutcome):
            return result
        return StepOutcome.succeeded(step.name, result if isinstance(result, dict) else None)
