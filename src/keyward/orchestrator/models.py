"""Data models for the step engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from ..errors import FailureKind

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..interaction import UserInteractionHandler
    from ..state import StateTracker


class StepStatus(Enum):
    """Outcome of one step attempt."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepOutcome:
    """Result of running a step once."""

    step_name: str
    status: StepStatus
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[BaseException] = None
    kind: Optional[FailureKind] = None
    detail: Optional[str] = None  # formatted traceback, shown on request only

    @classmethod
    def succeeded(cls, step_name: str, data: Optional[Dict[str, Any]] = None) -> "StepOutcome":
        return cls(step_name=step_name, status=StepStatus.SUCCESS, data=dict(data or {}))

    @classmethod
    def failed(
        cls,
        step_name: str,
        error: BaseException,
        kind: FailureKind,
        detail: Optional[str] = None,
    ) -> "StepOutcome":
        return cls(step_name=step_name, status=StepStatus.FAILED, error=error, kind=kind, detail=detail)

    @classmethod
    def skipped(cls, step_name: str, reason: str) -> "StepOutcome":
        return cls(step_name=step_name, status=StepStatus.SKIPPED, data={"skip_reason": reason})

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.status is StepStatus.FAILED


@dataclass
class StepContext:
    """What a step gets to work with for one attempt."""

    tracker: "StateTracker"
    config: "AppConfig"
    interaction: "UserInteractionHandler"
    attempt: int = 1


class Step:
    """One named, idempotent unit of work in a fixed sequence.

    Subclasses set ``name`` and implement :meth:`run`. ``run`` returns the
    data to record for the step (or a :class:`StepOutcome` to skip) and
    raises to signal failure.
    """

    name: str = ""
    description: str = ""
    critical: bool = False
    prerequisites: Tuple[str, ...] = ()

    def skip_reason(self, ctx: StepContext) -> Optional[str]:
        """Return a reason when the step has nothing to do for this configuration."""
        return None

    def check_ready(self, ctx: StepContext) -> None:
        """Raise OrderingViolation when preconditions beyond ``prerequisites`` are unmet."""

    def run(self, ctx: StepContext) -> Any:  # pragma: no cover - abstract
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class RecoveryAction(str, Enum):
    RETRY = "retry"
    SKIP = "skip"
    SAVE_AND_EXIT = "save_and_exit"
    RECOVERY_MODE = "recovery_mode"
    CANCEL = "cancel"


class RecoveryModeAction(str, Enum):
    SHOW_DETAIL = "show_detail"
    RUN_DIAGNOSTICS = "run_diagnostics"
    RESET_STEP = "reset_step"
    WRITE_BUNDLE = "write_bundle"
    RETURN = "return"


RECOVERY_LABELS = {
    RecoveryAction.RETRY: "Retry this step",
    RecoveryAction.SKIP: "Skip this step",
    RecoveryAction.SAVE_AND_EXIT: "Save progress and exit",
    RecoveryAction.RECOVERY_MODE: "Enter recovery mode",
    RecoveryAction.CANCEL: "Cancel",
    RecoveryModeAction.SHOW_DETAIL: "Show error details",
    RecoveryModeAction.RUN_DIAGNOSTICS: "Check requirements",
    RecoveryModeAction.RESET_STEP: "Reset this step and retry",
    RecoveryModeAction.WRITE_BUNDLE: "Write a support report",
    RecoveryModeAction.RETURN: "Return and retry",
}


@dataclass(frozen=True)
class FailureContext:
    """Everything the recovery decision needs, and nothing it could mutate."""

    step_name: str
    critical: bool
    attempt: int
    max_retries: int
    kind: FailureKind
    message: str
    code: Optional[str] = None
    suggestions: Tuple[str, ...] = ()
    detail: Optional[str] = None

    @property
    def retries_exhausted(self) -> bool:
        return self.attempt >= self.max_retries


class SessionStatus(str, Enum):
    COMPLETED = "completed"
    SAVED = "saved"
    CANCELLED = "cancelled"
    LOCKED_OUT = "locked_out"
    INTERRUPTED = "interrupted"


EXIT_CODES = {
    SessionStatus.COMPLETED: 0,
    SessionStatus.SAVED: 0,
    SessionStatus.CANCELLED: 1,
    SessionStatus.LOCKED_OUT: 3,
    SessionStatus.INTERRUPTED: 130,
}


@dataclass
class SessionResult:
    status: SessionStatus
    last_step: Optional[str] = None
    message: str = ""
    resume_hint: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]


@dataclass
class Progress:
    completed: int
    skipped: int
    total: int
    next_step: Optional[str] = None

    @property
    def resolved(self) -> int:
        return self.completed + self.skipped

    @property
    def percentage(self) -> int:
        if not self.total:
            return 100
        return round(self.resolved * 100 / self.total)

    def describe(self) -> str:
        return f"{self.resolved}/{self.total} steps ({self.percentage}%)"
