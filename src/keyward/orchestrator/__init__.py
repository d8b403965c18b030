"""Step engine for keyward.

- StepRegistry: the fixed ordered list of steps and next-step lookup
- StepExecutor: runs one step once and classifies the outcome
- RecoveryController: bounded retry / skip / save / recovery-mode / cancel menu
- SessionOrchestrator: drives a registry to completion, persisting after each attempt
"""

from .models import (
    EXIT_CODES,
    FailureContext,
    Progress,
    RECOVERY_LABELS,
    RecoveryAction,
    RecoveryModeAction,
    SessionResult,
    SessionStatus,
    Step,
    StepContext,
    StepOutcome,
    StepStatus,
)
from .orchestrator import SessionOrchestrator
from .recovery import DecisionSource, RecoveryController, options_for
from .registry import StepRegistry
from .step_executor import StepExecutor

__all__ = [
    "EXIT_CODES",
    "DecisionSource",
    "FailureContext",
    "Progress",
    "RECOVERY_LABELS",
    "RecoveryAction",
    "RecoveryController",
    "RecoveryModeAction",
    "SessionOrchestrator",
    "SessionResult",
    "SessionStatus",
    "Step",
    "StepContext",
    "StepExecutor",
    "StepOutcome",
    "StepRegistry",
    "StepStatus",
    "options_for",
]
