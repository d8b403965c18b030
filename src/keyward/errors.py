"""Error taxonomy shared by the step engine and its collaborators."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence


class FailureKind(str, Enum):
    """Classification of a step failure as seen by the recovery layer."""

    TRANSIENT = "transient"
    CONFIGURATION = "configuration"
    LOCKOUT = "lockout"


class ProvisioningError(RuntimeError):
    """Base class for every failure keyward reports to the operator."""

    kind: FailureKind = FailureKind.TRANSIENT
    default_code = "PROVISIONING_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        suggestions: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.suggestions: List[str] = list(suggestions or [])


class TransientFailure(ProvisioningError):
    """Timeouts and temporary remote failures; eligible for retry."""

    kind = FailureKind.TRANSIENT
    default_code = "TRANSIENT_FAILURE"


class ConfigurationError(ProvisioningError):
    """Missing or invalid input. Retrying without a change cannot fix it."""

    kind = FailureKind.CONFIGURATION
    default_code = "CONFIG_ERROR"


class OrderingViolation(ConfigurationError):
    """A step was asked to run before the steps it depends on."""

    default_code = "ORDERING_VIOLATION"


class ConcurrentSessionError(ConfigurationError):
    """Another live process holds the running-session marker."""

    default_code = "SESSION_IN_USE"


class StateFileError(ConfigurationError):
    """A persisted document exists but cannot be parsed."""

    default_code = "STATE_FILE_ERROR"


class Lockout(ProvisioningError):
    """No known connection scenario grants access to the host.

    Terminal for the current run and never retried automatically.
    """

    kind = FailureKind.LOCKOUT
    default_code = "LOCKOUT"


class UserCancelled(Exception):
    """The operator chose to stop. Not an error."""


class SaveRequested(UserCancelled):
    """The operator chose to stop now and resume later."""


LOCKOUT_SUGGESTIONS = [
    "Check that the instance is running and its public address has not changed",
    "Verify the provider firewall / security group allows both the default and the target SSH port",
    "Use the provider's serial console or session manager to inspect /etc/ssh/sshd_config",
    "Once access is restored, run 'keyward security status' and resume with 'keyward security setup'",
]


def classify(error: BaseException) -> FailureKind:
    """Map an arbitrary exception onto a failure kind."""
    if isinstance(error, ProvisioningError):
        return error.kind
    return FailureKind.TRANSIENT


def format_failure(error: BaseException, *, step: Optional[str] = None) -> str:
    """Render the operator-facing description of a failure.

    The traceback is deliberately absent; it is available from the recovery menu.
    """
    lines = []
    what = f"Step '{step}' failed" if step else "Operation failed"
    lines.append(f"❌ {what}: {error}")
    if isinstance(error, ProvisioningError):
        if error.suggestions:
            lines.append("💡 Suggestions:")
            for index, suggestion in enumerate(error.suggestions, 1):
                lines.append(f"   {index}. {suggestion}")
        lines.append(f"Error code: {error.code}")
    else:
        lines.append(f"Error type: {type(error).__name__}")
    return "\n".join(lines)
