"""Remote shell failures."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from ..errors import TransientFailure

if TYPE_CHECKING:  # pragma: no cover
    from .session import SSHCommandResult


class SSHConnectionError(TransientFailure):
    """Raised when an SSH connection cannot be established."""

    default_code = "SSH_CONNECTION_FAILED"


class SSHTimeoutError(TransientFailure):
    """A connection attempt or a remote command exceeded its time bound."""

    default_code = "SSH_TIMEOUT"


class SSHCommandError(TransientFailure):
    """A remote command the caller required to succeed exited non-zero."""

    default_code = "SSH_COMMAND_FAILED"

    def __init__(self, result: "SSHCommandResult", message: Optional[str] = None, **kwargs) -> None:
        detail = (result.stderr or result.stdout or "").strip().splitlines()
        summary = detail[-1] if detail else "no output"
        super().__init__(
            message or f"Command exited with status {result.exit_status}: {summary}",
            **kwargs,
        )
        self.result = result
