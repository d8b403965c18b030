"""SSH session management built on Paramiko."""

from __future__ import annotations

import socket
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import paramiko

from ..utils.logging import get_logger
from .credentials import SSHCredentials
from .errors import SSHCommandError, SSHConnectionError, SSHTimeoutError

logger = get_logger(__name__)


@dataclass
class SSHCommandResult:
    command: str
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class SSHSession:
    """High-level wrapper around paramiko.SSHClient."""

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
        command_timeout: int = 600,
        poll_interval: float = 0.1,
    ) -> None:
        self.credentials = credentials
        self.command_timeout = command_timeout
        self.poll_interval = poll_interval
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None

    def __enter__(self) -> "SSHSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    @property
    def connected(self) -> bool:
        return self._client is not None

    def connect(self) -> None:
        if self._client:
            return
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        connect_kwargs = {
            "hostname": self.credentials.host,
            "port": self.credentials.port,
            "username": self.credentials.username,
            "timeout": self.credentials.timeout,
            "banner_timeout": self.credentials.timeout,
            "auth_timeout": self.credentials.timeout,
            "look_for_keys": False,
            "allow_agent": False,
        }
        if self.credentials.auth_method == "password":
            connect_kwargs["password"] = self.credentials.password
        else:
            connect_kwargs["key_filename"] = self.credentials.key_path
            if self.credentials.passphrase:
                connect_kwargs["passphrase"] = self.credentials.passphrase
        logger.debug("Connecting to %s", self.credentials.describe())
        try:
            client.connect(**connect_kwargs)
        except socket.timeout as exc:
            client.close()
            raise SSHTimeoutError(
                f"Connection to {self.credentials.describe()} timed out "
                f"after {self.credentials.timeout}s"
            ) from exc
        except Exception as exc:
            client.close()
            raise SSHConnectionError(
                f"Cannot connect to {self.credentials.describe()}: {exc}"
            ) from exc
        self._client = client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def run(self, command: str, *, timeout: Optional[int] = None) -> SSHCommandResult:
        """Execute a command on the remote server and wait for it to finish.

        Raises SSHTimeoutError when the command does not complete within
        ``timeout`` seconds (default: the session's command timeout).
        """
        if not self._client:
            self.connect()
        assert self._client is not None

        if timeout is None:
            timeout = self.command_timeout

        logger.debug("Remote command: %s", command)
        try:
            _, stdout, stderr = self._client.exec_command(command, timeout=timeout)
            channel = stdout.channel
            channel.settimeout(float(timeout))
            stdout_chunks, stderr_chunks = self._wait_for_exit(channel, command, timeout)
            exit_status = channel.recv_exit_status()
            stdout_chunks.append(stdout.read())
            stderr_chunks.append(stderr.read())
            stdout_text = b"".join(stdout_chunks).decode("utf-8", errors="replace")
            stderr_text = b"".join(stderr_chunks).decode("utf-8", errors="replace")
        except socket.timeout as exc:
            raise SSHTimeoutError(
                f"Command did not complete within {timeout} seconds: {command}"
            ) from exc
        except paramiko.SSHException as exc:
            raise SSHConnectionError(f"Session lost while running command: {exc}") from exc

        return SSHCommandResult(
            command=command,
            stdout=stdout_text.strip(),
            stderr=stderr_text.strip(),
            exit_status=exit_status,
        )

    def _wait_for_exit(
        self, channel: paramiko.Channel, command: str, timeout: float
    ) -> Tuple[List[bytes], List[bytes]]:
        """Drain output until the remote process exits or ``timeout`` passes."""
        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []
        deadline = time.monotonic() + timeout
        while True:
            # keep the window open, otherwise large output stalls the remote side
            while channel.recv_ready():
                stdout_chunks.append(channel.recv(4096))
            while channel.recv_stderr_ready():
                stderr_chunks.append(channel.recv_stderr(4096))
            if channel.exit_status_ready():
                return stdout_chunks, stderr_chunks
            if time.monotonic() >= deadline:
                channel.close()
                logger.warning("⏱️ Remote command timed out after %ss: %s", timeout, command)
                raise SSHTimeoutError(
                    f"Command did not complete within {timeout} seconds: {command}"
                )
            time.sleep(self.poll_interval)

    def check(self, command: str, *, timeout: Optional[int] = None) -> SSHCommandResult:
        """Like :meth:`run`, but raise SSHCommandError on a non-zero exit."""
        result = self.run(command, timeout=timeout)
        if not result.ok:
            raise SSHCommandError(result)
        return result
