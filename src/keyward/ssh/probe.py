"""Remote host probing utilities."""

from __future__ import annotations

from dataclasses import dataclass

from .session import SSHSession


@dataclass
class RemoteHostFacts:
    hostname: str
    kernel: str
    os_release: str
    has_systemd: bool = False

    def to_payload(self) -> dict:
        return {
            "hostname": self.hostname,
            "kernel": self.kernel,
            "os_release": self.os_release,
            "has_systemd": self.has_systemd,
        }


class RemoteProbe:
    """Collects remote host facts by running simple commands."""

    def identity(self, session: SSHSession) -> str:
        """Return the remote login name; the no-op check used to verify a scenario."""
        result = session.check("whoami")
        return result.stdout.strip()

    def collect(self, session: SSHSession) -> RemoteHostFacts:
        hostname = self._safe_run(session, "hostname")
        kernel = self._safe_run(session, "uname -sr")
        os_release = self._safe_run(
            session,
            ". /etc/os-release 2>/dev/null && echo \"$PRETTY_NAME\" || uname -sr",
        )
        return RemoteHostFacts(
            hostname=hostname or "unknown",
            kernel=kernel or "unknown",
            os_release=os_release or "unknown",
            has_systemd=self._detect_systemd(session),
        )

    def _safe_run(self, session: SSHSession, command: str) -> str:
        result = session.run(command)
        return result.stdout or result.stderr

    def _detect_systemd(self, session: SSHSession) -> bool:
        result = session.run("cat /proc/1/comm 2>/dev/null")
        return bool(result.stdout) and "systemd" in result.stdout.strip()
