"""Finds out which (user, port, key) combination currently grants access to a host."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from ..config import AppConfig
from ..errors import LOCKOUT_SUGGESTIONS, ConfigurationError, Lockout
from ..ssh import (
    RemoteProbe,
    SSHCommandError,
    SSHConnectionError,
    SSHCredentials,
    SSHSession,
    SSHTimeoutError,
    discover_private_key,
)
from ..state import ProvisioningTracker
from ..utils.logging import get_logger

logger = get_logger(__name__)

Connector = Callable[[SSHCredentials], SSHSession]


@dataclass(frozen=True)
class ConnectionScenario:
    """One hypothesis about what currently grants access."""

    username: str
    port: int
    private_key_path: Optional[str]
    is_initial_connection: bool
    label: str = ""

    def describe(self) -> str:
        return f"{self.label or 'scenario'}: {self.username}@port {self.port}"


class ConnectionNegotiator:
    """Establishes a verified remote session and records it.

    When hardening is known to be applied only the recorded connection is
    tried. Otherwise three scenarios are probed in order:

    a. original user on the default port (host never touched)
    b. deployment user on the target port (hardening done, not recorded)
    c. original user on the target port (port moved, user work unfinished)

    ``connection`` in the tracked state is written only after a scenario has
    passed the identity check.
    """

    def __init__(
        self,
        host: str,
        tracker: ProvisioningTracker,
        config: AppConfig,
        *,
        connector: Optional[Connector] = None,
        probe: Optional[RemoteProbe] = None,
    ) -> None:
        self.host = host
        self.tracker = tracker
        self.config = config
        self.probe = probe or RemoteProbe()
        self._connector = connector or self._default_connector
        self.attempts: List[ConnectionScenario] = []

    def _default_connector(self, credentials: SSHCredentials) -> SSHSession:
        session = SSHSession(credentials, command_timeout=self.config.ssh.command_timeout)
        session.connect()
        return session

    # Key and user resolution -------------------------------------------------
    @property
    def original_username(self) -> str:
        return self.tracker.connection.original_username or self.config.ssh.original_username

    @property
    def deployment_username(self) -> str:
        return (
            self.tracker.connection.deployment_username
            or self.config.hardening.deployment_username
        )

    def generated_key_path(self) -> Optional[str]:
        data = self.tracker.step_data("generate_key_pair")
        return data.get("private_key_path") or self.tracker.connection.private_key_path

    def original_key_path(self) -> Optional[str]:
        return (
            self.tracker.connection.private_key_path
            or self.config.ssh.initial_key_path
            or discover_private_key()
        )

    # Scenario construction ---------------------------------------------------
    def scenarios(self) -> List[ConnectionScenario]:
        """The ordered hypotheses for the current state."""
        connection = self.tracker.connection
        default_port = self.config.ssh.default_port
        target_port = self.config.hardening.target_port

        if connection.hardening_applied and connection.current_port and connection.current_username:
            return [
                ConnectionScenario(
                    username=connection.current_username,
                    port=connection.current_port,
                    private_key_path=connection.private_key_path or self.generated_key_path(),
                    is_initial_connection=False,
                    label="recorded",
                )
            ]

        return [
            ConnectionScenario(
                username=self.original_username,
                port=default_port,
                private_key_path=self.original_key_path(),
                is_initial_connection=True,
                label="a",
            ),
            ConnectionScenario(
                username=self.deployment_username,
                port=target_port,
                private_key_path=self.generated_key_path(),
                is_initial_connection=False,
                label="b",
            ),
            ConnectionScenario(
                username=self.original_username,
                port=target_port,
                private_key_path=self.original_key_path(),
                is_initial_connection=False,
                label="c",
            ),
        ]

    # Attempts ----------------------------------------------------------------
    def open(self, scenario: ConnectionScenario) -> SSHSession:
        """Connect and run the identity check; raise on any failure."""
        if not scenario.private_key_path:
            raise ConfigurationError(f"No private key available for {scenario.describe()}")
        self.attempts.append(scenario)
        credentials = SSHCredentials(
            host=self.host,
            username=scenario.username,
            port=scenario.port,
            auth_method="key",
            key_path=scenario.private_key_path,
            timeout=self.config.ssh.connect_timeout,
        )
        session = self._connector(credentials)
        try:
            identity = self.probe.identity(session)
        except SSHCommandError as exc:
            session.close()
            raise SSHConnectionError(f"Identity check failed: {exc}") from exc
        except Exception:
            session.close()
            raise
        if identity != scenario.username:
            session.close()
            raise SSHConnectionError(
                f"Identity check returned '{identity}', expected '{scenario.username}'"
            )
        return session

    def verify_scenario(self, scenario: ConnectionScenario) -> bool:
        """True when *scenario* grants access. Does not record anything."""
        try:
            session = self.open(scenario)
        except (SSHConnectionError, SSHTimeoutError) as exc:
            logger.warning("   ✗ %s: %s", scenario.describe(), exc)
            return False
        session.close()
        logger.info("   ✓ Verified %s", scenario.describe())
        return True

    def record(self, scenario: ConnectionScenario) -> None:
        default_port = self.config.ssh.default_port
        # a key-only host kept on the default port stays hardened
        applied = scenario.port != default_port or (
            scenario.label == "recorded" and self.tracker.connection.hardening_applied
        )
        self.tracker.update_connection(
            current_port=scenario.port,
            current_username=scenario.username,
            original_username=self.original_username,
            deployment_username=self.deployment_username,
            private_key_path=scenario.private_key_path,
            hardening_applied=applied,
        )

    def ensure_connected(self) -> SSHSession:
        """Return an open, identity-checked session and persist the scenario that worked.

        Raises Lockout when every scenario was rejected, and SSHTimeoutError
        when nothing succeeded but at least one attempt only timed out.
        """
        candidates = self.scenarios()
        usable = [scenario for scenario in candidates if scenario.private_key_path]
        for scenario in candidates:
            if not scenario.private_key_path:
                logger.debug("Skipping %s: no key available yet", scenario.describe())
        if not usable:
            raise ConfigurationError(
                "No SSH private key is available to reach the host",
                suggestions=[
                    "Set ssh.initial_key_path in .keyward/config.json",
                    "Or export KEYWARD_SSH_KEY_PATH",
                ],
            )

        logger.info("🔌 Negotiating SSH access to %s", self.host)
        timed_out: List[ConnectionScenario] = []
        for scenario in usable:
            try:
                session = self.open(scenario)
            except SSHTimeoutError as exc:
                logger.warning("   ⏱️ %s: %s", scenario.describe(), exc)
                timed_out.append(scenario)
                continue
            except SSHConnectionError as exc:
                logger.warning("   ✗ %s: %s", scenario.describe(), exc)
                continue
            logger.info("   ✓ Connected via %s", scenario.describe())
            self.record(scenario)
            return session

        if timed_out:
            raise SSHTimeoutError(
                f"Could not reach {self.host}: "
                + ", ".join(scenario.describe() for scenario in timed_out)
                + " timed out",
                suggestions=["Check the host is running, then retry"],
            )
        raise Lockout(
            f"No known connection scenario grants access to {self.host} "
            f"(tried {', '.join(scenario.describe() for scenario in usable)})",
            suggestions=LOCKOUT_SUGGESTIONS,
        )
