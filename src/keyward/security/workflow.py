"""Assembly of the hardening workflow for one host."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from .. import paths
from ..config import AppConfig
from ..errors import ConfigurationError
from ..orchestrator import (
    DecisionSource,
    RecoveryController,
    SessionOrchestrator,
    SessionResult,
    StepRegistry,
)
from ..ssh import RemoteProbe
from ..state import (
    ProvisioningState,
    ProvisioningStore,
    ProvisioningTracker,
    SessionLock,
    write_json_atomic,
)
from ..utils.logging import get_logger
from .audit import AuditReport, audit_host
from .negotiator import ConnectionNegotiator, Connector
from .steps import HARDENING_STEP_NAMES, build_hardening_steps

if TYPE_CHECKING:
    from ..diagnostics import CheckResult
    from ..interaction import UserInteractionHandler

logger = get_logger(__name__)

RESUME_HINT = "keyward security setup"


class HardeningWorkflow:
    """The seven hardening steps bound to one host's provisioning document."""

    def __init__(
        self,
        config: AppConfig,
        interaction: "UserInteractionHandler",
        decisions: DecisionSource,
        *,
        root: Optional[Union[str, Path]] = None,
        host: Optional[str] = None,
        connector: Optional[Connector] = None,
        probe: Optional[RemoteProbe] = None,
        run_checks: Optional[Callable[[], List["CheckResult"]]] = None,
    ) -> None:
        self.config = config
        self.host = host or config.ssh.host
        if not self.host:
            raise ConfigurationError(
                "No target host configured",
                suggestions=["Pass --host or set ssh.host in .keyward/config.json"],
            )
        self.root = Path(root) if root else Path.cwd()
        self.interaction = interaction
        self.store = ProvisioningStore(paths.provisioning_state_path(self.host, self.root))
        self.tracker = ProvisioningTracker(self._load_state(), self.store.save)
        self.negotiator = ConnectionNegotiator(
            self.host, self.tracker, config, connector=connector, probe=probe
        )
        self.registry = StepRegistry(build_hardening_steps(self.negotiator, paths.keys_dir(self.root)))
        self.recovery = RecoveryController(
            decisions,
            interaction,
            self.tracker,
            max_retries=config.interaction.max_retries,
            support_dir=paths.support_dir(self.root),
            run_checks=run_checks,
        )

    def _load_state(self) -> ProvisioningState:
        state = self.store.load()
        if state is None:
            logger.info("🆕 No provisioning state for %s, starting fresh", self.host)
            state = ProvisioningState.create(self.host, HARDENING_STEP_NAMES)
        else:
            logger.info("📂 Loaded provisioning state from %s", self.store.path)
        connection = state.connection
        if not connection.original_username:
            connection.original_username = self.config.ssh.original_username
        if not connection.deployment_username:
            connection.deployment_username = self.config.hardening.deployment_username
        return state

    @property
    def state(self) -> ProvisioningState:
        return self.tracker.state

    def orchestrator(self) -> SessionOrchestrator:
        return SessionOrchestrator(
            self.registry,
            self.tracker,
            self.config,
            self.interaction,
            self.recovery,
            lock=SessionLock(self.store.path),
            resume_hint=RESUME_HINT,
            title=f"Security hardening of {self.host}",
        )

    def run(self) -> SessionResult:
        self.tracker.snapshot_config(self.config.to_dict())
        result = self.orchestrator().run()
        instructions = self.connection_instructions()
        if result.exit_code == 0 and self.state.finished and instructions:
            self.interaction.notify(f"🔐 Connect with: {instructions}", "success")
        return result

    def status(self) -> Dict[str, Any]:
        summary = self.state.resume_summary(self.registry.names)
        progress = self.registry.progress(self.tracker)
        summary["progress"] = progress.describe()
        summary["percentage"] = progress.percentage
        summary["state_file"] = str(self.store.path)
        summary["connect"] = self.connection_instructions()
        return summary

    def reset(self) -> ProvisioningState:
        """Discard all recorded progress for this host. Generated keys are kept."""
        with SessionLock(self.store.path):
            return self.tracker.reset()

    def connection_instructions(self) -> Optional[str]:
        connection = self.state.connection
        if not (connection.current_port and connection.current_username and connection.private_key_path):
            return None
        return (
            f"ssh -i {connection.private_key_path} -p {connection.current_port} "
            f"{connection.current_username}@{self.host}"
        )

    @property
    def audit_path(self) -> Path:
        return paths.audit_report_path(self.host, self.root)

    def audit(self) -> AuditReport:
        """Check the live host through the negotiated access path and save the report.

        Raises Lockout when no access path works, like any hardening step.
        """
        with SessionLock(self.store.path):
            with self.negotiator.ensure_connected() as session:
                report = audit_host(session, self.config)
        write_json_atomic(self.audit_path, report.to_payload())
        logger.info("📄 Audit report saved to %s", self.audit_path)
        return report
