"""Wizard sessions: creation, lookup and resumable execution."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional, Union

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
from ..security import HardeningWorkflow
from ..security.negotiator import Connector
from ..state import Session, SessionLock, SessionStore, StateTracker
from ..utils.logging import get_logger
from .collaborators import (
    CloudProvider,
    CredentialSource,
    DnsPlanner,
    EnvironmentCredentialSource,
    ProjectScaffolder,
    StaticHostProvider,
)
from .steps import WIZARD_STEP_NAMES, build_wizard_steps

if TYPE_CHECKING:
    from ..diagnostics import CheckResult
    from ..interaction import UserInteractionHandler

logger = get_logger(__name__)


def resolve_project_path(
    project_name: str,
    *,
    path: Optional[Union[str, Path]] = None,
    here: bool = False,
) -> Path:
    """``<path>/<project_name>``, or ``path`` itself with ``here``."""
    working_directory = Path(path) if path else Path.cwd()
    return working_directory if here else working_directory / project_name


class WizardWorkflow:
    """Runs the ten wizard steps for sessions stored under one project root."""

    def __init__(
        self,
        config: AppConfig,
        interaction: "UserInteractionHandler",
        decisions: DecisionSource,
        *,
        credential_source: Optional[CredentialSource] = None,
        scaffolder: Optional[ProjectScaffolder] = None,
        provider: Optional[CloudProvider] = None,
        dns_planner: Optional[DnsPlanner] = None,
        connector: Optional[Connector] = None,
        run_checks: Optional[Callable[[], List["CheckResult"]]] = None,
    ) -> None:
        self.config = config
        self.interaction = interaction
        self.decisions = decisions
        self.connector = connector
        self.run_checks = run_checks
        self.registry = StepRegistry(
            build_wizard_steps(
                credential_source=credential_source or EnvironmentCredentialSource(),
                scaffolder=scaffolder or ProjectScaffolder(),
                provider=provider or StaticHostProvider(config.ssh, dry_run=config.dry_run),
                dns_planner=dns_planner or DnsPlanner(),
                hardening_factory=self.hardening_workflow,
            )
        )

    def hardening_workflow(self, config: AppConfig, root: Path) -> HardeningWorkflow:
        return HardeningWorkflow(
            config,
            self.interaction,
            self.decisions,
            root=root,
            connector=self.connector,
            run_checks=self.run_checks,
        )

    @staticmethod
    def store_for(project_path: Union[str, Path]) -> SessionStore:
        return SessionStore(paths.wizard_dir(project_path))

    def create_session(self, project_name: str, project_path: Union[str, Path]) -> Session:
        if not project_name.strip():
            raise ConfigurationError("Project name must not be empty")
        session = Session.new(project_name, Path(project_path).resolve(), WIZARD_STEP_NAMES)
        self.store_for(project_path).save(session)
        logger.info("🆔 Created wizard session %s for %s", session.id, project_name)
        return session

    def find_session(self, root: Union[str, Path], session_id: Optional[str] = None) -> Session:
        """The named session, or the most recently updated one under *root*."""
        store = self.store_for(root)
        session = store.load(session_id) if session_id else store.latest()
        if session is None:
            target = f"Session {session_id}" if session_id else "No wizard session"
            raise ConfigurationError(
                f"{target} not found in {store.directory}",
                suggestions=["Run 'keyward sessions' to list sessions", "Or start one with 'keyward new'"],
            )
        return session

    def run(self, session: Session) -> SessionResult:
        store = self.store_for(session.project_path)
        tracker = StateTracker(session, store.save)
        recovery = RecoveryController(
            self.decisions,
            self.interaction,
            tracker,
            max_retries=self.config.interaction.max_retries,
            support_dir=paths.support_dir(session.project_path),
            run_checks=self.run_checks,
        )
        orchestrator = SessionOrchestrator(
            self.registry,
            tracker,
            self.config,
            self.interaction,
            recovery,
            lock=SessionLock(store.path_for(session.id)),
            resume_hint=f"keyward resume {session.id} --path {session.project_path}",
            title=f"Setup of {session.project_name}",
        )
        return orchestrator.run()
