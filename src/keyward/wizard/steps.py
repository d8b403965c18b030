"""The ten wizard steps."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any, Callable, Dict, List

from ..config import AppConfig
from ..errors import ConfigurationError, Lockout, SaveRequested, TransientFailure, UserCancelled
from ..orchestrator import SessionResult, SessionStatus, Step, StepContext
from ..security import HardeningWorkflow
from ..state import Session
from ..utils.logging import get_logger
from .collaborators import CloudProvider, CredentialSource, DnsPlanner, ProjectScaffolder

logger = get_logger(__name__)

WELCOME = "welcome"
CREDENTIALS = "credentials"
PROJECT_CONFIG = "project-config"
INFRASTRUCTURE = "infrastructure"
DNS_CONFIG = "dns-config"
SSL_CONFIG = "ssl-config"
SECURITY = "security"
APPLICATION = "application"
VALIDATION = "validation"
DEPLOYMENT = "deployment"

WIZARD_STEP_NAMES = [
    WELCOME,
    CREDENTIALS,
    PROJECT_CONFIG,
    INFRASTRUCTURE,
    DNS_CONFIG,
    SSL_CONFIG,
    SECURITY,
    APPLICATION,
    VALIDATION,
    DEPLOYMENT,
]

SETUP_MODES = ["quick", "advanced"]

# Builds the nested hardening workflow for (config, project root)
HardeningFactory = Callable[[AppConfig, Path], HardeningWorkflow]


def _session(ctx: StepContext) -> Session:
    return ctx.tracker.document


def _host_config(ctx: StepContext) -> AppConfig:
    """The configuration with ssh.host pointing at the infrastructure host."""
    infrastructure = ctx.tracker.step_data(INFRASTRUCTURE)
    host = infrastructure.get("host")
    if not host:
        raise ConfigurationError(
            "No infrastructure host recorded for this session",
            suggestions=["Reset the infrastructure step from recovery mode"],
        )
    ssh = dataclasses.replace(ctx.config.ssh, host=host)
    return dataclasses.replace(ctx.config, ssh=ssh)


class WelcomeStep(Step):
    name = WELCOME
    description = "Welcome and project initialization"

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        session = _session(ctx)
        mode = ctx.interaction.choose(
            "Choose a setup mode",
            SETUP_MODES,
            default="quick",
            context="Quick uses sensible defaults; advanced asks about every option",
        )
        if mode is None:
            raise UserCancelled("Setup mode not chosen")
        if not ctx.interaction.confirm(
            f"Start setting up '{session.project_name}' in {session.project_path}?",
            default=True,
        ):
            raise UserCancelled("Declined to start")
        session.setup_mode = mode
        return {"setup_mode": mode, "project_name": session.project_name}


class CredentialsStep(Step):
    name = CREDENTIALS
    description = "Check that the required credentials are available"
    critical = True

    def __init__(self, source: CredentialSource) -> None:
        self.source = source

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        wizard = ctx.config.wizard
        result = self.source.collect(wizard.required_credentials, wizard.optional_credentials)
        logger.info("🔑 %d credential(s) available", len(result["available"]))
        return {**result, "checked": True}


class ProjectConfigStep(Step):
    name = PROJECT_CONFIG
    description = "Create the project directory and project file"
    prerequisites = (WELCOME,)

    def __init__(self, scaffolder: ProjectScaffolder) -> None:
        self.scaffolder = scaffolder

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        session = _session(ctx)
        return self.scaffolder.scaffold(
            session.project_path, session.project_name, setup_mode=session.setup_mode
        )


class InfrastructureStep(Step):
    name = INFRASTRUCTURE
    description = "Provision or describe the target host"

    def __init__(self, provider: CloudProvider) -> None:
        self.provider = provider

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        resource_name = ctx.config.wizard.resource_name or _session(ctx).project_name
        existing = self.provider.describe(resource_name)
        if existing is not None:
            return existing
        return self.provider.create(resource_name)


class DnsConfigStep(Step):
    name = DNS_CONFIG
    description = "Plan DNS records for the project domain"
    prerequisites = (INFRASTRUCTURE,)

    def __init__(self, planner: DnsPlanner) -> None:
        self.planner = planner

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        wizard = ctx.config.wizard
        if not wizard.domain:
            return {"enabled": False}
        address = ctx.tracker.step_data(INFRASTRUCTURE)["host"]
        records = self.planner.plan(wizard.domain, wizard.subdomains, address)
        for record in records:
            logger.info("🌐 %s %s -> %s", record["type"], record["name"], record["value"])
        return {"enabled": True, "domain": wizard.domain, "records": records}


class SslConfigStep(Step):
    name = SSL_CONFIG
    description = "Plan TLS certificates for the planned DNS names"
    prerequisites = (DNS_CONFIG,)

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        dns = ctx.tracker.step_data(DNS_CONFIG)
        if not dns.get("enabled"):
            return {"enabled": False, "reason": "DNS not configured"}
        email = ctx.config.wizard.contact_email
        if not email:
            raise ConfigurationError(
                "A contact email is required for certificate registration",
                suggestions=["Set wizard.contact_email in .keyward/config.json"],
            )
        return {
            "enabled": True,
            "domains": [record["name"] for record in dns.get("records", [])],
            "email": email,
            "challenge": "http-01",
        }


class SecurityStep(Step):
    """Runs the hardening workflow against the infrastructure host."""

    name = SECURITY
    description = "Harden SSH access, firewall and updates on the host"
    prerequisites = (INFRASTRUCTURE,)

    def __init__(self, factory: HardeningFactory) -> None:
        self.factory = factory

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        config = _host_config(ctx)
        if config.dry_run:
            logger.info("🧪 Dry run: hardening of %s simulated", config.ssh.host)
            return {"host": config.ssh.host, "simulated": True}

        workflow = self.factory(config, Path(_session(ctx).project_path))
        result: SessionResult = workflow.run()
        if result.status is SessionStatus.COMPLETED:
            connection = workflow.state.connection
            return {
                "host": config.ssh.host,
                "port": connection.current_port,
                "username": connection.current_username,
                "private_key_path": connection.private_key_path,
                "state_file": str(workflow.store.path),
            }
        if result.status is SessionStatus.LOCKED_OUT:
            error = result.error
            raise error if isinstance(error, Lockout) else Lockout(result.message)
        if result.status is SessionStatus.SAVED:
            raise SaveRequested("Security hardening saved for later")
        if result.status is SessionStatus.INTERRUPTED:
            raise KeyboardInterrupt
        raise UserCancelled("Security hardening cancelled")


class ApplicationStep(Step):
    name = APPLICATION
    description = "Record the application source and start command"

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        wizard = ctx.config.wizard
        return {
            "repository": wizard.repository,
            "branch": wizard.branch,
            "start_command": wizard.start_command,
            "deploy_commands": list(wizard.deploy_commands),
        }


class ValidationStep(Step):
    name = VALIDATION
    description = "Check every earlier step produced a result"
    critical = True

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        session = _session(ctx)
        earlier = session.step_order[: session.step_order.index(VALIDATION)]
        missing: List[str] = []
        skipped: List[str] = []
        for name in earlier:
            if ctx.tracker.is_completed(name):
                if not ctx.tracker.step_data(name):
                    missing.append(name)
            elif ctx.tracker.is_resolved(name):
                skipped.append(name)
            else:
                missing.append(name)
        if missing:
            raise ConfigurationError(
                f"Steps without a recorded result: {', '.join(missing)}",
                suggestions=["Reset those steps from recovery mode and run them again"],
            )
        return {"validated_steps": [name for name in earlier if name not in skipped], "skipped": skipped}


class DeploymentStep(Step):
    name = DEPLOYMENT
    description = "Run the deployment commands on the host"
    critical = True
    prerequisites = (VALIDATION,)

    def __init__(self, factory: HardeningFactory) -> None:
        self.factory = factory

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        config = _host_config(ctx)
        commands = list(config.wizard.deploy_commands)
        if config.dry_run:
            return {"host": config.ssh.host, "commands": commands, "simulated": True}
        if not commands:
            logger.info("No deployment commands configured")
            return {"host": config.ssh.host, "commands": [], "ran": 0}

        workflow = self.factory(config, Path(_session(ctx).project_path))
        ran = 0
        with workflow.negotiator.ensure_connected() as remote:
            for command in commands:
                logger.info("🚀 %s", command)
                result = remote.run(command)
                if not result.ok:
                    raise TransientFailure(
                        f"Deployment command failed with exit code {result.exit_status}: {command}",
                        suggestions=[result.stderr.strip() or "Check the command output on the host"],
                    )
                ran += 1
        return {"host": config.ssh.host, "commands": commands, "ran": ran}


def build_wizard_steps(
    *,
    credential_source: CredentialSource,
    scaffolder: ProjectScaffolder,
    provider: CloudProvider,
    dns_planner: DnsPlanner,
    hardening_factory: HardeningFactory,
) -> List[Step]:
    return [
        WelcomeStep(),
        CredentialsStep(credential_source),
        ProjectConfigStep(scaffolder),
        InfrastructureStep(provider),
        DnsConfigStep(dns_planner),
        SslConfigStep(),
        SecurityStep(hardening_factory),
        ApplicationStep(),
        ValidationStep(),
        DeploymentStep(hardening_factory),
    ]
