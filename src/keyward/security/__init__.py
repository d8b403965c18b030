"""Security hardening: connection negotiation, the seven steps and their remote scripts."""

from .audit import AuditCheck, AuditReport, audit_host
from .negotiator import ConnectionNegotiator, ConnectionScenario, Connector
from .steps import (
    APPLY_SSH_HARDENING,
    CONFIGURE_FIREWALL,
    CONFIGURE_INTRUSION_PREVENTION,
    CREATE_DEPLOYMENT_USER,
    DEPLOY_PUBLIC_KEY,
    ENABLE_AUTO_UPDATES,
    GENERATE_KEY_PAIR,
    HARDENING_STEP_NAMES,
    ApplySSHHardening,
    ConfigureFirewall,
    ConfigureIntrusionPrevention,
    CreateDeploymentUser,
    DeployPublicKey,
    EnableAutoUpdates,
    GenerateKeyPair,
    HardeningStep,
    build_hardening_steps,
)
from .workflow import RESUME_HINT, HardeningWorkflow

__all__ = [
    "APPLY_SSH_HARDENING",
    "ApplySSHHardening",
    "AuditCheck",
    "AuditReport",
    "CONFIGURE_FIREWALL",
    "CONFIGURE_INTRUSION_PREVENTION",
    "CREATE_DEPLOYMENT_USER",
    "ConfigureFirewall",
    "ConfigureIntrusionPrevention",
    "ConnectionNegotiator",
    "ConnectionScenario",
    "Connector",
    "CreateDeploymentUser",
    "DEPLOY_PUBLIC_KEY",
    "DeployPublicKey",
    "ENABLE_AUTO_UPDATES",
    "EnableAutoUpdates",
    "GENERATE_KEY_PAIR",
    "GenerateKeyPair",
    "HARDENING_STEP_NAMES",
    "HardeningStep",
    "HardeningWorkflow",
    "RESUME_HINT",
    "audit_host",
    "build_hardening_steps",
]
