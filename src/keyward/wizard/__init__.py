"""Project setup wizard built on the step engine."""

from .collaborators import (
    PROJECT_FILE,
    CloudProvider,
    CredentialSource,
    DnsPlanner,
    EnvironmentCredentialSource,
    ProjectScaffolder,
    StaticHostProvider,
)
from .steps import WIZARD_STEP_NAMES, build_wizard_steps
from .workflow import WizardWorkflow, resolve_project_path

__all__ = [
    "CloudProvider",
    "CredentialSource",
    "DnsPlanner",
    "EnvironmentCredentialSource",
    "PROJECT_FILE",
    "ProjectScaffolder",
    "StaticHostProvider",
    "WIZARD_STEP_NAMES",
    "WizardWorkflow",
    "build_wizard_steps",
    "resolve_project_path",
]
