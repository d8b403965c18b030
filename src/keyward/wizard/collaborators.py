"""Injectable collaborators behind the wizard steps.

Each wizard step delegates the outside-world part of its work to one of
these objects so that tests (and future providers) can swap them out.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from ..config import SSHConfig
from ..errors import ConfigurationError
from ..state import read_json, utc_now, write_json_atomic
from ..utils.logging import get_logger

logger = get_logger(__name__)

PROJECT_FILE = "keyward.json"


class CredentialSource(ABC):
    """Supplies the secrets the later steps need."""

    @abstractmethod
    def lookup(self, name: str) -> Optional[str]:
        """Return the value of credential *name*, or None when it is not available."""

    def collect(self, required: Sequence[str], optional: Sequence[str] = ()) -> Dict[str, List[str]]:
        """Check availability of every named credential.

        Only names are returned; values stay with the source.
        """
        missing = [name for name in required if not self.lookup(name)]
        if missing:
            raise ConfigurationError(
                f"Missing required credentials: {', '.join(missing)}",
                suggestions=[f"Export {name} or add it to .env" for name in missing],
            )
        return {
            "available": [name for name in [*required, *optional] if self.lookup(name)],
            "missing_optional": [name for name in optional if not self.lookup(name)],
        }


class EnvironmentCredentialSource(CredentialSource):
    """Reads credentials from the process environment (``.env`` is already loaded)."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self.environ = environ if environ is not None else os.environ

    def lookup(self, name: str) -> Optional[str]:
        value = self.environ.get(name)
        return value if value else None


class ProjectScaffolder:
    """Creates the project directory and its ``keyward.json`` project file."""

    def __init__(self, filename: str = PROJECT_FILE) -> None:
        self.filename = filename

    def scaffold(
        self,
        project_path: Union[str, Path],
        project_name: str,
        *,
        setup_mode: Optional[str] = None,
    ) -> Dict[str, Any]:
        project_path = Path(project_path)
        project_path.mkdir(parents=True, exist_ok=True)
        project_file = project_path / self.filename

        existing = read_json(project_file)
        if existing is not None:
            logger.info("📁 Project file already present: %s", project_file)
            return {"project_file": str(project_file), "created": False}

        write_json_atomic(
            project_file,
            {
                "name": project_name,
                "setup_mode": setup_mode or "quick",
                "created_at": utc_now(),
            },
        )
        logger.info("📁 Created project file %s", project_file)
        return {"project_file": str(project_file), "created": True}


class CloudProvider(ABC):
    """Creates, describes and deletes the host a project deploys to."""

    name = "abstract"

    @abstractmethod
    def create(self, resource_name: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def describe(self, resource_name: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def delete(self, resource_name: str) -> bool:
        ...


class StaticHostProvider(CloudProvider):
    """A host that already exists; its address comes from the ssh configuration.

    With ``dry_run`` every call returns the same shape marked ``simulated``
    and no address is required.
    """

    name = "static"

    def __init__(self, ssh: SSHConfig, *, dry_run: bool = False) -> None:
        self.ssh = ssh
        self.dry_run = dry_run

    def _resource(self, resource_name: str) -> Dict[str, Any]:
        host = self.ssh.host
        if not host:
            if not self.dry_run:
                raise ConfigurationError(
                    "The static provider needs ssh.host to point at an existing machine",
                    suggestions=["Set ssh.host in .keyward/config.json or export KEYWARD_SSH_HOST"],
                )
            host = "203.0.113.10"
        return {
            "resource_name": resource_name,
            "provider": self.name,
            "host": host,
            "ssh_port": self.ssh.default_port,
            "operating_system": self.ssh.operating_system,
            "status": "running",
            "simulated": self.dry_run,
        }

    def create(self, resource_name: str) -> Dict[str, Any]:
        resource = self._resource(resource_name)
        logger.info("🖥️ Using existing host %s for %s", resource["host"], resource_name)
        return resource

    def describe(self, resource_name: str) -> Optional[Dict[str, Any]]:
        if not self.ssh.host and not self.dry_run:
            return None
        return self._resource(resource_name)

    def delete(self, resource_name: str) -> bool:
        # a machine we did not create is never destroyed
        logger.info("Static host for %s left untouched", resource_name)
        return False


class DnsPlanner:
    """Builds the record plan for a domain; applying it is left to the operator."""

    def __init__(self, ttl: int = 300) -> None:
        self.ttl = ttl

    def plan(self, domain: str, subdomains: Sequence[str], address: str) -> List[Dict[str, Any]]:
        names = [domain] + [f"{sub}.{domain}" for sub in subdomains if sub]
        return [
            {"type": "A", "name": name, "value": address, "ttl": self.ttl}
            for name in names
        ]
