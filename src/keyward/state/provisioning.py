"""Per-host provisioning state for the security-hardening workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..utils.logging import get_logger
from .records import ErrorRecord, StepLedger, StepRecord, utc_now
from .storage import read_json, write_json_atomic

logger = get_logger(__name__)

SCHEMA_VERSION = 2

PHASE_NOT_STARTED = "not_started"
PHASE_COMPLETED = "completed"

# Step names used by version-1 documents
LEGACY_STEP_NAMES = {
    "sshKeyGeneration": "generate_key_pair",
    "sshKeyDeployment": "deploy_public_key",
    "deploymentUserCreation": "create_deployment_user",
    "sshHardening": "apply_ssh_hardening",
    "firewallConfiguration": "configure_firewall",
    "fail2banConfiguration": "configure_intrusion_prevention",
    "autoUpdatesConfiguration": "enable_auto_updates",
}

_LEGACY_CONNECTION_KEYS = {
    "currentPort": "current_port",
    "currentUsername": "current_username",
    "originalUsername": "original_username",
    "deploymentUsername": "deployment_username",
    "privateKeyPath": "private_key_path",
    "sshHardeningApplied": "hardening_applied",
    "hardeningApplied": "hardening_applied",
}


@dataclass
class ConnectionRecord:
    """Last verified-reachable access configuration for a host."""

    current_port: Optional[int] = None
    current_username: Optional[str] = None
    original_username: Optional[str] = None
    deployment_username: Optional[str] = None
    private_key_path: Optional[str] = None
    hardening_applied: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_port": self.current_port,
            "current_username": self.current_username,
            "original_username": self.original_username,
            "deployment_username": self.deployment_username,
            "private_key_path": self.private_key_path,
            "hardening_applied": self.hardening_applied,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "ConnectionRecord":
        if not isinstance(payload, dict):
            return cls()
        normalized = {}
        for key, value in payload.items():
            normalized[_LEGACY_CONNECTION_KEYS.get(key, key)] = value
        port = normalized.get("current_port")
        return cls(
            current_port=int(port) if port is not None else None,
            current_username=normalized.get("current_username"),
            original_username=normalized.get("original_username"),
            deployment_username=normalized.get("deployment_username"),
            private_key_path=normalized.get("private_key_path"),
            hardening_applied=bool(normalized.get("hardening_applied", False)),
        )


@dataclass
class ProvisioningState(StepLedger):
    host_identifier: str
    current_phase: str = PHASE_NOT_STARTED
    connection: ConnectionRecord = field(default_factory=ConnectionRecord)
    steps: Dict[str, StepRecord] = field(default_factory=dict)
    config_snapshot: Optional[Dict[str, Any]] = None
    errors: List[ErrorRecord] = field(default_factory=list)
    started_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    version: int = SCHEMA_VERSION

    @classmethod
    def create(cls, host_identifier: str, step_names: Iterable[str] = ()) -> "ProvisioningState":
        """A fresh document with every named step incomplete."""
        state = cls(host_identifier=host_identifier)
        for name in step_names:
            state.steps[name] = StepRecord()
        return state

    # Hooks used by the session orchestrator
    def enter_step(self, name: str, index: int) -> None:
        self.current_phase = name

    def mark_finished(self) -> None:
        self.current_phase = PHASE_COMPLETED

    @property
    def finished(self) -> bool:
        return self.current_phase == PHASE_COMPLETED

    def resume_summary(self, step_order: Iterable[str]) -> Dict[str, Any]:
        order = list(step_order)
        completed = [name for name in order if self.is_completed(name)]
        skipped = [
            name for name in order if self.is_resolved(name) and not self.is_completed(name)
        ]
        next_step = next((name for name in order if not self.is_resolved(name)), None)
        return {
            "host": self.host_identifier,
            "current_phase": self.current_phase,
            "completed_steps": completed,
            "skipped_steps": skipped,
            "next_step": next_step,
            "can_resume": bool(completed or skipped) and next_step is not None,
            "connection": self.connection.to_dict(),
            "errors": len(self.errors),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "host_identifier": self.host_identifier,
            "current_phase": self.current_phase,
            "connection": self.connection.to_dict(),
            "steps": self.steps_to_dict(),
            "config_snapshot": self.config_snapshot,
            "errors": [entry.to_dict() for entry in self.errors],
            "started_at": self.started_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProvisioningState":
        """Build a state from any known schema version; missing fields default."""
        if int(payload.get("version", 1) or 1) < SCHEMA_VERSION:
            payload = _migrate_v1(payload)
        return cls(
            host_identifier=str(payload.get("host_identifier") or "default"),
            current_phase=payload.get("current_phase") or PHASE_NOT_STARTED,
            connection=ConnectionRecord.from_dict(payload.get("connection")),
            steps=cls.steps_from_dict(payload.get("steps")),
            config_snapshot=payload.get("config_snapshot"),
            errors=cls.errors_from_list(payload.get("errors")),
            started_at=payload.get("started_at") or utc_now(),
            updated_at=payload.get("updated_at") or utc_now(),
        )


def _migrate_v1(payload: Dict[str, Any]) -> Dict[str, Any]:
    steps: Dict[str, Any] = {}
    for name, entry in (payload.get("steps") or {}).items():
        if not isinstance(entry, dict):
            continue
        extra = {
            key: value
            for key, value in entry.items()
            if key not in ("completed", "skipped", "timestamp", "data")
        }
        steps[LEGACY_STEP_NAMES.get(name, name)] = {
            "completed": bool(entry.get("completed", False)),
            "skipped": bool(entry.get("skipped", False)),
            "timestamp": entry.get("timestamp"),
            "data": entry.get("data") or extra,
        }
    errors = []
    for entry in payload.get("errors") or []:
        if isinstance(entry, dict):
            errors.append({**entry, "message": entry.get("message") or entry.get("error", "")})
    return {
        "host_identifier": payload.get("host_identifier")
        or payload.get("hostIdentifier")
        or payload.get("instanceId"),
        "current_phase": payload.get("current_phase") or payload.get("currentPhase"),
        "connection": payload.get("connection"),
        "steps": steps,
        "config_snapshot": payload.get("config_snapshot") or payload.get("config"),
        "errors": errors,
        "started_at": payload.get("started_at") or payload.get("startedAt"),
        "updated_at": payload.get("updated_at") or payload.get("lastUpdated"),
    }


class ProvisioningStore:
    """Loads and saves the ProvisioningState document of one host."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> Optional[ProvisioningState]:
        payload = read_json(self.path)
        if payload is None:
            return None
        return ProvisioningState.from_dict(payload)

    def save(self, state: ProvisioningState) -> None:
        state.updated_at = utc_now()
        write_json_atomic(self.path, state.to_dict())
