"""Durable mutations of a step ledger document."""

from __future__ import annotations

from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from ..utils.logging import get_logger
from .provisioning import ConnectionRecord, ProvisioningState
from .records import ErrorRecord, StepRecord

logger = get_logger(__name__)

DocumentT = TypeVar("DocumentT")


class StateTracker(Generic[DocumentT]):
    """Wraps a Session or ProvisioningState and saves after every transition.

    Every mutating method persists before returning, so the caller can rely
    on the change being on disk before it performs the next remote action.
    """

    def __init__(self, document: DocumentT, save: Callable[[DocumentT], None]) -> None:
        self.document = document
        self._save = save

    @property
    def steps(self) -> Dict[str, StepRecord]:
        return self.document.steps  # type: ignore[attr-defined]

    def save(self) -> None:
        self._save(self.document)

    def is_completed(self, name: str) -> bool:
        return self.document.is_completed(name)  # type: ignore[attr-defined]

    def is_resolved(self, name: str) -> bool:
        return self.document.is_resolved(name)  # type: ignore[attr-defined]

    def step_data(self, name: str) -> Dict[str, Any]:
        return self.document.step_data(name)  # type: ignore[attr-defined]

    def mark_step_completed(self, name: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.document.complete_step(name, data)  # type: ignore[attr-defined]
        self.save()
        logger.info("✅ Step completed: %s", name)

    def mark_step_skipped(self, name: str, reason: Optional[str] = None) -> None:
        self.document.skip_step(name, reason)  # type: ignore[attr-defined]
        self.save()
        logger.info("⏭️ Step skipped: %s", name)

    def reset_step_data(self, name: str) -> None:
        """Forget the recorded data of one incomplete step."""
        self.document.clear_step_data(name)  # type: ignore[attr-defined]
        self.save()
        logger.info("🔄 Cleared recorded data for step: %s", name)

    def add_error(
        self,
        step: Optional[str],
        message: str,
        *,
        kind: str = "transient",
        code: Optional[str] = None,
    ) -> ErrorRecord:
        entry = self.document.append_error(step, message, kind=kind, code=code)  # type: ignore[attr-defined]
        self.save()
        return entry

    def enter_step(self, name: str, index: int) -> None:
        self.document.enter_step(name, index)  # type: ignore[attr-defined]
        self.save()

    def mark_finished(self) -> None:
        self.document.mark_finished()  # type: ignore[attr-defined]
        self.save()


class ProvisioningTracker(StateTracker[ProvisioningState]):
    """Tracker with the connection and snapshot operations of a host document."""

    @property
    def state(self) -> ProvisioningState:
        return self.document

    @property
    def connection(self) -> ConnectionRecord:
        return self.document.connection

    def update_connection(self, **changes: Any) -> ConnectionRecord:
        connection = self.document.connection
        for key, value in changes.items():
            if not hasattr(connection, key):
                raise AttributeError(f"Unknown connection field: {key}")
            setattr(connection, key, value)
        self.save()
        logger.info(
            "🔗 Connection updated: %s@port %s (hardening applied: %s)",
            connection.current_username,
            connection.current_port,
            connection.hardening_applied,
        )
        return connection

    def snapshot_config(self, snapshot: Dict[str, Any]) -> None:
        if self.document.config_snapshot is None:
            self.document.config_snapshot = snapshot
            self.save()

    def reset(self) -> ProvisioningState:
        """Replace the document with a fresh one. Callers must confirm with the user first."""
        fresh = ProvisioningState.create(
            self.document.host_identifier, list(self.document.steps.keys())
        )
        self.document = fresh
        self.save()
        logger.warning("🧹 Provisioning state reset for %s", fresh.host_identifier)
        return fresh
