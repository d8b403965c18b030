"""Persisted state: wizard sessions and per-host provisioning documents."""

from .lock import SessionLock, lock_path_for
from .provisioning import (
    ConnectionRecord,
    LEGACY_STEP_NAMES,
    PHASE_COMPLETED,
    PHASE_NOT_STARTED,
    ProvisioningState,
    ProvisioningStore,
)
from .records import ErrorRecord, StepLedger, StepRecord, utc_now
from .session import Session, SessionStore
from .storage import read_json, write_json_atomic
from .tracker import ProvisioningTracker, StateTracker

__all__ = [
    "ConnectionRecord",
    "ErrorRecord",
    "LEGACY_STEP_NAMES",
    "PHASE_COMPLETED",
    "PHASE_NOT_STARTED",
    "ProvisioningState",
    "ProvisioningStore",
    "ProvisioningTracker",
    "Session",
    "SessionLock",
    "SessionStore",
    "StateTracker",
    "StepLedger",
    "StepRecord",
    "lock_path_for",
    "read_json",
    "utc_now",
    "write_json_atomic",
]
