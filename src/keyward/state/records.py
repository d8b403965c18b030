"""Step ledger shared by wizard sessions and provisioning state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StepRecord:
    """Completion flag and result payload for one named step."""

    completed: bool = False
    skipped: bool = False
    timestamp: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def resolved(self) -> bool:
        return self.completed or self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completed": self.completed,
            "skipped": self.skipped,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "StepRecord":
        if not isinstance(payload, dict):
            return cls()
        data = payload.get("data")
        return cls(
            completed=bool(payload.get("completed", False)),
            skipped=bool(payload.get("skipped", False)),
            timestamp=payload.get("timestamp"),
            data=data if isinstance(data, dict) else {},
        )


@dataclass
class ErrorRecord:
    timestamp: str
    step: Optional[str]
    message: str
    kind: str = "transient"
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "step": self.step,
            "message": self.message,
            "kind": self.kind,
            "code": self.code,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ErrorRecord":
        return cls(
            timestamp=payload.get("timestamp") or utc_now(),
            step=payload.get("step"),
            message=str(payload.get("message", "")),
            kind=payload.get("kind", "transient"),
            code=payload.get("code"),
        )


class StepLedger:
    """In-memory step bookkeeping mixed into the persisted documents.

    Expects ``steps: Dict[str, StepRecord]`` and ``errors: List[ErrorRecord]``
    attributes on the concrete document. A completion flag can only be set
    here; nothing short of replacing the whole document clears it.
    """

    steps: Dict[str, StepRecord]
    errors: List[ErrorRecord]

    def record(self, name: str) -> StepRecord:
        return self.steps.setdefault(name, StepRecord())

    def is_completed(self, name: str) -> bool:
        record = self.steps.get(name)
        return bool(record and record.completed)

    def is_resolved(self, name: str) -> bool:
        record = self.steps.get(name)
        return bool(record and record.resolved)

    def step_data(self, name: str) -> Dict[str, Any]:
        record = self.steps.get(name)
        return dict(record.data) if record else {}

    def complete_step(self, name: str, data: Optional[Dict[str, Any]] = None) -> StepRecord:
        record = self.record(name)
        record.completed = True
        record.skipped = False
        record.timestamp = utc_now()
        if data:
            record.data = dict(data)
        return record

    def skip_step(self, name: str, reason: Optional[str] = None) -> StepRecord:
        record = self.record(name)
        if record.completed:
            return record
        record.skipped = True
        record.timestamp = utc_now()
        if reason:
            record.data = {"skip_reason": reason}
        return record

    def clear_step_data(self, name: str) -> StepRecord:
        record = self.record(name)
        if record.completed:
            raise ValueError(f"Step '{name}' is completed; only a full reset clears it")
        record.data = {}
        record.skipped = False
        record.timestamp = None
        return record

    def append_error(
        self,
        step: Optional[str],
        message: str,
        *,
        kind: str = "transient",
        code: Optional[str] = None,
    ) -> ErrorRecord:
        entry = ErrorRecord(timestamp=utc_now(), step=step, message=message, kind=kind, code=code)
        self.errors.append(entry)
        return entry

    def steps_to_dict(self) -> Dict[str, Any]:
        return {name: record.to_dict() for name, record in self.steps.items()}

    @staticmethod
    def steps_from_dict(payload: Any) -> Dict[str, StepRecord]:
        if not isinstance(payload, dict):
            return {}
        return {str(name): StepRecord.from_dict(value) for name, value in payload.items()}

    @staticmethod
    def errors_from_list(payload: Any) -> List[ErrorRecord]:
        if not isinstance(payload, list):
            return []
        return [ErrorRecord.from_dict(item) for item in payload if isinstance(item, dict)]
