"""Wizard session documents."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..errors import StateFileError
from ..utils.logging import get_logger
from .records import ErrorRecord, StepLedger, StepRecord, utc_now
from .storage import read_json, write_json_atomic

logger = get_logger(__name__)

SESSION_VERSION = 1


@dataclass
class Session(StepLedger):
    """One resumable run of the wizard workflow."""

    id: str
    project_name: str
    project_path: str
    step_order: List[str]
    current_step_index: int = 0
    steps: Dict[str, StepRecord] = field(default_factory=dict)
    completed: bool = False
    setup_mode: Optional[str] = None
    errors: List[ErrorRecord] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    version: int = SESSION_VERSION

    @classmethod
    def new(cls, project_name: str, project_path: Union[str, Path], step_order: Sequence[str]) -> "Session":
        return cls(
            id=uuid.uuid4().hex[:12],
            project_name=project_name,
            project_path=str(project_path),
            step_order=list(step_order),
            steps={name: StepRecord() for name in step_order},
        )

    @property
    def step_results(self) -> Dict[str, StepRecord]:
        return self.steps

    # Hooks used by the session orchestrator
    def enter_step(self, name: str, index: int) -> None:
        self.current_step_index = index

    def mark_finished(self) -> None:
        self.completed = True
        self.current_step_index = len(self.step_order)

    @property
    def finished(self) -> bool:
        return self.completed

    @property
    def current_step(self) -> Optional[str]:
        if 0 <= self.current_step_index < len(self.step_order):
            return self.step_order[self.current_step_index]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "id": self.id,
            "project_name": self.project_name,
            "project_path": self.project_path,
            "step_order": list(self.step_order),
            "current_step_index": self.current_step_index,
            "step_results": self.steps_to_dict(),
            "completed": self.completed,
            "setup_mode": self.setup_mode,
            "errors": [entry.to_dict() for entry in self.errors],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Session":
        return cls(
            id=str(payload["id"]),
            project_name=payload.get("project_name") or "",
            project_path=payload.get("project_path") or payload.get("projectPath") or ".",
            step_order=list(payload.get("step_order") or payload.get("stepOrder") or []),
            current_step_index=int(payload.get("current_step_index", 0) or 0),
            steps=cls.steps_from_dict(payload.get("step_results") or payload.get("stepResults")),
            completed=bool(payload.get("completed", False)),
            setup_mode=payload.get("setup_mode"),
            errors=cls.errors_from_list(payload.get("errors")),
            created_at=payload.get("created_at") or utc_now(),
            updated_at=payload.get("updated_at") or utc_now(),
        )


class SessionStore:
    """One JSON document per session inside a directory."""

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    def path_for(self, session_id: str) -> Path:
        return self.directory / f"{session_id}.json"

    def save(self, session: Session) -> None:
        session.updated_at = utc_now()
        write_json_atomic(self.path_for(session.id), session.to_dict())

    def load(self, session_id: str) -> Optional[Session]:
        payload = read_json(self.path_for(session_id))
        if payload is None:
            return None
        return Session.from_dict(payload)

    def list(self) -> List[Session]:
        """All readable sessions, most recently updated first."""
        if not self.directory.is_dir():
            return []
        sessions = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                payload = read_json(path)
            except StateFileError as exc:
                logger.warning("⚠️ Skipping unreadable session file: %s", exc.message)
                continue
            if not payload or "id" not in payload:
                logger.warning("⚠️ Ignoring unrecognised session file %s", path)
                continue
            sessions.append(Session.from_dict(payload))
        sessions.sort(key=lambda item: item.updated_at, reverse=True)
        return sessions

    def latest(self) -> Optional[Session]:
        sessions = self.list()
        return sessions[0] if sessions else None
