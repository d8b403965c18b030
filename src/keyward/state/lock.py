"""Running-session marker."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

import psutil

from ..errors import ConcurrentSessionError
from ..utils.logging import get_logger
from .records import utc_now

logger = get_logger(__name__)


def lock_path_for(document_path: Union[str, Path]) -> Path:
    document_path = Path(document_path)
    return document_path.with_name(document_path.name + ".lock")


class SessionLock:
    """Exclusive marker file held for the duration of one run.

    The marker records the holder's pid. A marker whose pid is no longer
    alive is considered stale and replaced.
    """

    def __init__(self, document_path: Union[str, Path]) -> None:
        self.path = lock_path_for(document_path)
        self._held = False

    def __enter__(self) -> "SessionLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @property
    def held(self) -> bool:
        return self._held

    def holder(self) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    def is_stale(self) -> bool:
        holder = self.holder()
        if holder is None:
            return False
        pid = holder.get("pid")
        if not isinstance(pid, int):
            return True
        return not psutil.pid_exists(pid)

    def _publish(self) -> None:
        """Create the marker with its content already in place.

        The record is written to a private file and hard-linked to the marker
        path, so other processes never observe an empty marker. Raises
        FileExistsError when a marker is already present.
        """
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(
                    {"pid": os.getpid(), "path": str(self.path), "created_at": utc_now()},
                    handle,
                )
            os.link(tmp_name, self.path)
        finally:
            os.unlink(tmp_name)

    def acquire(self) -> None:
        if self._held:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                self._publish()
            except FileExistsError:
                if self.is_stale():
                    logger.warning("⚠️ Removing stale session marker %s", self.path)
                    self.path.unlink(missing_ok=True)
                    continue
                holder = self.holder() or {}
                raise ConcurrentSessionError(
                    f"Another keyward process (pid {holder.get('pid', '?')}) is working on "
                    f"this session",
                    suggestions=[
                        "Wait for the other run to finish",
                        f"If no other run is active, delete {self.path}",
                    ],
                )
            self._held = True
            return
        raise ConcurrentSessionError(f"Could not acquire session marker {self.path}")

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False
