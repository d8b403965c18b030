"""Durable JSON documents."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from ..errors import StateFileError


def write_json_atomic(path: Union[str, Path], payload: Mapping[str, Any]) -> None:
    """Atomically replace *path* with the JSON rendering of *payload*.

    The document is written to a temporary file in the same directory and
    renamed over the target, so readers see either the old or the new file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def read_json(path: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """Read a JSON object, returning None when the file does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise StateFileError(
            f"State file {path} is not valid UTF-8 JSON: {exc}",
            suggestions=[
                f"Inspect or move {path} aside",
                "Run the matching reset command to start from a fresh document",
            ],
        ) from exc
    if not isinstance(data, dict):
        raise StateFileError(f"State file {path} does not contain a JSON object")
    return data
