"""Recovery-mode environment checks and the support report."""

from __future__ import annotations

import platform
import shutil
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from . import __version__
from .state.storage import write_json_atomic
from .utils.logging import get_logger

logger = get_logger(__name__)

CONNECTIVITY_URL = "https://www.google.com"
MIN_FREE_MB = 100


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str

    def to_payload(self) -> dict:
        return {"name": self.name, "ok": self.ok, "detail": self.detail}


def check_python_version() -> CheckResult:
    version = platform.python_version()
    return CheckResult("Python version", sys.version_info >= (3, 9), version)


def check_ssh_client() -> CheckResult:
    path = shutil.which("ssh")
    if not path:
        return CheckResult("OpenSSH client", False, "ssh not found on PATH")
    completed = subprocess.run(
        [path, "-V"], capture_output=True, text=True, timeout=10, check=False
    )
    # ssh -V reports on stderr
    version = (completed.stderr or completed.stdout).strip() or path
    return CheckResult("OpenSSH client", True, version)


def check_internet(url: str = CONNECTIVITY_URL, timeout: float = 5.0) -> CheckResult:
    try:
        response = requests.head(url, timeout=timeout, allow_redirects=True)
    except requests.RequestException as exc:
        return CheckResult("Internet connectivity", False, f"{type(exc).__name__}: {exc}")
    return CheckResult("Internet connectivity", response.status_code < 500, f"HTTP {response.status_code}")


def check_disk_space(path: Union[str, Path] = ".", min_free_mb: int = MIN_FREE_MB) -> CheckResult:
    usage = shutil.disk_usage(str(path))
    free_mb = usage.free // (1024 * 1024)
    return CheckResult("Disk space", free_mb >= min_free_mb, f"{free_mb} MB free")


def run_diagnostics(
    path: Union[str, Path] = ".",
    checks: Optional[List[Callable[[], CheckResult]]] = None,
) -> List[CheckResult]:
    """Run every check; a check that raises is reported as failed."""
    if checks is None:
        checks = [
            check_python_version,
            check_ssh_client,
            check_internet,
            lambda: check_disk_space(path),
        ]
    results = []
    for check in checks:
        try:
            results.append(check())
        except (OSError, subprocess.SubprocessError) as exc:
            name = getattr(check, "__name__", "check").replace("check_", "").replace("_", " ")
            results.append(CheckResult(name, False, str(exc)))
    return results


def format_checks(results: List[CheckResult]) -> str:
    lines = ["📋 System requirements check"]
    for result in results:
        mark = "✓" if result.ok else "✗"
        lines.append(f"  {mark} {result.name}: {result.detail}")
    return "\n".join(lines)


def platform_info() -> Dict[str, Any]:
    return {
        "keyward_version": __version__,
        "python_version": platform.python_version(),
        "platform": platform.platform(),
        "machine": platform.machine(),
        "cwd": str(Path.cwd()),
    }


def write_support_bundle(
    directory: Union[str, Path],
    *,
    failed_step: Optional[str],
    error: Dict[str, Any],
    document: Optional[Dict[str, Any]] = None,
) -> Path:
    """Write ``error-report-<timestamp>.json`` into *directory* and return its path."""
    now = datetime.now(timezone.utc)
    path = Path(directory) / f"error-report-{now.strftime('%Y%m%dT%H%M%S%fZ')}.json"
    write_json_atomic(
        path,
        {
            "timestamp": now.isoformat(),
            "failed_step": failed_step,
            "error": error,
            "system_info": platform_info(),
            "state": document,
        },
    )
    logger.info("📞 Support report written: %s", path)
    return path
