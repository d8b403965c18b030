"""Unified path constants for keyward.

All operator-side data lives under a ``.keyward`` directory, either in the
current working directory or inside a wizard project:

- .keyward/wizard/     # one JSON document per wizard session
- .keyward/state/      # one ProvisioningState document per target host
- .keyward/keys/       # generated SSH key pairs
- .keyward/support/    # diagnostic bundles written from recovery mode
- .keyward/audit/      # latest live security audit per target host
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Union

BASE_DIR_NAME = ".keyward"

CONFIG_FILE = Path(BASE_DIR_NAME) / "config.json"
DEFAULT_CONFIG_FILE = Path("config") / "default_config.json"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def base_dir(root: Optional[Union[str, Path]] = None) -> Path:
    return Path(root or Path.cwd()) / BASE_DIR_NAME


def wizard_dir(root: Optional[Union[str, Path]] = None) -> Path:
    return base_dir(root) / "wizard"


def state_dir(root: Optional[Union[str, Path]] = None) -> Path:
    return base_dir(root) / "state"


def keys_dir(root: Optional[Union[str, Path]] = None) -> Path:
    return base_dir(root) / "keys"


def support_dir(root: Optional[Union[str, Path]] = None) -> Path:
    return base_dir(root) / "support"


def audit_dir(root: Optional[Union[str, Path]] = None) -> Path:
    return base_dir(root) / "audit"


def safe_name(value: str) -> str:
    """Turn a host identifier into something usable as a file name."""
    cleaned = _UNSAFE.sub("_", value.strip()).strip("._")
    return cleaned or "default"


def provisioning_state_path(
    host_identifier: str, root: Optional[Union[str, Path]] = None
) -> Path:
    return state_dir(root) / f"{safe_name(host_identifier)}.json"


def audit_report_path(
    host_identifier: str, root: Optional[Union[str, Path]] = None
) -> Path:
    return audit_dir(root) / f"{safe_name(host_identifier)}.json"
