"""SSH utilities for keyward."""

from .credentials import SSHCredentials
from .errors import SSHCommandError, SSHConnectionError, SSHTimeoutError
from .keys import (
    KeyPair,
    discover_private_key,
    fingerprint,
    generate_key_pair,
    load_key_pair,
)
from .probe import RemoteHostFacts, RemoteProbe
from .session import SSHCommandResult, SSHSession

__all__ = [
    "SSHCredentials",
    "SSHCommandResult",
    "SSHCommandError",
    "SSHConnectionError",
    "SSHTimeoutError",
    "SSHSession",
    "RemoteHostFacts",
    "RemoteProbe",
    "KeyPair",
    "discover_private_key",
    "fingerprint",
    "generate_key_pair",
    "load_key_pair",
]
