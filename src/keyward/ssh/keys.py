"""Local SSH key-pair generation."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import paramiko
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class KeyPair:
    private_key_path: str
    public_key_path: str
    public_key: str
    fingerprint: str

    def to_payload(self) -> dict:
        return {
            "private_key_path": self.private_key_path,
            "public_key_path": self.public_key_path,
            "public_key": self.public_key,
            "fingerprint": self.fingerprint,
        }


def fingerprint(public_key: str) -> str:
    """OpenSSH-style ``SHA256:`` fingerprint of a public key line."""
    blob = paramiko.PublicBlob.from_string(public_key.strip())
    try:
        key = paramiko.PKey.from_type_string(blob.key_type, blob.key_blob)
    except (paramiko.UnknownKeyType, paramiko.SSHException) as exc:
        raise ValueError(f"Unsupported public key: {exc}") from exc
    return key.fingerprint


def load_key_pair(private_key_path: Union[str, Path]) -> KeyPair:
    """Describe an existing key pair; the public half must sit beside it as ``.pub``."""
    private_path = Path(private_key_path)
    public_path = Path(f"{private_path}.pub")
    if not private_path.is_file() or not public_path.is_file():
        raise FileNotFoundError(f"Key pair not found at {private_path}")
    public_key = public_path.read_text(encoding="utf-8").strip()
    return KeyPair(
        private_key_path=str(private_path),
        public_key_path=str(public_path),
        public_key=public_key,
        fingerprint=fingerprint(public_key),
    )


def generate_key_pair(
    directory: Union[str, Path], name: str, *, comment: str = "keyward"
) -> KeyPair:
    """Write a fresh Ed25519 key pair in OpenSSH format.

    The private key file is created with mode 0600.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    private_path = directory / name
    public_path = directory / f"{name}.pub"

    key = Ed25519PrivateKey.generate()
    private_bytes = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.OpenSSH,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_line = key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    ).decode("ascii")
    public_line = f"{public_line} {comment}"

    fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(private_bytes)
    os.chmod(private_path, 0o600)
    public_path.write_text(public_line + "\n", encoding="utf-8")

    pair = KeyPair(
        private_key_path=str(private_path),
        public_key_path=str(public_path),
        public_key=public_line,
        fingerprint=fingerprint(public_line),
    )
    logger.info("🔑 Generated SSH key %s (%s)", private_path, pair.fingerprint)
    return pair


DEFAULT_KEY_NAMES = ("id_ed25519", "id_ecdsa", "id_rsa")


def discover_private_key(ssh_dir: Union[str, Path, None] = None) -> Optional[str]:
    """Return the first conventional private key found in ``~/.ssh``, if any."""
    directory = Path(ssh_dir) if ssh_dir else Path.home() / ".ssh"
    for name in DEFAULT_KEY_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return str(candidate)
    return None
