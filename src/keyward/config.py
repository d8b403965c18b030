"""Configuration loading utilities for keyward."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .paths import CONFIG_FILE, DEFAULT_CONFIG_FILE

# Load .env file if it exists
load_dotenv()

ENV_PREFIX = "KEYWARD_"

# Login user baked into the stock images of each distribution
OS_DEFAULT_USERS = {
    "ubuntu": "ubuntu",
    "debian": "admin",
    "amazon-linux": "ec2-user",
    "centos": "centos",
    "rhel": "ec2-user",
}


def os_default_username(operating_system: Optional[str]) -> str:
    """Return the stock login user for an operating system (ubuntu when unknown)."""
    return OS_DEFAULT_USERS.get((operating_system or "").lower(), "ubuntu")


def _strip_comments(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if not k.startswith("_")}


@dataclass
class SSHConfig:
    """Connection settings for the target host."""

    host: Optional[str] = None
    operating_system: str = "ubuntu"
    default_port: int = 22
    initial_username: Optional[str] = None   # None: derived from operating_system
    initial_key_path: Optional[str] = None   # key accepted by the stock image
    connect_timeout: int = 20
    command_timeout: int = 600

    @property
    def original_username(self) -> str:
        return self.initial_username or os_default_username(self.operating_system)


@dataclass
class HardeningConfig:
    """Target parameters of the security-hardening workflow."""

    target_port: int = 2847
    deployment_username: str = "deploy"
    key_only_auth: bool = True
    enable_firewall: bool = True
    enable_intrusion_prevention: bool = True
    enable_auto_updates: bool = True
    allowed_ports: List[int] = field(default_factory=lambda: [80, 443])
    key_type: str = "ed25519"


@dataclass
class WizardConfig:
    """Inputs for the opaque wizard steps."""

    provider: str = "static"
    resource_name: Optional[str] = None
    domain: Optional[str] = None
    subdomains: List[str] = field(default_factory=list)
    contact_email: Optional[str] = None
    repository: Optional[str] = None
    branch: str = "main"
    start_command: Optional[str] = None
    deploy_commands: List[str] = field(default_factory=list)
    required_credentials: List[str] = field(default_factory=list)
    optional_credentials: List[str] = field(default_factory=list)


@dataclass
class InteractionConfig:
    """Configuration for user interaction."""

    mode: str = "cli"  # "cli" | "auto"
    max_retries: int = 3
    use_rich: bool = True


@dataclass
class AppConfig:
    """Top-level configuration."""

    ssh: SSHConfig = field(default_factory=SSHConfig)
    hardening: HardeningConfig = field(default_factory=HardeningConfig)
    wizard: WizardConfig = field(default_factory=WizardConfig)
    interaction: InteractionConfig = field(default_factory=InteractionConfig)
    dry_run: bool = False
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        ssh_payload = _strip_comments(payload.get("ssh", {}) or {})
        hardening_payload = _strip_comments(payload.get("hardening", {}) or {})
        wizard_payload = _strip_comments(payload.get("wizard", {}) or {})
        interaction_payload = _strip_comments(payload.get("interaction", {}) or {})

        try:
            return cls(
                ssh=SSHConfig(**{**SSHConfig().__dict__, **ssh_payload}),
                hardening=HardeningConfig(
                    **{**HardeningConfig().__dict__, **hardening_payload}
                ),
                wizard=WizardConfig(**{**WizardConfig().__dict__, **wizard_payload}),
                interaction=InteractionConfig(
                    **{**InteractionConfig().__dict__, **interaction_payload}
                ),
                dry_run=bool(payload.get("dry_run", False)),
            )
        except TypeError as exc:
            raise ConfigurationError(
                f"Unknown configuration key: {exc}",
                suggestions=["Compare your config file with config/default_config.json"],
            ) from exc

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload.pop("source", None)
        return payload

    def validate(self) -> None:
        """Reject configurations the hardening workflow cannot act on."""
        if not self.ssh.host:
            raise ConfigurationError(
                "No target host configured",
                suggestions=[
                    "Pass --host or set ssh.host in .keyward/config.json",
                    f"Or export {ENV_PREFIX}SSH_HOST",
                ],
            )
        port = self.hardening.target_port
        if not 1 <= int(port) <= 65535:
            raise ConfigurationError(
                f"Invalid target SSH port: {port}",
                suggestions=["Choose a port between 1024 and 65535"],
            )
        if int(port) == self.ssh.default_port and not self.hardening.key_only_auth:
            raise ConfigurationError(
                "Hardening would change nothing: target port equals the default port "
                "and password authentication stays enabled",
                suggestions=["Pick a non-default target_port or enable key_only_auth"],
            )
        if not (self.hardening.deployment_username or "").strip():
            raise ConfigurationError(
                "Deployment username must not be empty",
                suggestions=["Set hardening.deployment_username (e.g. 'deploy')"],
            )


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    env_host = os.getenv(f"{ENV_PREFIX}SSH_HOST")
    if env_host:
        config.ssh.host = env_host

    env_username = os.getenv(f"{ENV_PREFIX}SSH_USERNAME")
    if env_username:
        config.ssh.initial_username = env_username

    env_port = os.getenv(f"{ENV_PREFIX}SSH_PORT")
    if env_port:
        config.ssh.default_port = int(env_port)

    env_key_path = os.getenv(f"{ENV_PREFIX}SSH_KEY_PATH")
    if env_key_path:
        config.ssh.initial_key_path = env_key_path

    env_target_port = os.getenv(f"{ENV_PREFIX}TARGET_PORT")
    if env_target_port:
        config.hardening.target_port = int(env_target_port)

    env_deploy_user = os.getenv(f"{ENV_PREFIX}DEPLOY_USER")
    if env_deploy_user:
        config.hardening.deployment_username = env_deploy_user

    env_dry_run = os.getenv(f"{ENV_PREFIX}DRY_RUN")
    if env_dry_run:
        config.dry_run = _env_bool(env_dry_run)

    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default locations.

    Environment variables (higher priority than config file):
    - KEYWARD_SSH_HOST: Target host address
    - KEYWARD_SSH_USERNAME: Stock login user (overrides the OS default)
    - KEYWARD_SSH_PORT: Default (pre-hardening) SSH port
    - KEYWARD_SSH_KEY_PATH: Private key accepted by the stock image
    - KEYWARD_TARGET_PORT: SSH port after hardening
    - KEYWARD_DEPLOY_USER: Deployment user created by hardening
    - KEYWARD_DRY_RUN: Simulate cloud resource calls
    """
    if path and not Path(path).is_file():
        raise ConfigurationError(
            f"Configuration file not found: {path}",
            suggestions=["Check the --config path", f"Or create {CONFIG_FILE}"],
        )

    candidate_paths = []
    if path:
        candidate_paths.append(Path(path))
    candidate_paths.extend([CONFIG_FILE, DEFAULT_CONFIG_FILE])

    for candidate in candidate_paths:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                try:
                    data = json.load(handle)
                except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                    raise ConfigurationError(
                        f"Configuration file {candidate} is not valid JSON: {exc}"
                    ) from exc
            config = AppConfig.from_dict(data)
            config.source = str(candidate)
            return _apply_env_overrides(config)

    return _apply_env_overrides(AppConfig())
