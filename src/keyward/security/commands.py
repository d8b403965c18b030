"""Remote command scripts used by the hardening steps.

Each builder returns a shell command string. Every write is guarded so that
running a command twice converges on the same remote state.
"""

from __future__ import annotations

import shlex
import time
from typing import Callable, Iterable

from ..ssh import SSHCommandError, SSHCommandResult, SSHSession
from ..utils.logging import get_logger

logger = get_logger(__name__)

SSHD_CONFIG = "/etc/ssh/sshd_config"
SSHD_BACKUP = "/etc/ssh/sshd_config.keyward-backup"
FAIL2BAN_JAIL = "/etc/fail2ban/jail.d/keyward-sshd.conf"
AUTO_UPGRADES = "/etc/apt/apt.conf.d/20auto-upgrades"
UNATTENDED_UPGRADES = "/etc/apt/apt.conf.d/50unattended-upgrades"

APT_LOCK_MARKERS = (
    "Could not get lock",
    "dpkg frontend lock",
    "Unable to acquire the dpkg frontend lock",
    "is another process using it",
    "/var/lib/dpkg/lock",
)
APT_MAX_TRIES = 5
APT_BASE_DELAY = 5.0

APT_ENV = "sudo DEBIAN_FRONTEND=noninteractive"


def q(value: object) -> str:
    return shlex.quote(str(value))


def write_file(path: str, content: str, mode: str = "644") -> str:
    """Replace a root-owned file with *content*."""
    return (
        f"printf '%s\\n' {q(content.rstrip())} | sudo tee {q(path)} > /dev/null"
        f" && sudo chmod {mode} {q(path)}"
    )


def is_apt_lock_error(result: SSHCommandResult) -> bool:
    text = f"{result.stdout}\n{result.stderr}"
    return any(marker in text for marker in APT_LOCK_MARKERS)


def run_apt(
    session: SSHSession,
    command: str,
    *,
    max_tries: int = APT_MAX_TRIES,
    base_delay: float = APT_BASE_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> SSHCommandResult:
    """Run a package-manager command, waiting out dpkg/apt lock conflicts.

    Lock conflicts are retried with exponential backoff; any other failure
    raises SSHCommandError straight away.
    """
    attempt = 1
    while True:
        result = session.run(command)
        if result.ok:
            return result
        if not is_apt_lock_error(result) or attempt == max_tries:
            raise SSHCommandError(result)
        delay = base_delay * (2 ** (attempt - 1))
        logger.warning(
            "⚠️ APT lock conflict (attempt %d/%d), waiting %.0fs", attempt, max_tries, delay
        )
        sleep(delay)
        attempt += 1


def apt_install(packages: Iterable[str]) -> str:
    names = " ".join(q(name) for name in packages)
    return f"{APT_ENV} apt-get update -q && {APT_ENV} apt-get install -y -q {names}"


# Authorized keys -------------------------------------------------------------
def authorize_key_for_current_user(public_key: str) -> str:
    key = q(public_key.strip())
    return (
        "mkdir -p ~/.ssh && chmod 700 ~/.ssh && touch ~/.ssh/authorized_keys"
        " && chmod 600 ~/.ssh/authorized_keys"
        f" && (grep -qxF {key} ~/.ssh/authorized_keys"
        f" || printf '%s\\n' {key} >> ~/.ssh/authorized_keys)"
    )


def authorize_key_for_user(username: str, public_key: str) -> str:
    user = q(username)
    key = q(public_key.strip())
    home = f"$(getent passwd {user} | cut -d: -f6)"
    return (
        f'HOME_DIR="{home}"'
        f' && sudo install -d -m 700 -o {user} -g {user} "$HOME_DIR/.ssh"'
        f' && sudo touch "$HOME_DIR/.ssh/authorized_keys"'
        f' && (sudo grep -qxF {key} "$HOME_DIR/.ssh/authorized_keys"'
        f" || printf '%s\\n' {key} | sudo tee -a \"$HOME_DIR/.ssh/authorized_keys\" > /dev/null)"
        f' && sudo chown {user}:{user} "$HOME_DIR/.ssh/authorized_keys"'
        f' && sudo chmod 600 "$HOME_DIR/.ssh/authorized_keys"'
    )


# Deployment user -------------------------------------------------------------
def user_exists(username: str) -> str:
    return f"id -u {q(username)} > /dev/null 2>&1"


def create_user(username: str) -> str:
    user = q(username)
    return f"sudo useradd -m -s /bin/bash {user} && sudo usermod -aG sudo {user}"


def sudoers_path(username: str) -> str:
    return f"/etc/sudoers.d/90-keyward-{username}"


def grant_passwordless_sudo(username: str) -> str:
    """Install a sudoers drop-in, validated with visudo before it goes live."""
    staged = f"/tmp/keyward-sudoers-{username}"
    rule = f"{username} ALL=(ALL) NOPASSWD:ALL"
    return (
        f"printf '%s\\n' {q(rule)} > {q(staged)}"
        f" && sudo visudo -c -f {q(staged)}"
        f" && sudo install -m 0440 -o root -g root {q(staged)} {q(sudoers_path(username))}"
        f" && rm -f {q(staged)}"
    )


# SSH daemon ------------------------------------------------------------------
def render_sshd_config(port: int, allow_users: Iterable[str], *, key_only: bool = True) -> str:
    users = " ".join(allow_users)
    return "\n".join(
        [
            "# Managed by keyward",
            f"Port {port}",
            "",
            "# Authentication",
            "PermitRootLogin no",
            f"PasswordAuthentication {'no' if key_only else 'yes'}",
            "PubkeyAuthentication yes",
            "AuthorizedKeysFile .ssh/authorized_keys",
            "PermitEmptyPasswords no",
            "KbdInteractiveAuthentication no",
            "UsePAM yes",
            "",
            "# Session limits",
            "X11Forwarding no",
            "PrintMotd no",
            "ClientAliveInterval 300",
            "ClientAliveCountMax 2",
            "MaxAuthTries 3",
            "LoginGraceTime 60",
            "",
            f"AllowUsers {users}",
            "",
            "SyslogFacility AUTH",
            "LogLevel INFO",
            "Subsystem sftp /usr/lib/openssh/sftp-server",
        ]
    )


def sshd_hardened_check(port: int, username: str, *, key_only: bool = True) -> str:
    """Exit 0 only when the live sshd configuration already matches."""
    password = "no" if key_only else "yes"
    checks = [
        f"port {port}",
        "permitrootlogin no",
        f"passwordauthentication {password}",
        f"allowusers.*\\b{username}\\b",
    ]
    effective = "sudo sshd -T 2>/dev/null"
    return " && ".join(f"{effective} | grep -qiE {q('^' + check)}" for check in checks)


def backup_sshd_config() -> str:
    return f"sudo test -f {SSHD_BACKUP} || sudo cp -p {SSHD_CONFIG} {SSHD_BACKUP}"


def validate_sshd_config() -> str:
    return "sudo sshd -t"


def restore_sshd_config() -> str:
    return f"sudo cp -p {SSHD_BACKUP} {SSHD_CONFIG}"


def restart_sshd() -> str:
    # the unit is "ssh" on Debian/Ubuntu and "sshd" elsewhere
    return "sudo systemctl restart ssh 2>/dev/null || sudo systemctl restart sshd"


def allow_port_if_firewall_active(port: int) -> str:
    return (
        "if command -v ufw > /dev/null && sudo ufw status | grep -q 'Status: active'; then"
        f" sudo ufw allow {int(port)}/tcp comment 'SSH'; fi"
    )


# Firewall --------------------------------------------------------------------
def firewall_status() -> str:
    return "sudo ufw status"


def firewall_configured(status_output: str, ports: Iterable[int]) -> bool:
    if "Status: active" not in status_output:
        return False
    lines = status_output.splitlines()
    for port in ports:
        marker = f"{int(port)}/tcp"
        if not any(line.strip().startswith(marker) and "ALLOW" in line for line in lines):
            return False
    return True


def configure_firewall(ssh_port: int, extra_ports: Iterable[int]) -> str:
    parts = [
        "sudo ufw default deny incoming",
        "sudo ufw default allow outgoing",
        f"sudo ufw allow {int(ssh_port)}/tcp comment 'SSH'",
    ]
    parts.extend(f"sudo ufw allow {int(port)}/tcp" for port in extra_ports)
    parts.append("sudo ufw --force enable")
    return " && ".join(parts)


def remove_firewall_port(port: int) -> str:
    return f"sudo ufw delete allow {int(port)}/tcp || true"


# Intrusion prevention --------------------------------------------------------
def render_fail2ban_jail(port: int, *, maxretry: int = 3, bantime: int = 3600, findtime: int = 600) -> str:
    return "\n".join(
        [
            "[sshd]",
            "enabled = true",
            f"port = {port}",
            "filter = sshd",
            "backend = systemd",
            f"maxretry = {maxretry}",
            f"bantime = {bantime}",
            f"findtime = {findtime}",
            "ignoreip = 127.0.0.1/8 ::1",
        ]
    )


def fail2ban_configured(port: int) -> str:
    return (
        "systemctl is-active --quiet fail2ban"
        f" && sudo grep -qE {q('^port = ' + str(port) + '$')} {FAIL2BAN_JAIL}"
        " && sudo fail2ban-client status sshd > /dev/null"
    )


def enable_fail2ban() -> str:
    return "sudo systemctl enable fail2ban && sudo systemctl restart fail2ban"


# Automatic updates -----------------------------------------------------------
AUTO_UPGRADES_CONTENT = "\n".join(
    [
        'APT::Periodic::Update-Package-Lists "1";',
        'APT::Periodic::Download-Upgradeable-Packages "1";',
        'APT::Periodic::AutocleanInterval "7";',
        'APT::Periodic::Unattended-Upgrade "1";',
    ]
)

UNATTENDED_UPGRADES_CONTENT = "\n".join(
    [
        "Unattended-Upgrade::Allowed-Origins {",
        '    "${distro_id}:${distro_codename}";',
        '    "${distro_id}:${distro_codename}-security";',
        '    "${distro_id}ESMApps:${distro_codename}-apps-security";',
        '    "${distro_id}ESM:${distro_codename}-infra-security";',
        "};",
        'Unattended-Upgrade::Remove-Unused-Kernel-Packages "true";',
        'Unattended-Upgrade::Remove-Unused-Dependencies "true";',
        'Unattended-Upgrade::Automatic-Reboot "false";',
    ]
)


def auto_updates_configured() -> str:
    return (
        "dpkg -s unattended-upgrades > /dev/null 2>&1"
        f" && grep -q 'Unattended-Upgrade \"1\"' {AUTO_UPGRADES}"
    )


def enable_unattended_upgrades() -> str:
    return "sudo systemctl enable unattended-upgrades && sudo systemctl restart unattended-upgrades"
