"""Live security audit of a host, scored against the hardening targets."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..config import AppConfig
from ..ssh import SSHSession
from ..utils.logging import get_logger
from . import commands

logger = get_logger(__name__)

PENDING_UPDATES_COMMAND = "apt list --upgradable 2>/dev/null | grep -c upgradable"

RISK_LEVELS = [
    (90, "🛡️ Excellent security posture"),
    (80, "✅ Good security configuration"),
    (60, "⚠️ Moderate security, improvements needed"),
    (40, "🔶 Basic security, significant improvements needed"),
    (0, "🚨 Poor security, immediate attention required"),
]


@dataclass
class AuditCheck:
    name: str
    passed: bool
    weight: int
    severity: str
    description: str
    recommendation: str

    def to_payload(self) -> dict:
        return {
            "name": self.name,
            "passed": self.passed,
            "weight": self.weight,
            "severity": self.severity,
            "description": self.description,
            "recommendation": self.recommendation,
        }


@dataclass
class AuditReport:
    host: str
    port: int
    username: str
    checks: List[AuditCheck] = field(default_factory=list)
    pending_updates: Optional[int] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def score(self) -> int:
        return min(100, sum(check.weight for check in self.checks if check.passed))

    @property
    def risk_level(self) -> str:
        for threshold, label in RISK_LEVELS:
            if self.score >= threshold:
                return label
        return RISK_LEVELS[-1][1]

    @property
    def failed(self) -> List[AuditCheck]:
        return [check for check in self.checks if not check.passed]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "timestamp": self.timestamp,
            "score": self.score,
            "risk_level": self.risk_level,
            "pending_updates": self.pending_updates,
            "checks": [check.to_payload() for check in self.checks],
        }


def _pending_updates(session: SSHSession) -> Optional[int]:
    result = session.run(PENDING_UPDATES_COMMAND)
    try:
        return int(result.stdout.strip() or 0)
    except ValueError:
        logger.debug("Could not parse pending update count: %r", result.stdout)
        return None


def audit_host(session: SSHSession, config: AppConfig) -> AuditReport:
    """Run the read-only checks that mirror each hardening step."""
    hardening = config.hardening
    port = session.credentials.port
    report = AuditReport(
        host=session.credentials.host,
        port=port,
        username=session.credentials.username,
    )

    sshd_ok = session.run(
        commands.sshd_hardened_check(
            hardening.target_port,
            hardening.deployment_username,
            key_only=hardening.key_only_auth,
        )
    ).ok
    report.checks.append(
        AuditCheck(
            name="ssh",
            passed=sshd_ok,
            weight=40,
            severity="high",
            description=(
                f"sshd listens on {hardening.target_port}, refuses root and only admits "
                f"{hardening.deployment_username}"
            ),
            recommendation="Run 'keyward security setup' to apply the SSH hardening",
        )
    )

    ports = [port, *(int(extra) for extra in hardening.allowed_ports)]
    status = session.run(commands.firewall_status())
    report.checks.append(
        AuditCheck(
            name="firewall",
            passed=commands.firewall_configured(status.stdout, ports),
            weight=30,
            severity="high",
            description=f"ufw is active and allows {', '.join(f'{p}/tcp' for p in ports)}",
            recommendation="Enable ufw with a default-deny policy",
        )
    )

    report.checks.append(
        AuditCheck(
            name="fail2ban",
            passed=session.run(commands.fail2ban_configured(port)).ok,
            weight=20,
            severity="medium",
            description=f"fail2ban runs an sshd jail on port {port}",
            recommendation="Install fail2ban with an sshd jail on the SSH port",
        )
    )

    report.checks.append(
        AuditCheck(
            name="auto_updates",
            passed=session.run(commands.auto_updates_configured()).ok,
            weight=10,
            severity="medium",
            description="unattended-upgrades installs security updates",
            recommendation="Enable unattended security upgrades",
        )
    )

    report.pending_updates = _pending_updates(session)
    logger.info("🔍 Audit of %s: score %d/100", report.host, report.score)
    return report
