"""The seven hardening steps, in their fixed order."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Union

from ..errors import ConfigurationError, OrderingViolation, TransientFailure
from ..orchestrator.models import Step, StepContext
from ..paths import safe_name
from ..ssh import KeyPair, generate_key_pair, load_key_pair
from ..utils.logging import get_logger
from . import commands
from .negotiator import ConnectionNegotiator, ConnectionScenario

logger = get_logger(__name__)

GENERATE_KEY_PAIR = "generate_key_pair"
DEPLOY_PUBLIC_KEY = "deploy_public_key"
CREATE_DEPLOYMENT_USER = "create_deployment_user"
APPLY_SSH_HARDENING = "apply_ssh_hardening"
CONFIGURE_FIREWALL = "configure_firewall"
CONFIGURE_INTRUSION_PREVENTION = "configure_intrusion_prevention"
ENABLE_AUTO_UPDATES = "enable_auto_updates"

HARDENING_STEP_NAMES = [
    GENERATE_KEY_PAIR,
    DEPLOY_PUBLIC_KEY,
    CREATE_DEPLOYMENT_USER,
    APPLY_SSH_HARDENING,
    CONFIGURE_FIREWALL,
    CONFIGURE_INTRUSION_PREVENTION,
    ENABLE_AUTO_UPDATES,
]

SUPPORTED_KEY_TYPES = ("ed25519",)


class HardeningStep(Step):
    """Base for steps that act on the host through the negotiator."""

    def __init__(self, negotiator: ConnectionNegotiator) -> None:
        self.negotiator = negotiator

    def key_data(self, ctx: StepContext) -> Dict[str, Any]:
        data = ctx.tracker.step_data(GENERATE_KEY_PAIR)
        if not data.get("private_key_path") or not data.get("public_key"):
            raise OrderingViolation(
                f"Step '{self.name}' needs the key pair recorded by '{GENERATE_KEY_PAIR}'"
            )
        return data


class GenerateKeyPair(HardeningStep):
    name = GENERATE_KEY_PAIR
    description = "Generate the SSH key pair used after hardening"
    critical = True

    def __init__(self, negotiator: ConnectionNegotiator, keys_dir: Union[str, Path]) -> None:
        super().__init__(negotiator)
        self.keys_dir = Path(keys_dir)

    def key_name(self, ctx: StepContext) -> str:
        return f"keyward_{safe_name(self.negotiator.host)}_{ctx.config.hardening.key_type}"

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        key_type = ctx.config.hardening.key_type
        if key_type not in SUPPORTED_KEY_TYPES:
            raise ConfigurationError(
                f"Unsupported key type: {key_type}",
                suggestions=["Set hardening.key_type to 'ed25519'"],
            )

        existing = self.keys_dir / self.key_name(ctx)
        reused = existing.is_file() and Path(f"{existing}.pub").is_file()
        if reused:
            pair: KeyPair = load_key_pair(existing)
            logger.info("🔑 Reusing SSH key %s (%s)", pair.private_key_path, pair.fingerprint)
        else:
            pair = generate_key_pair(self.keys_dir, self.key_name(ctx))
        return {**pair.to_payload(), "key_type": key_type, "reused": reused}


class DeployPublicKey(HardeningStep):
    name = DEPLOY_PUBLIC_KEY
    description = "Authorize the new key for the account currently used to log in"
    critical = True
    prerequisites = (GENERATE_KEY_PAIR,)

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        key = self.key_data(ctx)
        with self.negotiator.ensure_connected() as session:
            username = session.credentials.username
            port = session.credentials.port
            session.check(commands.authorize_key_for_current_user(key["public_key"]))
            facts = self.negotiator.probe.collect(session)
            logger.info("🖥️ %s: %s (%s)", facts.hostname, facts.os_release, facts.kernel)

        scenario = ConnectionScenario(
            username=username,
            port=port,
            private_key_path=key["private_key_path"],
            is_initial_connection=False,
            label="new key",
        )
        if not self.negotiator.verify_scenario(scenario):
            raise TransientFailure(
                f"The new key was installed for {username} but login with it failed",
                suggestions=["Retry the step; the key installation is idempotent"],
            )
        self.negotiator.record(scenario)
        return {
            "authorized_user": username,
            "port": port,
            "fingerprint": key["fingerprint"],
            "verified": True,
            "host_facts": facts.to_payload(),
        }


class CreateDeploymentUser(HardeningStep):
    name = CREATE_DEPLOYMENT_USER
    description = "Create the deployment user with sudo rights and the new key"
    critical = True
    prerequisites = (GENERATE_KEY_PAIR, DEPLOY_PUBLIC_KEY)

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        key = self.key_data(ctx)
        username = ctx.config.hardening.deployment_username
        with self.negotiator.ensure_connected() as session:
            port = session.credentials.port
            created = False
            if not session.run(commands.user_exists(username)).ok:
                logger.info("👤 Creating user %s", username)
                session.check(commands.create_user(username))
                created = True
            else:
                logger.info("👤 User %s already exists", username)
            session.check(commands.grant_passwordless_sudo(username))
            session.check(commands.authorize_key_for_user(username, key["public_key"]))

        scenario = ConnectionScenario(
            username=username,
            port=port,
            private_key_path=key["private_key_path"],
            is_initial_connection=False,
            label="deployment user",
        )
        if not self.negotiator.verify_scenario(scenario):
            raise TransientFailure(
                f"User {username} exists but cannot log in with the new key",
                suggestions=[
                    f"Check /home/{username}/.ssh/authorized_keys ownership and mode",
                    "Retry the step; user creation is idempotent",
                ],
            )
        self.negotiator.record(scenario)
        return {
            "username": username,
            "created": created,
            "port": port,
            "fingerprint": key["fingerprint"],
            "verified_login": True,
        }


class ApplySSHHardening(HardeningStep):
    name = APPLY_SSH_HARDENING
    description = "Move SSH to the target port, disable passwords and root login"
    critical = True
    prerequisites = (DEPLOY_PUBLIC_KEY, CREATE_DEPLOYMENT_USER)

    def check_ready(self, ctx: StepContext) -> None:
        """The new access path has to be proven before the old one is narrowed."""
        if not ctx.tracker.step_data(DEPLOY_PUBLIC_KEY).get("verified"):
            raise OrderingViolation(
                "The deployed key has not been verified; refusing to change sshd",
                suggestions=["Reset and rerun the key deployment step"],
            )
        if not ctx.tracker.step_data(CREATE_DEPLOYMENT_USER).get("verified_login"):
            raise OrderingViolation(
                "The deployment user's login has not been verified; refusing to change sshd",
                suggestions=["Reset and rerun the deployment user step"],
            )

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        key = self.key_data(ctx)
        hardening = ctx.config.hardening
        username = hardening.deployment_username
        target_port = hardening.target_port
        scenario = ConnectionScenario(
            username=username,
            port=target_port,
            private_key_path=key["private_key_path"],
            is_initial_connection=False,
            label="hardened",
        )

        with self.negotiator.ensure_connected() as session:
            check = commands.sshd_hardened_check(target_port, username, key_only=hardening.key_only_auth)
            already = session.run(check).ok
            if already:
                logger.info("✅ sshd already hardened")
            else:
                logger.info("🔒 Writing hardened sshd configuration (port %s)", target_port)
                session.check(commands.backup_sshd_config())
                session.check(
                    commands.write_file(
                        commands.SSHD_CONFIG,
                        commands.render_sshd_config(
                            target_port, [username], key_only=hardening.key_only_auth
                        ),
                    )
                )
                validation = session.run(commands.validate_sshd_config())
                if not validation.ok:
                    session.run(commands.restore_sshd_config())
                    raise ConfigurationError(
                        f"sshd rejected the generated configuration: {validation.stderr}",
                        suggestions=["The original sshd_config was restored"],
                    )
                session.check(commands.allow_port_if_firewall_active(target_port))
                session.check(commands.restart_sshd())

            # the session opened before the restart stays usable for a rollback
            if not self.negotiator.verify_scenario(scenario):
                if not already:
                    logger.error("⛔ New access path failed; restoring the previous sshd_config")
                    session.run(commands.restore_sshd_config())
                    session.run(commands.restart_sshd())
                raise TransientFailure(
                    f"Could not log in as {username} on port {target_port} after hardening",
                    suggestions=[
                        f"Make sure the provider firewall allows TCP {target_port}",
                        "Retry once the port is reachable",
                    ],
                )

        ctx.tracker.update_connection(
            current_port=target_port,
            current_username=username,
            deployment_username=username,
            private_key_path=key["private_key_path"],
            hardening_applied=True,
        )
        return {
            "port": target_port,
            "username": username,
            "key_only_auth": hardening.key_only_auth,
            "already_configured": already,
        }


class ConfigureFirewall(HardeningStep):
    name = CONFIGURE_FIREWALL
    description = "Deny inbound traffic except SSH and the configured ports"
    prerequisites = (APPLY_SSH_HARDENING,)

    def skip_reason(self, ctx: StepContext):
        if not ctx.config.hardening.enable_firewall:
            return "firewall disabled in configuration"
        return None

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        extra_ports: List[int] = [int(port) for port in ctx.config.hardening.allowed_ports]
        default_port = ctx.config.ssh.default_port
        with self.negotiator.ensure_connected() as session:
            ssh_port = session.credentials.port
            if not session.run("command -v ufw > /dev/null").ok:
                commands.run_apt(session, commands.apt_install(["ufw"]))
            status = session.run(commands.firewall_status())
            if commands.firewall_configured(status.stdout, [ssh_port, *extra_ports]):
                logger.info("✅ Firewall already configured")
                return {"ssh_port": ssh_port, "allowed_ports": extra_ports, "already_configured": True}

            session.check(commands.configure_firewall(ssh_port, extra_ports))
            current = ConnectionScenario(
                username=session.credentials.username,
                port=ssh_port,
                private_key_path=session.credentials.key_path,
                is_initial_connection=False,
                label="firewalled",
            )
            if not self.negotiator.verify_scenario(current):
                session.run("sudo ufw disable")
                raise TransientFailure(
                    "Firewall blocked the SSH port; it has been disabled again",
                    suggestions=["Check the ufw rules for the SSH port, then retry"],
                )
            if ssh_port != default_port and default_port not in extra_ports:
                session.run(commands.remove_firewall_port(default_port))
        return {"ssh_port": ssh_port, "allowed_ports": extra_ports, "already_configured": False}


class ConfigureIntrusionPrevention(HardeningStep):
    name = CONFIGURE_INTRUSION_PREVENTION
    description = "Install fail2ban with an sshd jail on the SSH port"
    prerequisites = (APPLY_SSH_HARDENING,)

    def skip_reason(self, ctx: StepContext):
        if not ctx.config.hardening.enable_intrusion_prevention:
            return "intrusion prevention disabled in configuration"
        return None

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        with self.negotiator.ensure_connected() as session:
            port = session.credentials.port
            if session.run(commands.fail2ban_configured(port)).ok:
                logger.info("✅ fail2ban already configured")
                return {"port": port, "jail": "sshd", "already_configured": True}
            commands.run_apt(session, commands.apt_install(["fail2ban"]))
            session.check(
                commands.write_file(commands.FAIL2BAN_JAIL, commands.render_fail2ban_jail(port))
            )
            session.check(commands.enable_fail2ban())
        return {"port": port, "jail": "sshd", "already_configured": False}


class EnableAutoUpdates(HardeningStep):
    name = ENABLE_AUTO_UPDATES
    description = "Enable unattended security upgrades"
    prerequisites = (APPLY_SSH_HARDENING,)

    def skip_reason(self, ctx: StepContext):
        if not ctx.config.hardening.enable_auto_updates:
            return "automatic updates disabled in configuration"
        return None

    def run(self, ctx: StepContext) -> Dict[str, Any]:
        with self.negotiator.ensure_connected() as session:
            if session.run(commands.auto_updates_configured()).ok:
                logger.info("✅ Automatic updates already enabled")
                return {"already_configured": True}
            commands.run_apt(
                session, commands.apt_install(["unattended-upgrades", "apt-listchanges"])
            )
            session.check(commands.write_file(commands.AUTO_UPGRADES, commands.AUTO_UPGRADES_CONTENT))
            session.check(
                commands.write_file(commands.UNATTENDED_UPGRADES, commands.UNATTENDED_UPGRADES_CONTENT)
            )
            session.check(commands.enable_unattended_upgrades())
        return {"already_configured": False}


def build_hardening_steps(negotiator: ConnectionNegotiator, keys_dir: Union[str, Path]) -> List[Step]:
    return [
        GenerateKeyPair(negotiator, keys_dir),
        DeployPublicKey(negotiator),
        CreateDeploymentUser(negotiator),
        ApplySSHHardening(negotiator),
        ConfigureFirewall(negotiator),
        ConfigureIntrusionPrevention(negotiator),
        EnableAutoUpdates(negotiator),
    ]
