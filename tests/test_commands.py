"""Remote command builders and the package-manager retry loop."""

import pytest

from keyward.security import commands
from keyward.ssh import SSHCommandError, SSHCommandResult

LOCKED = "E: Could not get lock /var/lib/dpkg/lock-frontend. It is held by process 1234 (unattended-upgr)"


class ScriptedSession:
    """Answers run() from a list of (exit_status, stderr) pairs."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.commands = []

    def run(self, command, timeout=None):
        self.commands.append(command)
        status, stderr = self.answers.pop(0)
        return SSHCommandResult(command=command, stdout="", stderr=stderr, exit_status=status)


class TestRunApt:
    def test_lock_conflicts_back_off_exponentially(self):
        session = ScriptedSession([(100, LOCKED), (100, LOCKED), (0, "")])
        delays = []

        result = commands.run_apt(session, "apt-get install -y ufw", sleep=delays.append)

        assert result.ok
        assert delays == [5.0, 10.0]
        assert len(session.commands) == 3

    def test_other_failures_are_raised_immediately(self):
        session = ScriptedSession([(100, "E: Unable to locate package nope")])
        delays = []

        with pytest.raises(SSHCommandError):
            commands.run_apt(session, "apt-get install -y nope", sleep=delays.append)
        assert delays == []

    def test_gives_up_after_max_tries(self):
        session = ScriptedSession([(100, LOCKED)] * 5)
        delays = []

        with pytest.raises(SSHCommandError):
            commands.run_apt(session, "apt-get update", sleep=delays.append)
        assert delays == [5.0, 10.0, 20.0, 40.0]


class TestSshd:
    def test_rendered_config_is_key_only_for_one_user(self):
        text = commands.render_sshd_config(2847, ["deploy"])

        assert "\nPort 2847\n" in text
        assert "PasswordAuthentication no" in text
        assert "PermitRootLogin no" in text
        assert "\nAllowUsers deploy\n" in text

    def test_password_auth_can_stay_enabled(self):
        text = commands.render_sshd_config(22, ["deploy"], key_only=False)
        assert "PasswordAuthentication yes" in text

    def test_hardened_check_covers_port_and_user(self):
        check = commands.sshd_hardened_check(2847, "deploy")
        assert "'^port 2847'" in check
        assert "passwordauthentication no" in check
        assert "deploy" in check

    def test_backup_is_taken_once(self):
        assert commands.backup_sshd_config().startswith(f"sudo test -f {commands.SSHD_BACKUP} ||")


class TestFirewall:
    STATUS = "\n".join(
        [
            "Status: active",
            "",
            "To                         Action      From",
            "--                         ------      ----",
            "2847/tcp                   ALLOW       Anywhere",
            "80/tcp                     ALLOW       Anywhere",
        ]
    )

    def test_configured_when_every_port_is_allowed(self):
        assert commands.firewall_configured(self.STATUS, [2847, 80])

    def test_missing_port_is_not_configured(self):
        assert not commands.firewall_configured(self.STATUS, [2847, 80, 443])

    def test_inactive_is_not_configured(self):
        assert not commands.firewall_configured("Status: inactive", [])

    def test_ssh_port_is_allowed_before_enabling(self):
        script = commands.configure_firewall(2847, [80, 443])
        assert script.index("ufw allow 2847/tcp") < script.index("ufw --force enable")
        assert "ufw --force reset" not in script


class TestScripts:
    def test_key_append_is_guarded(self):
        script = commands.authorize_key_for_current_user("ssh-ed25519 AAAA test")
        assert "grep -qxF 'ssh-ed25519 AAAA test'" in script

    def test_sudoers_is_validated_before_install(self):
        script = commands.grant_passwordless_sudo("deploy")
        assert script.index("visudo -c") < script.index("sudo install -m 0440")
        assert commands.sudoers_path("deploy") in script

    def test_values_are_shell_quoted(self):
        assert commands.user_exists("bad; rm -rf /") == "id -u 'bad; rm -rf /' > /dev/null 2>&1"

    def test_fail2ban_jail_uses_ssh_port(self):
        assert "port = 2847" in commands.render_fail2ban_jail(2847)

    def test_write_file(self):
        script = commands.write_file("/etc/x.conf", "a = 1\n")
        assert script == "printf '%s\\n' 'a = 1' | sudo tee /etc/x.conf > /dev/null && sudo chmod 644 /etc/x.conf"
