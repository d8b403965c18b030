import functools
import json

import pytest

from fakes import FakeHost, write_initial_key
from keyward import cli
from keyward.cli import CONFIGURATION_EXIT_CODE, build_parser, run_cli


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("KEYWARD_SSH_HOST", "KEYWARD_DRY_RUN", "KEYWARD_TARGET_PORT"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_sessions_without_any(tmp_path, capsys):
    assert run_cli(["sessions", "--path", str(tmp_path)]) == 0
    assert "No wizard sessions found" in capsys.readouterr().out


def test_missing_config_file_is_exit_code_two(tmp_path, capsys):
    code = run_cli(["--config", str(tmp_path / "absent.json"), "sessions"])
    assert code == CONFIGURATION_EXIT_CODE
    assert "Configuration file not found" in capsys.readouterr().out


def test_security_setup_without_host(capsys):
    assert run_cli(["--yes", "security", "setup"]) == CONFIGURATION_EXIT_CODE
    assert "--host" in capsys.readouterr().out


def test_reset_requires_confirmation(capsys):
    assert run_cli(["security", "reset", "--host", "203.0.113.5"]) == CONFIGURATION_EXIT_CODE
    assert "Refusing to reset" in capsys.readouterr().out


def test_status_and_confirmed_reset(tmp_path, capsys):
    assert run_cli(["security", "status", "--host", "203.0.113.5"]) == 0
    out = capsys.readouterr().out
    assert "0/7 steps (0%)" in out
    assert "generate_key_pair" in out

    assert run_cli(["security", "reset", "--host", "203.0.113.5", "--confirm"]) == 0
    assert (tmp_path / ".keyward" / "state" / "203.0.113.5.json").is_file()


def test_dry_run_wizard_from_the_command_line(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("KEYWARD_DRY_RUN", "1")

    assert run_cli(["--yes", "new", "shop", "--path", str(tmp_path)]) == 0
    assert (tmp_path / "shop" / "keyward.json").is_file()

    capsys.readouterr()
    assert run_cli(["sessions", "--path", str(tmp_path / "shop")]) == 0
    assert "shop" in capsys.readouterr().out

    assert run_cli(["--yes", "resume", "--path", str(tmp_path / "shop")]) == 0
    assert "already been completed" in capsys.readouterr().out


def audit_setup(tmp_path, monkeypatch, host):
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"ssh": {"operating_system": "ubuntu", "initial_key_path": write_initial_key(tmp_path / "stock")}}),
        encoding="utf-8",
    )
    monkeypatch.setattr(cli, "HardeningWorkflow", functools.partial(cli.HardeningWorkflow, connector=host.connector))
    return str(config_path)


def test_security_audit_prints_and_saves_the_report(tmp_path, monkeypatch, capsys):
    config_path = audit_setup(tmp_path, monkeypatch, FakeHost())

    code = run_cli(["--yes", "--config", config_path, "security", "audit", "--host", "203.0.113.5"])

    assert code == 0
    out = capsys.readouterr().out
    assert "Score: 0/100" in out
    assert "❌ firewall" in out
    assert (tmp_path / ".keyward" / "audit" / "203.0.113.5.json").is_file()


def test_security_audit_of_an_unreachable_host_exits_with_lockout_code(tmp_path, monkeypatch, capsys):
    host = FakeHost()
    host.sshd_port = 2847
    host.allow_users = {"nobody"}
    config_path = audit_setup(tmp_path, monkeypatch, host)

    code = run_cli(["--yes", "--config", config_path, "security", "audit", "--host", "203.0.113.5"])

    assert code == 3
    assert not (tmp_path / ".keyward" / "audit").exists()
