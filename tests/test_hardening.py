"""End-to-end runs of the seven hardening steps against a fake host."""

import json

import pytest

from fakes import FakeHost, make_config, write_initial_key
from keyward.errors import FailureKind, Lockout, OrderingViolation
from keyward.interaction import AutoResponseHandler, ScriptedDecisions
from keyward.orchestrator import (
    RecoveryAction,
    RecoveryModeAction,
    SessionStatus,
    StepContext,
    StepExecutor,
)
from keyward.security import HARDENING_STEP_NAMES, HardeningWorkflow
from keyward.state import ProvisioningStore


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def config(tmp_path):
    return make_config(write_initial_key(tmp_path / "stock"))


def build(config, host, root, decisions=()):
    interaction = AutoResponseHandler()
    workflow = HardeningWorkflow(
        config,
        interaction,
        ScriptedDecisions(decisions),
        root=root,
        connector=host.connector,
        run_checks=lambda: [],
    )
    return workflow, interaction


def test_fresh_host_is_fully_hardened(tmp_path, host, config):
    workflow, interaction = build(config, host, tmp_path)

    result = workflow.run()

    assert result.status is SessionStatus.COMPLETED
    assert result.exit_code == 0
    state = workflow.state
    assert all(state.is_completed(name) for name in HARDENING_STEP_NAMES)
    assert state.current_phase == "completed"
    assert state.connection.current_port == 2847
    assert state.connection.current_username == "deploy"
    assert state.connection.hardening_applied is True
    assert state.config_snapshot["hardening"]["target_port"] == 2847

    assert host.sshd_port == 2847
    assert host.allow_users == {"deploy"}
    assert host.ufw_active and {2847, 80, 443} <= host.ufw_rules
    assert host.fail2ban_port == 2847
    assert host.auto_updates
    assert "deploy" in host.sudoers

    key_path = state.step_data("generate_key_pair")["private_key_path"]
    assert state.connection.private_key_path == key_path
    assert any(f"ssh -i {key_path} -p 2847 deploy@203.0.113.5" in message for _, message in interaction.notifications)


def test_state_document_is_persisted_with_connection(tmp_path, host, config):
    workflow, _ = build(config, host, tmp_path)
    workflow.run()

    payload = json.loads(workflow.store.path.read_text(encoding="utf-8"))
    assert payload["version"] == 2
    assert payload["connection"]["current_port"] == 2847
    assert payload["connection"]["hardening_applied"] is True
    assert list(payload["steps"]) == HARDENING_STEP_NAMES
    assert not workflow.store.path.with_name(workflow.store.path.name + ".lock").exists()


def test_completed_run_reconnects_through_recorded_path_only(tmp_path, host, config):
    workflow, _ = build(config, host, tmp_path)
    workflow.run()

    host.connections.clear()
    again, _ = build(config, host, tmp_path)
    session = again.negotiator.ensure_connected()
    session.close()

    assert host.connections == [("deploy", 2847, True)]


def test_rerun_after_completion_touches_nothing(tmp_path, host, config):
    workflow, _ = build(config, host, tmp_path)
    workflow.run()

    host.connections.clear()
    host.commands.clear()
    again, _ = build(config, host, tmp_path)
    result = again.run()

    assert result.status is SessionStatus.COMPLETED
    assert host.connections == []
    assert host.commands == []


def test_resumed_steps_detect_existing_configuration(tmp_path, host, config):
    workflow, _ = build(config, host, tmp_path)
    workflow.run()

    payload = json.loads(workflow.store.path.read_text(encoding="utf-8"))
    for name in ("configure_firewall", "configure_intrusion_prevention", "enable_auto_updates"):
        payload["steps"][name] = {"completed": False, "skipped": False, "timestamp": None, "data": {}}
    payload["current_phase"] = "configure_firewall"
    workflow.store.path.write_text(json.dumps(payload), encoding="utf-8")

    host.commands.clear()
    again, _ = build(config, host, tmp_path)
    result = again.run()

    assert result.status is SessionStatus.COMPLETED
    assert again.state.step_data("configure_firewall")["already_configured"] is True
    assert again.state.step_data("configure_intrusion_prevention")["already_configured"] is True
    assert again.state.step_data("enable_auto_updates")["already_configured"] is True
    assert not host.ran("ufw default deny")
    assert not host.ran("apt-get install")


def test_existing_key_pair_is_reused(tmp_path, host, config):
    first, _ = build(config, host, tmp_path)
    first.run()
    fingerprint = first.state.step_data("generate_key_pair")["fingerprint"]

    first.reset()
    second, _ = build(config, FakeHost(), tmp_path)
    ctx = StepContext(tracker=second.tracker, config=second.config, interaction=second.interaction)

    data = second.registry.get("generate_key_pair").run(ctx)
    assert data["reused"] is True
    assert data["fingerprint"] == fingerprint


def test_disabled_optional_steps_are_skipped(tmp_path, host):
    config = make_config(
        write_initial_key(tmp_path / "stock"),
        enable_firewall=False,
        enable_intrusion_prevention=False,
        enable_auto_updates=False,
    )
    workflow, _ = build(config, host, tmp_path)

    result = workflow.run()

    assert result.status is SessionStatus.COMPLETED
    for name in ("configure_firewall", "configure_intrusion_prevention", "enable_auto_updates"):
        assert workflow.state.is_resolved(name)
        assert not workflow.state.is_completed(name)
        assert "disabled" in workflow.state.step_data(name)["skip_reason"]
    assert not host.ufw_active


def test_hardening_failure_offers_no_skip_and_saves(tmp_path, host, config):
    host.fail("systemctl restart ssh", times=3, stderr="Job for ssh.service failed")
    decisions = [RecoveryAction.RETRY, RecoveryAction.RETRY, RecoveryAction.SAVE_AND_EXIT]
    workflow, _ = build(config, host, tmp_path, decisions)
    scripted = workflow.recovery.decisions

    result = workflow.run()

    assert result.status is SessionStatus.SAVED
    assert result.exit_code == 0
    assert result.resume_hint == "keyward security setup"
    assert all(RecoveryAction.SKIP not in options for options in scripted.seen)
    assert RecoveryAction.RETRY in scripted.seen[0]
    assert RecoveryAction.RETRY in scripted.seen[1]
    assert scripted.seen[2] == [
        RecoveryAction.SAVE_AND_EXIT,
        RecoveryAction.RECOVERY_MODE,
        RecoveryAction.CANCEL,
    ]

    state = ProvisioningStore(workflow.store.path).load()
    assert state.is_completed("create_deployment_user")
    assert not state.is_completed("apply_ssh_hardening")
    assert state.current_phase == "apply_ssh_hardening"
    assert [entry.step for entry in state.errors] == ["apply_ssh_hardening"] * 3
    assert state.connection.current_port == 22
    assert state.connection.hardening_applied is False


def test_saved_run_resumes_at_failed_step(tmp_path, host, config):
    host.fail("systemctl restart ssh", times=1)
    workflow, _ = build(config, host, tmp_path, [RecoveryAction.SAVE_AND_EXIT])
    assert workflow.run().status is SessionStatus.SAVED

    host.commands.clear()
    again, _ = build(config, host, tmp_path)
    result = again.run()

    assert result.status is SessionStatus.COMPLETED
    assert not host.ran("useradd")
    assert not host.ran("mkdir -p ~/.ssh")


def test_unverified_new_port_is_rolled_back(tmp_path, host, config):
    host.blocked_ports.add(2847)
    workflow, _ = build(config, host, tmp_path, [RecoveryAction.SAVE_AND_EXIT])

    result = workflow.run()

    assert result.status is SessionStatus.SAVED
    assert host.sshd_port == 22
    assert host.allow_users is None
    assert workflow.state.connection.current_port == 22
    assert not workflow.state.is_completed("apply_ssh_hardening")


def test_invalid_sshd_config_is_restored_and_not_retried(tmp_path, host, config):
    host.sshd_config_valid = False
    workflow, _ = build(config, host, tmp_path, [RecoveryAction.CANCEL])
    scripted = workflow.recovery.decisions

    result = workflow.run()

    assert result.status is SessionStatus.CANCELLED
    assert result.exit_code == 1
    assert RecoveryAction.RETRY not in scripted.seen[0]
    assert host.ran("sudo cp -p /etc/ssh/sshd_config.keyward-backup")
    assert not host.ran("systemctl restart ssh")
    assert host.sshd_port == 22


def test_crash_after_restart_resumes_through_new_port(tmp_path, host, config):
    host.interrupt_on_connect("deploy", 2847)
    workflow, _ = build(config, host, tmp_path)

    result = workflow.run()

    assert result.status is SessionStatus.INTERRUPTED
    assert result.exit_code == 130
    saved = ProvisioningStore(workflow.store.path).load()
    assert not saved.is_completed("apply_ssh_hardening")
    assert saved.connection.current_port == 22
    assert host.sshd_port == 2847

    host.connections.clear()
    again, _ = build(config, host, tmp_path)
    result = again.run()

    assert result.status is SessionStatus.COMPLETED
    assert host.connections[0] == ("ubuntu", 22, False)
    assert host.connections[1] == ("deploy", 2847, True)
    assert again.state.step_data("apply_ssh_hardening")["already_configured"] is True
    assert again.state.connection.hardening_applied is True


def test_lockout_is_terminal_and_keeps_last_connection(tmp_path, host, config):
    workflow, _ = build(config, host, tmp_path)
    workflow.run()
    recorded = workflow.state.connection.to_dict()

    # someone else locked the deployment user out
    host.allow_users = {"someone-else"}
    payload = json.loads(workflow.store.path.read_text(encoding="utf-8"))
    payload["steps"]["enable_auto_updates"]["completed"] = False
    payload["current_phase"] = "enable_auto_updates"
    workflow.store.path.write_text(json.dumps(payload), encoding="utf-8")

    again, interaction = build(config, host, tmp_path)
    result = again.run()

    assert result.status is SessionStatus.LOCKED_OUT
    assert result.exit_code == 3
    assert again.recovery.decisions.seen == []
    saved = ProvisioningStore(again.store.path).load()
    assert saved.connection.to_dict() == recorded
    assert saved.errors[-1].kind == "lockout"
    assert any("serial console" in message for _, message in interaction.notifications)


def test_recovery_mode_reset_retries_the_step(tmp_path, host, config):
    host.fail("visudo -c", times=1, stderr="syntax error")
    decisions = [
        RecoveryAction.RECOVERY_MODE,
        RecoveryModeAction.SHOW_DETAIL,
        RecoveryModeAction.WRITE_BUNDLE,
        RecoveryModeAction.RESET_STEP,
    ]
    workflow, interaction = build(config, host, tmp_path, decisions)

    result = workflow.run()

    assert result.status is SessionStatus.COMPLETED
    bundle = workflow.recovery.last_bundle
    assert bundle is not None and bundle.parent == tmp_path / ".keyward" / "support"
    report = json.loads(bundle.read_text(encoding="utf-8"))
    assert report["failed_step"] == "create_deployment_user"
    assert report["state"]["host_identifier"] == "203.0.113.5"
    assert any("Traceback" in message for _, message in interaction.notifications)


def test_status_and_reset(tmp_path, host, config):
    workflow, _ = build(config, host, tmp_path)
    workflow.run()

    summary = workflow.status()
    assert summary["progress"] == "7/7 steps (100%)"
    assert summary["next_step"] is None
    assert summary["connect"].startswith("ssh -i ")

    workflow.reset()
    reloaded = ProvisioningStore(workflow.store.path).load()
    assert not any(reloaded.is_completed(name) for name in HARDENING_STEP_NAMES)
    assert reloaded.connection.current_port is None


def prepared_context(workflow):
    ctx = StepContext(tracker=workflow.tracker, config=workflow.config, interaction=workflow.interaction)
    data = workflow.registry.get("generate_key_pair").run(ctx)
    workflow.tracker.mark_step_completed("generate_key_pair", data)
    return ctx


def test_sshd_is_untouched_while_access_steps_are_incomplete(tmp_path, host, config, monkeypatch):
    workflow, _ = build(config, host, tmp_path)
    ctx = prepared_context(workflow)
    step = workflow.registry.get("apply_ssh_hardening")
    calls = []
    monkeypatch.setattr(step, "run", lambda ctx: calls.append(ctx))

    outcome = StepExecutor().run(step, ctx)

    assert outcome.is_failure
    assert isinstance(outcome.error, OrderingViolation)
    assert outcome.kind is FailureKind.CONFIGURATION
    assert calls == []
    assert host.connections == []
    assert host.commands == []


@pytest.mark.parametrize(
    "deploy_data, user_data",
    [
        ({"verified": False}, {"verified_login": True}),
        ({"verified": True}, {"verified_login": False}),
        ({}, {}),
    ],
)
def test_unverified_access_paths_block_sshd_changes(tmp_path, host, config, monkeypatch, deploy_data, user_data):
    workflow, _ = build(config, host, tmp_path)
    ctx = prepared_context(workflow)
    workflow.tracker.mark_step_completed("deploy_public_key", deploy_data)
    workflow.tracker.mark_step_completed("create_deployment_user", user_data)
    step = workflow.registry.get("apply_ssh_hardening")
    calls = []
    monkeypatch.setattr(step, "run", lambda ctx: calls.append(ctx))

    outcome = StepExecutor().run(step, ctx)

    assert isinstance(outcome.error, OrderingViolation)
    assert outcome.kind is FailureKind.CONFIGURATION
    assert calls == []
    assert host.commands == []


def test_unverified_key_stops_the_workflow_before_sshd(tmp_path, host, config):
    workflow, _ = build(config, host, tmp_path, [RecoveryAction.CANCEL])
    prepared_context(workflow)
    workflow.tracker.mark_step_completed("deploy_public_key", {"verified": False})
    workflow.tracker.mark_step_completed("create_deployment_user", {"verified_login": True})
    scripted = workflow.recovery.decisions

    result = workflow.run()

    assert result.status is SessionStatus.CANCELLED
    assert RecoveryAction.RETRY not in scripted.seen[0]
    assert host.connections == []
    assert not host.ran("sshd")
    assert host.sshd_port == 22
    assert not workflow.state.is_completed("apply_ssh_hardening")


KEY_SPECIFIC = {"private_key_path", "public_key_path", "public_key", "fingerprint"}


def final_view(workflow, host):
    state = workflow.state
    steps = {
        name: (
            state.is_completed(name),
            {key: value for key, value in state.step_data(name).items() if key not in KEY_SPECIFIC},
        )
        for name in HARDENING_STEP_NAMES
    }
    connection = state.connection.to_dict()
    assert connection.pop("private_key_path") == state.step_data("generate_key_pair")["private_key_path"]
    machine = {
        "sshd_port": host.sshd_port,
        "allow_users": host.allow_users,
        "users": host.users,
        "sudoers": host.sudoers,
        "ufw_active": host.ufw_active,
        "ufw_rules": host.ufw_rules,
        "fail2ban_port": host.fail2ban_port,
        "auto_updates": host.auto_updates,
    }
    return steps, connection, state.current_phase, state.errors, machine


def interrupt_after(tracker, count):
    """Raise KeyboardInterrupt once ``count`` steps have been persisted."""
    original = tracker.mark_step_completed
    completed = []

    def mark(name, data=None):
        original(name, data)
        completed.append(name)
        if len(completed) == count:
            raise KeyboardInterrupt

    tracker.mark_step_completed = mark


@pytest.mark.parametrize("completed_steps", range(len(HARDENING_STEP_NAMES) + 1))
def test_resuming_after_any_prefix_reaches_the_same_final_state(tmp_path, config, completed_steps):
    reference_host = FakeHost()
    reference, _ = build(config, reference_host, tmp_path / "reference")
    assert reference.run().status is SessionStatus.COMPLETED

    host = FakeHost()
    root = tmp_path / "resumed"
    if completed_steps:
        first, _ = build(config, host, root)
        interrupt_after(first.tracker, completed_steps)
        assert first.run().status is SessionStatus.INTERRUPTED
        snapshot = ProvisioningStore(first.store.path).load()
        assert sum(snapshot.is_completed(name) for name in HARDENING_STEP_NAMES) == completed_steps

    resumed, _ = build(config, host, root)
    result = resumed.run()

    assert result.status is SessionStatus.COMPLETED
    assert final_view(resumed, host) == final_view(reference, reference_host)


def test_audit_of_a_hardened_host_scores_full_marks(tmp_path, host, config):
    workflow, _ = build(config, host, tmp_path)
    workflow.run()
    host.commands.clear()

    report = workflow.audit()

    assert report.score == 100
    assert [check.name for check in report.checks] == ["ssh", "firewall", "fail2ban", "auto_updates"]
    assert report.failed == []
    assert (report.username, report.port) == ("deploy", 2847)
    assert not host.ran("tee")
    assert not host.ran("apt-get install")

    saved = json.loads(workflow.audit_path.read_text(encoding="utf-8"))
    assert saved["score"] == 100
    assert saved["host"] == "203.0.113.5"
    assert all(check["passed"] for check in saved["checks"])


def test_audit_of_a_fresh_host_reports_every_gap(tmp_path, host, config):
    workflow, _ = build(config, host, tmp_path)

    report = workflow.audit()

    assert report.score == 0
    assert {check.name for check in report.failed} == {"ssh", "firewall", "fail2ban", "auto_updates"}
    assert report.risk_level.startswith("🚨")
    assert host.successful_logins() == [("ubuntu", 22)]
    assert workflow.state.connection.current_port == 22
    assert not any(workflow.state.is_completed(name) for name in HARDENING_STEP_NAMES)


def test_partial_hardening_is_scored_by_weight(tmp_path, host):
    config = make_config(
        write_initial_key(tmp_path / "stock"),
        enable_intrusion_prevention=False,
        enable_auto_updates=False,
    )
    workflow, _ = build(config, host, tmp_path)
    workflow.run()

    report = workflow.audit()

    assert report.score == 70
    assert [check.name for check in report.failed] == ["fail2ban", "auto_updates"]


def test_audit_without_access_is_a_lockout(tmp_path, host, config):
    host.sshd_port = 2847
    host.allow_users = {"nobody"}
    workflow, _ = build(config, host, tmp_path)

    with pytest.raises(Lockout):
        workflow.audit()
    assert not workflow.audit_path.exists()
