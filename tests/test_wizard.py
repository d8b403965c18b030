"""The ten-step setup wizard."""

import json

import pytest

from fakes import FakeHost, write_initial_key
from keyward.config import AppConfig
from keyward.errors import ConfigurationError
from keyward.interaction import AutoResponseHandler, ScriptedDecisions
from keyward.orchestrator import RecoveryAction, SessionStatus
from keyward.wizard import (
    WIZARD_STEP_NAMES,
    DnsPlanner,
    EnvironmentCredentialSource,
    ProjectScaffolder,
    StaticHostProvider,
    WizardWorkflow,
    resolve_project_path,
)


def wizard_config(**overrides):
    payload = {
        "ssh": {"host": "203.0.113.5", "operating_system": "ubuntu"},
        "wizard": {"deploy_commands": ["echo deployed"]},
    }
    payload.update(overrides)
    return AppConfig.from_dict(payload)


def build(config, *, host=None, decisions=(), environ=None, interaction=None):
    return WizardWorkflow(
        config,
        interaction or AutoResponseHandler(),
        ScriptedDecisions(decisions),
        credential_source=EnvironmentCredentialSource(environ or {}),
        connector=host.connector if host else None,
        run_checks=lambda: [],
    )


def test_dry_run_completes_every_step(tmp_path):
    config = AppConfig.from_dict({"dry_run": True})
    workflow = build(config)
    session = workflow.create_session("shop", tmp_path / "shop")

    result = workflow.run(session)

    assert result.status is SessionStatus.COMPLETED
    saved = workflow.store_for(tmp_path / "shop").load(session.id)
    assert saved.completed
    assert all(saved.is_completed(name) for name in WIZARD_STEP_NAMES)
    assert saved.step_data("infrastructure")["simulated"] is True
    assert saved.step_data("security") == {"host": "203.0.113.10", "simulated": True}
    assert saved.step_data("dns-config") == {"enabled": False}
    assert saved.setup_mode == "quick"
    assert (tmp_path / "shop" / "keyward.json").is_file()


def test_full_run_hardens_and_deploys(tmp_path):
    host = FakeHost()
    config = wizard_config(ssh={"host": "203.0.113.5", "initial_key_path": write_initial_key(tmp_path / "stock")})
    workflow = build(config, host=host)
    project = tmp_path / "shop"
    session = workflow.create_session("shop", project)

    result = workflow.run(session)

    assert result.status is SessionStatus.COMPLETED
    saved = workflow.store_for(project).load(session.id)
    security = saved.step_data("security")
    assert security["port"] == 2847
    assert security["username"] == "deploy"
    assert security["state_file"].startswith(str(project.resolve()))
    assert saved.step_data("deployment") == {
        "host": "203.0.113.5",
        "commands": ["echo deployed"],
        "ran": 1,
    }
    assert ("deploy", "echo deployed") in host.commands


def test_saved_hardening_saves_the_wizard_and_resumes(tmp_path):
    host = FakeHost()
    host.fail("systemctl restart ssh", times=1)
    config = wizard_config(ssh={"host": "203.0.113.5", "initial_key_path": write_initial_key(tmp_path / "stock")})
    workflow = build(config, host=host, decisions=[RecoveryAction.SAVE_AND_EXIT])
    session = workflow.create_session("shop", tmp_path / "shop")

    result = workflow.run(session)

    assert result.status is SessionStatus.SAVED
    assert result.last_step == "security"
    assert "keyward resume" in result.message
    saved = workflow.store_for(tmp_path / "shop").load(session.id)
    assert saved.is_completed("infrastructure")
    assert not saved.is_resolved("security")

    again = build(config, host=host)
    resumed = again.find_session(tmp_path / "shop")
    assert again.run(resumed).status is SessionStatus.COMPLETED


def test_declining_the_welcome_cancels(tmp_path):
    interaction = AutoResponseHandler(default_responses={"Start setting up": "no"})
    workflow = build(AppConfig.from_dict({"dry_run": True}), interaction=interaction)
    session = workflow.create_session("shop", tmp_path / "shop")

    result = workflow.run(session)

    assert result.status is SessionStatus.CANCELLED
    assert result.exit_code == 1
    assert not (tmp_path / "shop" / "keyward.json").exists()


def test_missing_required_credential_is_not_retried(tmp_path):
    config = AppConfig.from_dict({"dry_run": True, "wizard": {"required_credentials": ["CLOUD_TOKEN"]}})
    workflow = build(config, decisions=[RecoveryAction.SAVE_AND_EXIT])
    session = workflow.create_session("shop", tmp_path / "shop")

    result = workflow.run(session)

    assert result.status is SessionStatus.SAVED
    seen = workflow.decisions.seen[0]
    assert RecoveryAction.RETRY not in seen
    assert RecoveryAction.SKIP not in seen
    saved = workflow.store_for(tmp_path / "shop").load(session.id)
    assert saved.errors[0].kind == "configuration"
    assert "CLOUD_TOKEN" in saved.errors[0].message


def test_credentials_record_names_only(tmp_path):
    config = AppConfig.from_dict(
        {"dry_run": True, "wizard": {"required_credentials": ["CLOUD_TOKEN"], "optional_credentials": ["DNS_TOKEN"]}}
    )
    workflow = build(config, environ={"CLOUD_TOKEN": "s3cret"})
    session = workflow.create_session("shop", tmp_path / "shop")
    workflow.run(session)

    document = (workflow.store_for(tmp_path / "shop").path_for(session.id)).read_text(encoding="utf-8")
    assert "s3cret" not in document
    data = json.loads(document)["step_results"]["credentials"]["data"]
    assert data["available"] == ["CLOUD_TOKEN"]
    assert data["missing_optional"] == ["DNS_TOKEN"]


def test_domain_plans_dns_and_certificates(tmp_path):
    config = AppConfig.from_dict(
        {
            "dry_run": True,
            "wizard": {"domain": "example.org", "subdomains": ["www"], "contact_email": "ops@example.org"},
        }
    )
    workflow = build(config)
    session = workflow.create_session("shop", tmp_path / "shop")
    workflow.run(session)

    saved = workflow.store_for(tmp_path / "shop").load(session.id)
    records = saved.step_data("dns-config")["records"]
    assert [r["name"] for r in records] == ["example.org", "www.example.org"]
    assert saved.step_data("ssl-config")["domains"] == ["example.org", "www.example.org"]


def test_find_session_without_any(tmp_path):
    workflow = build(AppConfig.from_dict({"dry_run": True}))
    with pytest.raises(ConfigurationError):
        workflow.find_session(tmp_path)


def test_empty_project_name_is_rejected(tmp_path):
    workflow = build(AppConfig.from_dict({"dry_run": True}))
    with pytest.raises(ConfigurationError):
        workflow.create_session("  ", tmp_path)


class TestCollaborators:
    def test_project_path_resolution(self, tmp_path):
        assert resolve_project_path("shop", path=tmp_path) == tmp_path / "shop"
        assert resolve_project_path("shop", path=tmp_path, here=True) == tmp_path

    def test_scaffolder_keeps_existing_project_file(self, tmp_path):
        scaffolder = ProjectScaffolder()
        first = scaffolder.scaffold(tmp_path, "shop", setup_mode="advanced")
        second = scaffolder.scaffold(tmp_path, "renamed")

        assert first["created"] is True
        assert second["created"] is False
        assert json.loads((tmp_path / "keyward.json").read_text())["name"] == "shop"

    def test_static_provider_needs_a_host(self):
        provider = StaticHostProvider(AppConfig().ssh)
        assert provider.describe("shop") is None
        with pytest.raises(ConfigurationError):
            provider.create("shop")
        assert provider.delete("shop") is False

    def test_dns_plan_skips_blank_subdomains(self):
        records = DnsPlanner(ttl=60).plan("example.org", ["", "api"], "198.51.100.1")
        assert [(r["name"], r["ttl"]) for r in records] == [("example.org", 60), ("api.example.org", 60)]
