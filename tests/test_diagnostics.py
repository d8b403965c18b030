import json

import requests

from keyward import __version__, diagnostics


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


def test_internet_check_reports_status(monkeypatch):
    monkeypatch.setattr(diagnostics.requests, "head", lambda url, **kwargs: FakeResponse(200))
    result = diagnostics.check_internet()
    assert result.ok
    assert result.detail == "HTTP 200"


def test_internet_check_survives_network_errors(monkeypatch):
    def boom(url, **kwargs):
        raise requests.ConnectionError("no route to host")

    monkeypatch.setattr(diagnostics.requests, "head", boom)
    result = diagnostics.check_internet()
    assert not result.ok
    assert "ConnectionError" in result.detail


def test_failing_check_is_reported_not_raised():
    def broken():
        raise OSError("disk vanished")

    results = diagnostics.run_diagnostics(checks=[diagnostics.check_python_version, broken])
    assert results[0].ok
    assert results[1].ok is False
    assert "disk vanished" in results[1].detail


def test_format_checks():
    text = diagnostics.format_checks(
        [diagnostics.CheckResult("Disk space", True, "900 MB free"), diagnostics.CheckResult("SSH", False, "missing")]
    )
    assert "✓ Disk space: 900 MB free" in text
    assert "✗ SSH: missing" in text


def test_support_bundle_contents(tmp_path):
    path = diagnostics.write_support_bundle(
        tmp_path / "support",
        failed_step="configure_firewall",
        error={"message": "ufw failed", "code": "SSH_COMMAND_FAILED"},
        document={"host_identifier": "203.0.113.5"},
    )

    assert path.name.startswith("error-report-")
    report = json.loads(path.read_text(encoding="utf-8"))
    assert report["failed_step"] == "configure_firewall"
    assert report["error"]["message"] == "ufw failed"
    assert report["system_info"]["keyward_version"] == __version__
    assert report["state"] == {"host_identifier": "203.0.113.5"}
