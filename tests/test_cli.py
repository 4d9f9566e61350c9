"""Tests for the mailtrust command-line interface."""

import base64
import json
import os
import signal

import pytest

from mailtrust import cli
from mailtrust.crypto.vault import normalize_key
from mailtrust.health.scheduler import HealthCheckScheduler

from conftest import TEST_KEY


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "mailtrust.toml"
    path.write_text(
        f'[encryption]\nkey = "{TEST_KEY}"\n\n'
        '[logging]\nlevel = "WARNING"\n\n'
        '[upstream]\nservices = {}\n'
    )
    return str(path)


@pytest.fixture
def fake_dns(monkeypatch, resolver):
    monkeypatch.setattr(cli.DNSResolver, "from_settings", lambda settings: resolver)


def _run(capsys, *argv):
    code = cli.main(list(argv))
    return code, json.loads(capsys.readouterr().out)


def test_gen_secret(capsys, config_path):
    code, payload = _run(capsys, "--config", config_path, "gen-secret")

    assert code == cli.EXIT_OK
    key = payload["MAILTRUST_ENCRYPTION_KEY"]
    assert key.startswith("base64:")
    assert len(normalize_key(key)) == 32


def test_dkim_record_ed25519(capsys, config_path):
    code, payload = _run(
        capsys, "--config", config_path,
        "dkim-record", "Example.com", "--algorithm", "ED25519", "--selector", "mt1",
    )

    assert code == cli.EXIT_OK
    assert payload["selector"] == "mt1"
    assert payload["algorithm"] == "ED25519"
    assert payload["record_name"] == "mt1._domainkey.example.com"
    assert payload["record_type"] == "TXT"
    assert payload["record_value"].startswith("v=DKIM1; k=ed25519; p=")
    public = payload["record_value"].split("p=", 1)[1]
    assert len(base64.b64decode(public)) == 32
    assert base64.b64decode(payload["private_key"])


def test_dkim_record_rejects_bad_domain(capsys, config_path):
    code, payload = _run(capsys, "--config", config_path, "dkim-record", "not a domain")

    assert code == cli.EXIT_ERROR
    assert payload["error"]["type"] == "InvalidDomainError"


def test_missing_config_file(capsys, tmp_path):
    code = cli.main(["--config", str(tmp_path / "absent.toml"), "gen-secret"])

    assert code == cli.EXIT_ERROR
    assert "Configuration file not found" in capsys.readouterr().err


def test_check_healthy_domain(capsys, config_path, fake_dns, dns_backend):
    dns_backend.add("example.com", "MX", "10 mx.example.com.")
    dns_backend.add("example.com", "NS", "ada.ns.cloudflare.com.")
    dns_backend.add("example.com", "TXT", "v=spf1 -all")
    dns_backend.add("_dmarc.example.com", "TXT", "v=DMARC1; p=reject")
    dns_backend.add("_mta-sts.example.com", "TXT", "v=STSv1; id=1")

    code, payload = _run(capsys, "--config", config_path, "check", "example.com")

    assert code == cli.EXIT_OK
    assert payload["status"] == "ACTIVE"
    statuses = {c["check_type"]: c["status"] for c in payload["checks"]}
    assert statuses["SPF"] == "OK"
    assert statuses["DKIM"] == "WARN"


def test_check_reports_errors(capsys, config_path, fake_dns):
    code, payload = _run(capsys, "--config", config_path, "check", "example.com")

    assert code == cli.EXIT_UNHEALTHY
    assert payload["status"] == "ERROR"


def test_lookup(capsys, config_path, fake_dns, dns_backend):
    dns_backend.add("example.com", "MX", "10 mx.example.com.")

    code, payload = _run(capsys, "--config", config_path, "lookup", "example.com")

    assert code == cli.EXIT_OK
    assert payload["domain"] == "example.com"
    assert payload["mx_records"] == ["10 mx.example.com"]


def test_health_without_services(capsys, config_path):
    code, payload = _run(capsys, "--config", config_path, "health")

    assert code == cli.EXIT_OK
    assert payload["services"] == {}


def _scheduler_config(tmp_path, enabled):
    path = tmp_path / "schedule.toml"
    path.write_text(
        f'[logging]\nlevel = "WARNING"\n\n'
        f'[scheduler]\nenabled = {"true" if enabled else "false"}\ninterval_seconds = 3600\n'
    )
    return str(path)


def test_schedule_disabled(capsys, tmp_path, fake_dns):
    code, payload = _run(
        capsys, "--config", _scheduler_config(tmp_path, False), "schedule", "example.com"
    )

    assert code == cli.EXIT_OK
    assert payload == {"scheduler": "disabled"}


def test_schedule_runs_until_interrupted(capsys, tmp_path, fake_dns, monkeypatch):
    original = HealthCheckScheduler.run_once

    async def run_then_interrupt(self):
        report = await original(self)
        os.kill(os.getpid(), signal.SIGINT)
        return report

    monkeypatch.setattr(HealthCheckScheduler, "run_once", run_then_interrupt)

    code, payload = _run(
        capsys, "--config", _scheduler_config(tmp_path, True),
        "schedule", "example.com", "example.org",
    )

    assert code == cli.EXIT_OK
    assert payload["runs"] == 1
    assert [d["domain"] for d in payload["domains"]] == ["example.com", "example.org"]
    assert {d["status"] for d in payload["domains"]} == {"ERROR"}
    assert payload["failed"] == {}
