"""End-to-end tests for the certpilot command line (ACME adapter faked)."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
import yaml

from certpilot.cli.main import main
from certpilot.core.errors import AcmeError


@pytest.fixture(autouse=True)
def _restore_certpilot_logger():
    logger = logging.getLogger("certpilot")
    saved = (logger.handlers[:], logger.level, logger.propagate)
    yield
    logger.handlers[:], logger.level, logger.propagate = saved[0], saved[1], saved[2]


@pytest.fixture()
def live_adapter(adapter, clock):
    # The container's manager runs on the wall clock.
    clock.now = datetime.now(UTC).replace(microsecond=0)
    with patch("certpilot.context.load_acme_adapter", return_value=adapter):
        yield adapter


def run_cli(*argv: str) -> int:
    with pytest.raises(SystemExit) as excinfo:
        main(list(argv))
    return excinfo.value.code


class TestStartup:
    def test_missing_config_file(self, tmp_path, capsys):
        assert run_cli("-c", str(tmp_path / "absent.yaml"), "check") == 1
        assert "configuration file not found" in capsys.readouterr().err

    def test_config_is_required(self, capsys):
        assert run_cli("check") == 2
        assert "--config" in capsys.readouterr().err

    def test_validate_only(self, tmp_config_file, capsys):
        assert run_cli("-c", str(tmp_config_file), "--validate-only") == 0
        out = capsys.readouterr().out
        assert "Configuration OK" in out
        assert "example.com, www.example.com" in out
        assert "Notifications:   disabled" in out

    def test_invalid_config(self, tmp_path, minimal_config_data, capsys):
        del minimal_config_data["email"]
        cfg = tmp_path / "bad.yaml"
        cfg.write_text(yaml.safe_dump(minimal_config_data), encoding="utf-8")
        assert run_cli("-c", str(cfg), "--validate-only") == 1
        assert "email" in capsys.readouterr().err

    def test_version(self, capsys):
        from certpilot import __version__

        assert run_cli("--version") == 0
        assert __version__ in capsys.readouterr().out


class TestIssuance:
    def test_request(self, tmp_config_file, live_adapter, store, capsys):
        assert run_cli("-c", str(tmp_config_file), "request", "example.com") == 0
        out = capsys.readouterr().out
        assert "Certificate for example.com valid until" in out
        assert store.cert_path("example.com").is_file()
        assert live_adapter.count("request", "example.com") == 1

    def test_request_failure_names_domain(self, tmp_config_file, live_adapter, capsys):
        live_adapter.failures["example.com"] = AcmeError("rate limited")
        assert run_cli("-c", str(tmp_config_file), "request", "example.com") == 1
        err = capsys.readouterr().err
        assert "failed to request certificate for example.com: rate limited" in err

    def test_renew_without_certificate(self, tmp_config_file, live_adapter, capsys):
        assert run_cli("-c", str(tmp_config_file), "renew", "ghost.example.com") == 1
        assert "failed to renew certificate for ghost.example.com" in capsys.readouterr().err
        assert live_adapter.count("renew") == 0

    def test_once_processes_every_domain(self, tmp_config_file, live_adapter, capsys):
        assert run_cli("-c", str(tmp_config_file), "once") == 0
        out = capsys.readouterr().out
        assert "Total certificates: 2" in out
        assert "Valid: 2" in out
        assert live_adapter.count("request") == 2

    def test_once_reports_partial_failure(self, tmp_config_file, live_adapter, capsys):
        live_adapter.failures["www.example.com"] = AcmeError("dns not ready")
        assert run_cli("-c", str(tmp_config_file), "once") == 1
        captured = capsys.readouterr()
        assert "www.example.com" in captured.err
        assert "Total certificates: 1" in captured.out


class TestHealth:
    def test_empty_store(self, tmp_config_file, live_adapter, capsys):
        assert run_cli("-c", str(tmp_config_file), "health") == 0
        assert "No certificates found" in capsys.readouterr().out

    def test_check_flags_due_certificate(self, tmp_config_file, live_adapter, store, cert_factory, clock, capsys):
        store.save(cert_factory("example.com", expires_in=timedelta(days=10), now=clock.now))
        store.save(cert_factory("www.example.com", expires_in=timedelta(days=80), now=clock.now))

        assert run_cli("-c", str(tmp_config_file), "check") == 1
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith("example.com\tneeds_renewal\t")
        assert lines[1].startswith("www.example.com\tvalid\t")

    def test_json(self, tmp_config_file, live_adapter, store, cert_factory, clock, capsys):
        store.save(cert_factory("example.com", expires_in=timedelta(days=80), now=clock.now))

        assert run_cli("-c", str(tmp_config_file), "health", "--json") == 0
        report = json.loads(capsys.readouterr().out)
        assert [entry["domain"] for entry in report] == ["example.com"]
        assert report[0]["status"] == "valid"

    def test_report_lists_expired(self, tmp_config_file, live_adapter, store, cert_factory, clock, capsys):
        store.save(cert_factory("example.com", expires_in=timedelta(days=-2), now=clock.now))

        assert run_cli("-c", str(tmp_config_file), "health") == 1
        out = capsys.readouterr().out
        assert "Status: expired" in out
        assert "Expired: 1" in out


def test_notify_requires_notifications(tmp_config_file, live_adapter, capsys):
    assert run_cli("-c", str(tmp_config_file), "notify") == 1
    assert "notifications are disabled" in capsys.readouterr().err
