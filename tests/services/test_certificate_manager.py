"""Tests for CertificateManager: issuance, renewal, health, batches."""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from unittest.mock import patch

import pytest

from certpilot.core.cancel import CancelToken
from certpilot.core.errors import (
    AcmeError,
    AggregateError,
    CancellationError,
    NotFoundError,
    StoreError,
)
from certpilot.core.types import CertificateEvent, CertificateStatus

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _seed(manager, store, cert) -> None:
    """Put *cert* on disk and into the registry."""
    store.save(cert)
    manager.load_existing()


class Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[CertificateEvent, str, object]] = []

    def __call__(self, event, domain, payload) -> None:
        self.events.append((event, domain, payload))

    @property
    def kinds(self) -> list[tuple[CertificateEvent, str]]:
        return [(e, d) for e, d, _ in self.events]


# ---------------------------------------------------------------------------
# request_certificate
# ---------------------------------------------------------------------------


class TestRequestCertificate:
    def test_issues_persists_and_registers(self, manager_factory, adapter, store, clock):
        manager = manager_factory()
        cert = manager.request_certificate("example.com")

        assert cert.domain == "example.com"
        assert cert.expires_at == clock.now + timedelta(days=90)
        assert manager.get_certificate("example.com") is cert
        assert store.load("example.com").expires_at == cert.expires_at
        assert adapter.count("request") == 1

    def test_idempotent_when_healthy(self, manager_factory, adapter):
        manager = manager_factory()
        first = manager.request_certificate("example.com")
        second = manager.request_certificate("example.com")

        assert second is first
        assert adapter.count("request") == 1

    def test_reissues_when_due(self, manager_factory, adapter, store, cert_factory):
        manager = manager_factory()
        _seed(manager, store, cert_factory("example.com", expires_in=timedelta(days=10)))

        cert = manager.request_certificate("example.com")
        assert adapter.count("request") == 1
        assert manager.get_certificate("example.com") is cert

    def test_failure_leaves_registry_and_emits_failed(self, manager_factory, adapter):
        manager = manager_factory()
        recorder = Recorder()
        manager.add_listener(recorder)
        adapter.failures["example.com"] = AcmeError("rate limited", retryable=True)

        with pytest.raises(AcmeError) as excinfo:
            manager.request_certificate("example.com")

        assert excinfo.value.domain == "example.com"
        assert excinfo.value.retryable is True
        assert "example.com" in str(excinfo.value)
        assert manager.list_certificates() == {}
        assert recorder.kinds == [(CertificateEvent.FAILED, "example.com")]

    def test_unexpected_adapter_exception_is_wrapped(self, manager_factory, adapter):
        manager = manager_factory()
        adapter.failures["example.com"] = RuntimeError("boom")

        with pytest.raises(AcmeError, match="RuntimeError: boom") as excinfo:
            manager.request_certificate("example.com")
        assert excinfo.value.domain == "example.com"

    def test_adapter_returning_other_domain_is_rejected(self, manager_factory, adapter, cert_factory):
        manager = manager_factory()
        adapter.request_certificate = lambda domain: cert_factory("other.com", expires_in=timedelta(days=90))

        with pytest.raises(AcmeError, match="other.com"):
            manager.request_certificate("example.com")
        assert manager.list_certificates() == {}

    def test_store_failure_leaves_registry_unchanged(self, manager_factory, store, monkeypatch):
        manager = manager_factory()
        recorder = Recorder()
        manager.add_listener(recorder)

        def _fail(cert):
            raise StoreError("disk full", domain=cert.domain)

        monkeypatch.setattr(store, "save", _fail)
        with pytest.raises(StoreError):
            manager.request_certificate("example.com")

        assert manager.list_certificates() == {}
        assert recorder.kinds == [(CertificateEvent.FAILED, "example.com")]

    def test_issued_event(self, manager_factory):
        manager = manager_factory()
        recorder = Recorder()
        manager.add_listener(recorder)
        cert = manager.request_certificate("example.com")
        assert recorder.events == [(CertificateEvent.ISSUED, "example.com", cert)]

    def test_listener_exception_does_not_propagate(self, manager_factory):
        manager = manager_factory()

        def _broken(event, domain, payload):
            raise ValueError("listener bug")

        manager.add_listener(_broken)
        assert manager.request_certificate("example.com").domain == "example.com"


# ---------------------------------------------------------------------------
# renew_certificate
# ---------------------------------------------------------------------------


class TestRenewCertificate:
    def test_renew_replaces_certificate(self, manager_factory, adapter, store, cert_factory):
        manager = manager_factory()
        old = cert_factory("example.com", expires_in=timedelta(days=10))
        _seed(manager, store, old)

        new = manager.renew_certificate("example.com")
        assert new is not None
        assert new.expires_at > old.expires_at
        assert manager.get_certificate("example.com") is new
        assert adapter.count("renew", "example.com") == 1

    def test_forced_renew_of_healthy_certificate(self, manager_factory, adapter, store, cert_factory):
        manager = manager_factory()
        _seed(manager, store, cert_factory("example.com", expires_in=timedelta(days=80)))
        assert manager.renew_certificate("example.com") is not None
        assert adapter.count("renew") == 1

    def test_only_if_due_skips_healthy(self, manager_factory, adapter, store, cert_factory):
        manager = manager_factory()
        _seed(manager, store, cert_factory("example.com", expires_in=timedelta(days=80)))
        assert manager.renew_certificate("example.com", only_if_due=True) is None
        assert adapter.count("renew") == 0

    def test_failure_preserves_previous_certificate(self, manager_factory, adapter, store, cert_factory):
        manager = manager_factory()
        old = cert_factory("example.com", expires_in=timedelta(days=10))
        _seed(manager, store, old)
        adapter.failures["example.com"] = AcmeError("challenge failed")

        with pytest.raises(AcmeError):
            manager.renew_certificate("example.com")

        assert manager.get_certificate("example.com").expires_at == old.expires_at
        health = manager.check_certificate_health()["example.com"]
        assert health.status == CertificateStatus.NEEDS_RENEWAL

    def test_lazy_load_from_store(self, manager_factory, adapter, store, cert_factory):
        manager = manager_factory()
        store.save(cert_factory("example.com", expires_in=timedelta(days=10)))

        assert manager.renew_certificate("example.com") is not None
        assert adapter.count("renew", "example.com") == 1

    def test_lazy_load_through_adapter(self, manager_factory, adapter, cert_factory):
        manager = manager_factory()
        adapter.loadable["example.com"] = cert_factory("example.com", expires_in=timedelta(days=3))

        assert manager.renew_certificate("example.com") is not None
        assert adapter.count("renew", "example.com") == 1

    def test_not_found_anywhere(self, manager_factory, adapter):
        manager = manager_factory()
        with pytest.raises(NotFoundError) as excinfo:
            manager.renew_certificate("missing.example.com")
        assert excinfo.value.domain == "missing.example.com"
        assert adapter.count("renew") == 0

    def test_concurrent_renewals_issue_once(self, manager_factory, adapter, store, cert_factory):
        manager = manager_factory()
        _seed(manager, store, cert_factory("example.com", expires_in=timedelta(days=10)))
        adapter.gate = threading.Event()
        results: list = []

        def _renew():
            results.append(manager.renew_certificate("example.com", only_if_due=True))

        first = threading.Thread(target=_renew)
        second = threading.Thread(target=_renew)
        first.start()
        assert adapter.entered.wait(5)
        second.start()

        # The registry stays readable while an ACME call is in flight.
        assert manager.check_certificate_health()["example.com"].needs_renewal is True

        adapter.gate.set()
        first.join(5)
        second.join(5)

        assert adapter.count("renew") == 1
        assert sorted(r is None for r in results) == [False, True]
        assert manager.check_certificate_health()["example.com"].status == CertificateStatus.VALID


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_get_certificate_unknown(self, manager_factory):
        with pytest.raises(NotFoundError):
            manager_factory().get_certificate("nope.example.com")

    def test_list_certificates_is_a_copy(self, manager_factory):
        manager = manager_factory()
        manager.request_certificate("example.com")
        listing = manager.list_certificates()
        listing.clear()
        assert list(manager.list_certificates()) == ["example.com"]

    def test_health_reports_every_status(self, manager_factory, store, cert_factory):
        manager = manager_factory()
        store.save(cert_factory("valid.example.com", expires_in=timedelta(days=60)))
        store.save(cert_factory("due.example.com", expires_in=timedelta(days=10)))
        store.save(cert_factory("expired.example.com", expires_in=timedelta(days=-1)))
        assert manager.load_existing() == 3

        health = manager.check_certificate_health()
        assert {d: h.status for d, h in health.items()} == {
            "valid.example.com": CertificateStatus.VALID,
            "due.example.com": CertificateStatus.NEEDS_RENEWAL,
            "expired.example.com": CertificateStatus.EXPIRED,
        }

    def test_certificate_paths(self, manager_factory, store):
        cert_path, key_path = manager_factory().get_certificate_paths("example.com")
        assert cert_path == store.cert_path("example.com")
        assert key_path == store.key_path("example.com")

    def test_domains_sorted_unique(self, manager_factory):
        manager = manager_factory(domains=["b.com", "a.com", "b.com"])
        assert manager.domains == ["a.com", "b.com"]


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


class TestBatches:
    def test_process_all_domains_in_order(self, manager_factory, adapter):
        manager = manager_factory(domains=["c.com", "a.com", "b.com"])
        manager.process_all_domains()
        assert adapter.calls == [("request", "a.com"), ("request", "b.com"), ("request", "c.com")]

    def test_process_all_domains_aggregates_failures(self, manager_factory, adapter):
        manager = manager_factory(domains=["a.com", "b.com", "c.com"])
        adapter.failures["b.com"] = AcmeError("dns error")

        with pytest.raises(AggregateError) as excinfo:
            manager.process_all_domains()

        assert excinfo.value.domains == ["b.com"]
        assert "b.com" in str(excinfo.value)
        assert sorted(manager.list_certificates()) == ["a.com", "c.com"]

    def test_cancelled_before_start(self, manager_factory, adapter):
        manager = manager_factory(domains=["a.com", "b.com"])
        token = CancelToken()
        token.cancel()

        with pytest.raises(CancellationError) as excinfo:
            manager.process_all_domains(token)
        assert excinfo.value.timed_out is False
        assert adapter.calls == []

    def test_cancelled_between_domains(self, manager_factory, adapter):
        manager = manager_factory(domains=["a.com", "b.com", "c.com"])
        token = CancelToken()
        manager.add_listener(lambda event, domain, payload: token.cancel())

        with pytest.raises(CancellationError):
            manager.process_all_domains(token)
        assert adapter.calls == [("request", "a.com")]

    def test_expired_deadline(self, manager_factory, adapter):
        manager = manager_factory(domains=["a.com"])
        with pytest.raises(CancellationError) as excinfo:
            manager.process_all_domains(CancelToken(0))
        assert excinfo.value.timed_out is True
        assert adapter.calls == []

    def test_renew_expired_only_touches_due(self, manager_factory, adapter, store, cert_factory):
        manager = manager_factory()
        store.save(cert_factory("fresh.com", expires_in=timedelta(days=60)))
        store.save(cert_factory("due.com", expires_in=timedelta(days=5)))
        store.save(cert_factory("gone.com", expires_in=timedelta(days=-3)))
        manager.load_existing()

        manager.renew_expired_certificates()

        assert adapter.calls == [("renew", "due.com"), ("renew", "gone.com")]
        statuses = {h.status for h in manager.check_certificate_health().values()}
        assert statuses == {CertificateStatus.VALID}

    def test_renew_expired_aggregates(self, manager_factory, adapter, store, cert_factory):
        manager = manager_factory()
        for domain in ("a.com", "b.com"):
            store.save(cert_factory(domain, expires_in=timedelta(days=5)))
        manager.load_existing()
        adapter.failures["a.com"] = AcmeError("unauthorized")

        with pytest.raises(AggregateError) as excinfo:
            manager.renew_expired_certificates()
        assert excinfo.value.domains == ["a.com"]
        assert manager.check_certificate_health()["b.com"].status == CertificateStatus.VALID


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------


class TestCleanup:
    def test_removes_only_long_expired(self, manager_factory, store, cert_factory):
        manager = manager_factory()
        store.save(cert_factory("old.com", expires_in=timedelta(days=-40)))
        store.save(cert_factory("recent.com", expires_in=timedelta(days=-5)))
        manager.load_existing()

        assert manager.cleanup() == ["old.com"]
        assert sorted(manager.list_certificates()) == ["recent.com"]
        # Files stay on disk by default.
        assert store.exists("old.com")

    def test_deletes_files_when_enabled(self, manager_factory, store, cert_factory):
        manager = manager_factory(cleanup_delete_files=True)
        store.save(cert_factory("old.com", expires_in=timedelta(days=-40)))
        manager.load_existing()

        assert manager.cleanup() == ["old.com"]
        assert not store.exists("old.com")

    def test_nothing_to_clean(self, manager_factory):
        assert manager_factory().cleanup() == []

    def test_request_during_file_deletion_keeps_new_files(self, manager_factory, store, cert_factory):
        manager = manager_factory(cleanup_delete_files=True)
        store.save(cert_factory("old.com", expires_in=timedelta(days=-40)))
        manager.load_existing()

        deleting = threading.Event()
        real_delete = store.delete

        def slow_delete(domain):
            deleting.set()
            time.sleep(0.1)
            return real_delete(domain)

        result: list[list[str]] = []
        with patch.object(store, "delete", side_effect=slow_delete):
            cleaner = threading.Thread(target=lambda: result.append(manager.cleanup()))
            cleaner.start()
            assert deleting.wait(2)
            fresh = manager.request_certificate("old.com")
            cleaner.join(2)

        assert result == [["old.com"]]
        assert manager.get_certificate("old.com") is fresh
        assert store.exists("old.com")
        assert store.load("old.com").expires_at == fresh.expires_at

    def test_in_flight_renewal_survives_cleanup(self, manager_factory, store, adapter, cert_factory):
        manager = manager_factory(cleanup_delete_files=True)
        store.save(cert_factory("old.com", expires_in=timedelta(days=-40)))
        manager.load_existing()
        adapter.gate = threading.Event()

        requester = threading.Thread(target=manager.request_certificate, args=("old.com",))
        requester.start()
        assert adapter.entered.wait(2)

        result: list[list[str]] = []
        cleaner = threading.Thread(target=lambda: result.append(manager.cleanup()))
        cleaner.start()
        time.sleep(0.05)
        adapter.gate.set()
        requester.join(2)
        cleaner.join(2)

        assert result == [[]]
        assert "old.com" in manager.list_certificates()
        assert store.exists("old.com")
