"""Tests for certificate health rules, including exact boundaries."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from certpilot.certs import health
from certpilot.core.types import CertificateStatus
from certpilot.models.certificate import Certificate

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def _cert(expires_at: datetime) -> Certificate:
    # Health rules only look at the dates, so dummy PEM bytes are fine.
    return Certificate(
        domain="example.com",
        certificate_pem=b"cert",
        private_key_pem=b"key",
        issued_at=expires_at - timedelta(days=90),
        expires_at=expires_at,
    )


class TestIsExpired:
    def test_exactly_at_expiry_is_not_expired(self):
        assert health.is_expired(_cert(NOW), NOW) is False

    def test_one_microsecond_after_expiry_is_expired(self):
        assert health.is_expired(_cert(NOW), NOW + timedelta(microseconds=1)) is True

    def test_future_expiry(self):
        assert health.is_expired(_cert(NOW + timedelta(days=1)), NOW) is False


class TestNeedsRenewal:
    def test_exactly_at_threshold_is_not_due(self):
        cert = _cert(NOW + timedelta(days=30))
        assert health.needs_renewal(cert, 30, NOW) is False
        assert health.status_of(cert, 30, NOW) == CertificateStatus.VALID

    def test_just_past_threshold_is_due(self):
        cert = _cert(NOW + timedelta(days=30) - timedelta(seconds=1))
        assert health.needs_renewal(cert, 30, NOW) is True
        assert health.status_of(cert, 30, NOW) == CertificateStatus.NEEDS_RENEWAL

    def test_threshold_instant(self):
        cert = _cert(NOW + timedelta(days=40))
        assert health.renewal_threshold(cert, 30) == NOW + timedelta(days=10)

    def test_zero_window_only_due_after_expiry(self):
        cert = _cert(NOW)
        assert health.needs_renewal(cert, 0, NOW) is False
        assert health.needs_renewal(cert, 0, NOW + timedelta(seconds=1)) is True


class TestStatus:
    @pytest.mark.parametrize(
        ("expires_in", "expected"),
        [
            (timedelta(days=60), CertificateStatus.VALID),
            (timedelta(days=10), CertificateStatus.NEEDS_RENEWAL),
            (timedelta(days=-1), CertificateStatus.EXPIRED),
        ],
    )
    def test_status(self, expires_in, expected):
        assert health.status_of(_cert(NOW + expires_in), 30, NOW) == expected

    def test_expired_takes_priority_over_needs_renewal(self):
        snap = health.evaluate(_cert(NOW - timedelta(days=2)), 30, NOW)
        assert snap.is_expired is True
        assert snap.needs_renewal is True
        assert snap.status == CertificateStatus.EXPIRED


class TestDaysUntilExpiry:
    def test_truncates_partial_days(self):
        cert = _cert(NOW + timedelta(days=5, hours=23))
        assert health.days_until_expiry(cert, NOW) == 5

    def test_less_than_a_day_past_expiry_is_zero(self):
        cert = _cert(NOW - timedelta(hours=12))
        assert health.days_until_expiry(cert, NOW) == 0

    def test_negative_after_full_days(self):
        cert = _cert(NOW - timedelta(days=3, hours=1))
        assert health.days_until_expiry(cert, NOW) == -3


def test_evaluate_snapshot_to_dict():
    cert = _cert(NOW + timedelta(days=45))
    snap = health.evaluate(cert, 30, NOW)
    data = snap.to_dict()
    assert data["domain"] == "example.com"
    assert data["status"] == "valid"
    assert data["days_until_expiry"] == 45
    assert data["expires_at"] == cert.expires_at.isoformat()
