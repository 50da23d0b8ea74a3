"""Root conftest for the certpilot test suite."""

from __future__ import annotations

import sys
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from certpilot.acme.base import AcmeAdapter  # noqa: E402
from certpilot.core.errors import AcmeError  # noqa: E402
from certpilot.models.certificate import Certificate  # noqa: E402

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Certificate factories
# ---------------------------------------------------------------------------


def make_pem_pair(
    domain: str,
    not_after: datetime,
    not_before: datetime | None = None,
) -> tuple[bytes, bytes]:
    """Self-signed EC certificate for *domain*; returns (cert_pem, key_pem)."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    not_before = not_before or min(not_after, NOW) - timedelta(days=1)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return cert.public_bytes(serialization.Encoding.PEM), key_pem


def make_certificate(
    domain: str,
    *,
    expires_in: timedelta,
    now: datetime = NOW,
    issued_at: datetime | None = None,
) -> Certificate:
    """Real PEM-backed certificate expiring *expires_in* after *now*."""
    cert_pem, key_pem = make_pem_pair(domain, now + expires_in)
    return Certificate.from_pem(domain, cert_pem, key_pem, issued_at=issued_at or now - timedelta(days=1))


@pytest.fixture()
def cert_factory():
    """Return :func:`make_certificate`."""
    return make_certificate


@pytest.fixture()
def pem_factory():
    """Return :func:`make_pem_pair`."""
    return make_pem_pair


# ---------------------------------------------------------------------------
# Clock and adapter doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Settable clock; calling it returns the current fake time."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeAdapter(AcmeAdapter):
    """Scripted ACME adapter: issues certificates valid for *lifetime*.

    ``failures`` maps domain -> exception raised on the next call(s)
    for that domain.  ``gate``, when set, blocks every call until the
    event fires, so tests can hold a renewal in flight.
    """

    def __init__(self, clock: FakeClock, lifetime: timedelta = timedelta(days=90)) -> None:
        self.clock = clock
        self.lifetime = lifetime
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.loadable: dict[str, Certificate] = {}
        self.gate: threading.Event | None = None
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def _issue(self, op: str, domain: str) -> Certificate:
        with self._lock:
            self.calls.append((op, domain))
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if domain in self.failures:
            raise self.failures[domain]
        return make_certificate(domain, expires_in=self.lifetime, now=self.clock())

    def request_certificate(self, domain: str) -> Certificate:
        return self._issue("request", domain)

    def renew_certificate(self, existing: Certificate) -> Certificate:
        return self._issue("renew", existing.domain)

    def load_certificate(self, domain: str) -> Certificate:
        if domain in self.loadable:
            return self.loadable[domain]
        raise AcmeError(f"no certificate for {domain}", domain=domain)

    def count(self, op: str, domain: str | None = None) -> int:
        with self._lock:
            return sum(1 for o, d in self.calls if o == op and (domain is None or d == domain))


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def adapter(clock: FakeClock) -> FakeAdapter:
    return FakeAdapter(clock)


@pytest.fixture()
def store(tmp_path: Path):
    from certpilot.storage.store import CertificateStore

    return CertificateStore(tmp_path / "certs")


@pytest.fixture()
def manager_factory(adapter, store, clock):
    """Build a :class:`CertificateManager` wired to the fakes."""
    from certpilot.services.manager import CertificateManager

    def _make(**kwargs):
        kwargs.setdefault("renewal_days", 30)
        kwargs.setdefault("clock", clock)
        return CertificateManager(adapter, store, **kwargs)

    return _make


# ---------------------------------------------------------------------------
# Config data
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data(tmp_path: Path) -> dict:
    """Return a dict containing the minimum required config fields."""
    return {
        "traefik_api": "http://traefik:8080/api",
        "email": "admin@example.com",
        "domains": [
            {"service": "web", "domain": "example.com", "aliases": ["www.example.com"]},
        ],
        "certificates": {"storage_path": str(tmp_path / "certs")},
        "acme": {"account_path": str(tmp_path / "acme")},
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the CertPilotConfig singleton before and after every test."""
    from certpilot.config.loader import CertPilotConfig

    CertPilotConfig.reset()
    yield
    CertPilotConfig.reset()

