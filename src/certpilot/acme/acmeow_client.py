"""ACME adapter backed by the ACMEOW client library.

Runs the whole order flow against the configured CA directory::

    create_order -> complete_challenges -> finalize_order -> get_certificate

ACMEOW generates the certificate key during ``finalize_order``.  The
client object is stateful (one current order), so every issuance is
serialised with the adapter's own lock.  That lock is private to the
adapter; the certificate manager never holds its registry lock while
calling in here.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from certpilot.acme.base import AcmeAdapter
from certpilot.acme.handlers import load_challenge_handler
from certpilot.certs.pem import split_pem_chain
from certpilot.core.errors import AcmeError, CertPilotError
from certpilot.models.certificate import Certificate

if TYPE_CHECKING:
    from certpilot.config.settings import AcmeSettings
    from certpilot.storage.store import CertificateStore

log = logging.getLogger(__name__)

_RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "connection",
    "network",
    "server",
    "ratelimit",
    "rate limit",
    "503",
    "429",
)


class AcmeowAdapter(AcmeAdapter):
    """Issue certificates through ACMEOW.

    Parameters
    ----------
    settings:
        The ``acme`` configuration section.
    store:
        Certificate store used by :meth:`load_certificate`.

    """

    def __init__(self, settings: AcmeSettings, store: CertificateStore) -> None:
        self._settings = settings
        self._store = store
        self._client: Any = None
        self._handler: Any = None
        self._lock = threading.Lock()

    def startup_check(self) -> None:
        """Create the ACMEOW client, load the challenge handler, register the account.

        Raises
        ------
        AcmeError
            If required settings are missing, the handler cannot be
            built, or account registration fails.

        """
        if not self._settings.directory_url:
            msg = "acme.directory_url is required"
            raise AcmeError(msg)
        if not self._settings.email:
            msg = "acme.email is required"
            raise AcmeError(msg)

        storage = Path(self._settings.account_path)
        try:
            storage.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Failed to create ACME account directory '{storage}': {exc}"
            raise AcmeError(msg) from exc

        self._handler = load_challenge_handler(
            self._settings.challenge_handler,
            self._settings.challenge_handler_config,
        )

        try:
            self._client = self._create_client(storage)
        except Exception as exc:
            msg = f"Failed to initialise ACME client: {exc}"
            raise AcmeError(msg, retryable=_is_retryable(exc)) from exc

    def _create_client(self, storage: Path) -> Any:
        from acmeow import AcmeClient  # noqa: PLC0415

        client_kwargs: dict[str, Any] = {
            "server_url": self._settings.directory_url,
            "email": self._settings.email,
            "storage_path": storage,
            "verify_ssl": self._settings.verify_ssl,
            "timeout": self._settings.timeout_seconds,
        }
        if self._settings.proxy_url:
            client_kwargs["proxy_url"] = self._settings.proxy_url

        client = AcmeClient(**client_kwargs)
        if self._settings.eab_kid and self._settings.eab_hmac_key:
            client.set_external_account_binding(
                kid=self._settings.eab_kid,
                hmac_key=self._settings.eab_hmac_key,
            )
        client.create_account()
        log.info("Registered ACME account %s with %s", self._settings.email, self._settings.directory_url)
        return client

    # -- AcmeAdapter ---------------------------------------------------------

    def request_certificate(self, domain: str) -> Certificate:
        return self._issue(domain)

    def renew_certificate(self, existing: Certificate) -> Certificate:
        # ACME has no renew verb; a renewal is a fresh order with a fresh key.
        log.info("Renewing certificate for %s (expires %s)", existing.domain, existing.expires_at.isoformat())
        return self._issue(existing.domain)

    def load_certificate(self, domain: str) -> Certificate:
        try:
            return self._store.load(domain)
        except CertPilotError as exc:
            msg = f"failed to load certificate: {exc.detail}"
            raise AcmeError(msg, domain=domain) from exc

    def close(self) -> None:
        with self._lock:
            self._client = None

    # -- internals -----------------------------------------------------------

    def _issue(self, domain: str) -> Certificate:
        with self._lock:
            if self._client is None:
                self.startup_check()
            try:
                cert_pem, key_pem = self._run_order(domain)
            except AcmeError:
                raise
            except Exception as exc:
                msg = f"ACME error ({type(exc).__name__}): {exc}"
                raise AcmeError(msg, domain=domain, retryable=_is_retryable(exc)) from exc

        return _to_certificate(domain, cert_pem, key_pem)

    def _run_order(self, domain: str) -> tuple[str, str]:
        from acmeow import ChallengeType, Identifier, KeyType  # noqa: PLC0415

        log.info("Creating ACME order for %s", domain)
        self._client.create_order([Identifier.dns(domain)])

        log.info("Completing %s challenge for %s", self._settings.challenge_type, domain)
        self._client.complete_challenges(
            self._handler,
            challenge_type=ChallengeType(self._settings.challenge_type),
        )

        self._client.finalize_order(KeyType[self._settings.key_type])
        cert_pem, key_pem = self._client.get_certificate()
        log.info("Certificate issued for %s", domain)
        return cert_pem, key_pem


def _to_certificate(domain: str, cert_pem: str | bytes, key_pem: str | bytes) -> Certificate:
    """Split the returned chain into leaf and issuer material."""
    blocks = split_pem_chain(cert_pem)
    issuer = b"\n".join(blocks[1:]) + b"\n" if len(blocks) > 1 else None
    try:
        return Certificate.from_pem(
            domain,
            cert_pem,
            key_pem,
            issuer_certificate_pem=issuer,
        )
    except CertPilotError as exc:
        msg = f"CA returned an unusable certificate: {exc.detail}"
        raise AcmeError(msg, domain=domain) from exc


def _is_retryable(exc: Exception) -> bool:
    """Guess from the exception whether the next run may succeed."""
    text = f"{type(exc).__name__} {exc}".lower()
    return any(pattern in text for pattern in _RETRYABLE_PATTERNS)
