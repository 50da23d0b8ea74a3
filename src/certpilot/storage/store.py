"""Filesystem certificate store.

Directory layout::

    <storage_path>/
        example.com.crt          certificate chain (0644)
        example.com.key          private key       (0600)
        example.com.issuer.crt   issuer chain      (0644, optional)
        issuer.crt               reserved, never a domain

A save stages every file as a temporary in the same directory before
renaming any of them, and rolls back on failure, so a key is never
left next to a certificate it does not belong to.  The key's
temporary file is created owner-only before any byte is written.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from certpilot.core.errors import CertPilotError, NotFoundError, StoreError
from certpilot.models.certificate import Certificate

if TYPE_CHECKING:
    from collections.abc import Iterator

log = logging.getLogger(__name__)

CERT_SUFFIX = ".crt"
KEY_SUFFIX = ".key"
ISSUER_SUFFIX = ".issuer.crt"
RESERVED_ISSUER_NAME = "issuer.crt"

_CERT_MODE = 0o644
_KEY_MODE = 0o600


class CertificateStore:
    """Durable save/load of certificate and key pairs keyed by domain.

    Parameters
    ----------
    storage_path:
        Directory holding the artefacts.  Created on first save.

    """

    def __init__(self, storage_path: str | Path) -> None:
        self._root = Path(storage_path)

    @property
    def root(self) -> Path:
        return self._root

    # -- paths ---------------------------------------------------------------

    def cert_path(self, domain: str) -> Path:
        return self._root / f"{_checked(domain)}{CERT_SUFFIX}"

    def key_path(self, domain: str) -> Path:
        return self._root / f"{_checked(domain)}{KEY_SUFFIX}"

    def issuer_path(self, domain: str) -> Path:
        return self._root / f"{_checked(domain)}{ISSUER_SUFFIX}"

    # -- write ---------------------------------------------------------------

    def save(self, cert: Certificate) -> None:
        """Persist *cert*, replacing any previous files for its domain.

        All files are first written to temporaries next to their
        targets.  Only when every temporary is complete are they renamed
        over the targets, key first.  If any step fails, renames already
        done are rolled back, so the previous key and certificate stay
        paired on disk.

        Raises
        ------
        StoreError
            On any filesystem failure.

        """
        domain = cert.domain
        files = [
            (self.key_path(domain), cert.private_key_pem, _KEY_MODE),
            (self.cert_path(domain), cert.certificate_pem, _CERT_MODE),
        ]
        if cert.issuer_certificate_pem:
            files.append((self.issuer_path(domain), cert.issuer_certificate_pem, _CERT_MODE))

        staged: list[tuple[Path, str]] = []
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            for path, data, mode in files:
                staged.append((path, _write_temp(path, data, mode)))
            _replace_all(staged)
        except OSError as exc:
            for _, tmp_name in staged:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
            msg = f"failed to save certificate: {exc}"
            raise StoreError(msg, domain=domain) from exc

        if not cert.issuer_certificate_pem:
            self._drop_stale_issuer(domain)
        log.debug("Saved certificate for %s to %s", domain, self._root)

    def _drop_stale_issuer(self, domain: str) -> None:
        try:
            self.issuer_path(domain).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            log.warning("Could not remove stale issuer chain for %s: %s", domain, exc)

    def delete(self, domain: str) -> bool:
        """Remove every artefact for *domain*.  Returns True if any existed."""
        removed = False
        for path in (self.cert_path(domain), self.key_path(domain), self.issuer_path(domain)):
            try:
                path.unlink()
                removed = True
            except FileNotFoundError:
                continue
            except OSError as exc:
                msg = f"failed to delete {path.name}: {exc}"
                raise StoreError(msg, domain=domain) from exc
        return removed

    # -- read ----------------------------------------------------------------

    def load(self, domain: str) -> Certificate:
        """Load the stored certificate for *domain*.

        ``issued_at`` is taken from the certificate file's modification
        time since issuance time is not recorded separately.

        Raises
        ------
        NotFoundError
            If the certificate or the key file is missing.
        ParseError
            If the certificate bytes do not parse.
        StoreError
            On any other read failure.

        """
        cert_path = self.cert_path(domain)
        key_path = self.key_path(domain)
        issuer_path = self.issuer_path(domain)
        try:
            cert_pem = cert_path.read_bytes()
            key_pem = key_path.read_bytes()
            issued_at = datetime.fromtimestamp(cert_path.stat().st_mtime, tz=UTC)
            issuer_pem = issuer_path.read_bytes() if issuer_path.is_file() else None
        except FileNotFoundError as exc:
            raise NotFoundError(domain, f"missing {Path(exc.filename).name} for {domain}") from exc
        except OSError as exc:
            msg = f"failed to read certificate: {exc}"
            raise StoreError(msg, domain=domain) from exc

        return Certificate.from_pem(
            domain,
            cert_pem,
            key_pem,
            issuer_certificate_pem=issuer_pem,
            issued_at=issued_at,
        )

    def exists(self, domain: str) -> bool:
        return self.cert_path(domain).is_file() and self.key_path(domain).is_file()

    def list_domains(self) -> list[str]:
        """Domains with a certificate file, sorted.  No side effects."""
        return sorted(self._iter_domains())

    def _iter_domains(self) -> Iterator[str]:
        if not self._root.is_dir():
            return
        for entry in self._root.iterdir():
            name = entry.name
            if not entry.is_file() or not name.endswith(CERT_SUFFIX):
                continue
            if name == RESERVED_ISSUER_NAME or name.endswith(ISSUER_SUFFIX):
                continue
            yield name[: -len(CERT_SUFFIX)]

    def load_all(self) -> dict[str, Certificate]:
        """Load every stored certificate, skipping the ones that fail.

        A corrupt or partial certificate for one domain is logged and
        skipped so it never blocks the others.
        """
        loaded: dict[str, Certificate] = {}
        for domain in self.list_domains():
            try:
                loaded[domain] = self.load(domain)
            except CertPilotError as exc:
                log.warning("Skipping stored certificate for %s: %s", domain, exc)
        log.info("Loaded %d certificate(s) from %s", len(loaded), self._root)
        return loaded


def _checked(domain: str) -> str:
    """Reject names that would escape the storage directory."""
    if not domain or domain.startswith(".") or "/" in domain or "\\" in domain:
        msg = f"invalid domain name for storage: {domain!r}"
        raise StoreError(msg, domain=domain or None)
    if f"{domain}{CERT_SUFFIX}" == RESERVED_ISSUER_NAME:
        msg = f"domain name {domain!r} collides with the reserved {RESERVED_ISSUER_NAME}"
        raise StoreError(msg, domain=domain)
    return domain


def _write_temp(path: Path, data: bytes, mode: int) -> str:
    """Write *data* to a synced temporary file beside *path*; return its name."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        os.fchmod(fd, mode)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
    return tmp_name


def _backup(path: Path) -> str | None:
    """Hard-link the current *path* aside; None when it does not exist."""
    backup = str(path.with_name(f".{path.name}.{uuid.uuid4().hex}.bak"))
    try:
        os.link(path, backup)
    except FileNotFoundError:
        return None
    return backup


def _replace_all(staged: list[tuple[Path, str]]) -> None:
    """Rename each temporary over its target; undo every rename on failure."""
    done: list[tuple[Path, str | None]] = []
    try:
        for path, tmp_name in staged:
            backup = _backup(path)
            try:
                os.replace(tmp_name, path)
            except OSError:
                if backup is not None:
                    with contextlib.suppress(OSError):
                        os.unlink(backup)
                raise
            done.append((path, backup))
    except OSError:
        for path, backup in reversed(done):
            with contextlib.suppress(OSError):
                if backup is None:
                    path.unlink()
                else:
                    os.replace(backup, path)
        raise

    for _, backup in done:
        if backup is not None:
            with contextlib.suppress(OSError):
                os.unlink(backup)
