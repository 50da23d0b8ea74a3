"""PEM parsing helpers.

The certificate expiry is always read from the certificate bytes
themselves.  Chains (leaf followed by intermediates) are accepted and
the first certificate is taken as the leaf.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from cryptography import x509

from certpilot.core.errors import ParseError

if TYPE_CHECKING:
    from datetime import datetime

_PEM_CERT_RE = re.compile(
    rb"-----BEGIN CERTIFICATE-----\r?\n.+?\r?\n-----END CERTIFICATE-----",
    re.DOTALL,
)


def _as_bytes(pem: bytes | str) -> bytes:
    if isinstance(pem, str):
        return pem.encode("ascii", errors="replace")
    return pem


def split_pem_chain(pem: bytes | str) -> list[bytes]:
    """Return every ``CERTIFICATE`` block in *pem*, in order."""
    return _PEM_CERT_RE.findall(_as_bytes(pem))


def parse_leaf_certificate(
    pem: bytes | str,
    *,
    domain: str | None = None,
) -> x509.Certificate:
    """Parse the first certificate of a PEM bundle.

    Raises
    ------
    ParseError
        If no ``CERTIFICATE`` block is present or the block is not a
        valid X.509 certificate.

    """
    blocks = split_pem_chain(pem)
    if not blocks:
        msg = "no PEM certificate block found"
        raise ParseError(msg, domain=domain)
    try:
        return x509.load_pem_x509_certificate(blocks[0])
    except ValueError as exc:
        msg = f"invalid X.509 certificate: {exc}"
        raise ParseError(msg, domain=domain) from exc


def parse_not_after(pem: bytes | str, *, domain: str | None = None) -> datetime:
    """Return the leaf certificate's notAfter as an aware UTC datetime."""
    return parse_leaf_certificate(pem, domain=domain).not_valid_after_utc
