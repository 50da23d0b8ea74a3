"""Issuance subcommands: ``once``, ``request`` and ``renew``."""

from __future__ import annotations

import logging

from certpilot.cli.commands._output import print_error, print_health_report
from certpilot.core.cancel import CancelToken
from certpilot.core.errors import AggregateError, CancellationError, CertPilotError

log = logging.getLogger(__name__)

ONCE_TIMEOUT = 600.0


def run_issue(container, args) -> int:
    """Handle issuance subcommands."""
    container.load_existing()
    if args.command == "once":
        return _once(container)
    if args.command == "request":
        return _single(container, args.domain, renew=False)
    return _single(container, args.domain, renew=True)


def _once(container) -> int:
    """Process every configured domain, renew what is due, report health."""
    manager = container.manager
    token = CancelToken(ONCE_TIMEOUT)
    failed = False

    for label, batch in (
        ("process domains", manager.process_all_domains),
        ("renew certificates", manager.renew_expired_certificates),
    ):
        try:
            batch(token)
        except AggregateError as exc:
            failed = True
            print_error(f"failed to {label}: {exc}")
        except CancellationError as exc:
            print_error(f"{label} stopped: {exc}")
            return 1

    code = print_health_report(manager.check_certificate_health())
    return 1 if failed else code


def _single(container, domain: str, *, renew: bool) -> int:
    manager = container.manager
    try:
        cert = manager.renew_certificate(domain) if renew else manager.request_certificate(domain)
    except CertPilotError as exc:
        action = "renew" if renew else "request"
        print_error(f"failed to {action} certificate for {domain}: {exc.detail}")
        return 1

    cert_path, key_path = manager.get_certificate_paths(domain)
    print(f"Certificate for {domain} valid until {cert.expires_at.isoformat()}")
    print(f"  Certificate: {cert_path}")
    print(f"  Private key: {key_path}")
    return 0
