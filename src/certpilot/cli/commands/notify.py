"""Notify subcommand: send expiration warnings now."""

from __future__ import annotations

from certpilot.cli.commands._output import print_error


def run_notify(container, args) -> int:  # noqa: ARG001
    if not container.notifier.enabled:
        print_error("notifications are disabled or have no recipients")
        return 1
    container.load_existing()
    sent = container.notifier.send_expiration_warnings(container.manager.check_certificate_health())
    print(f"Sent {sent} expiration warning(s)")
    return 0
