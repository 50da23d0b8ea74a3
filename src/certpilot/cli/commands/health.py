"""Health subcommands: ``health`` and ``check``."""

from __future__ import annotations

import json

from certpilot.cli.commands._output import health_exit_code, print_health_report


def run_health(container, args) -> int:
    """Print certificate health; exit 1 when any certificate is not valid."""
    container.load_existing()
    health = container.manager.check_certificate_health()

    if args.command == "check":
        for domain in sorted(health):
            status = health[domain]
            print(f"{domain}\t{status.status.value}\t{status.days_until_expiry}d\t{status.expires_at.isoformat()}")
        return health_exit_code(health)

    if getattr(args, "json", False):
        print(json.dumps([health[d].to_dict() for d in sorted(health)], indent=2))
        return health_exit_code(health)

    return print_health_report(health)
