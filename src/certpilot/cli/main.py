"""certpilot command-line entry point.

Usage::

    certpilot -c /etc/certpilot/config.yaml
    certpilot -c config.yaml --validate-only
    certpilot -c config.yaml serve
    certpilot -c config.yaml once
    certpilot -c config.yaml health --json
    certpilot -c config.yaml request example.com
    certpilot -c config.yaml renew example.com
    certpilot -c config.yaml check
    certpilot -c config.yaml notify
    certpilot -c config.yaml services
    python -m certpilot -c config.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from certpilot.cli.commands._output import print_error as _print_error

log = logging.getLogger(__name__)


def _get_version() -> str:
    from certpilot import __version__

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certpilot",
        description="certpilot: certificate lifecycle manager for Traefik-fronted domains",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("serve", help="Run the renewal daemon (default)")
    subparsers.add_parser("once", help="Process all domains, renew due certificates and exit")

    health_parser = subparsers.add_parser("health", help="Print a certificate health report")
    health_parser.add_argument("--json", action="store_true", default=False, help="Print JSON")

    request_parser = subparsers.add_parser("request", help="Request a certificate for one domain")
    request_parser.add_argument("domain")

    renew_parser = subparsers.add_parser("renew", help="Force renewal of one domain's certificate")
    renew_parser.add_argument("domain")

    subparsers.add_parser("check", help="One line per certificate")
    subparsers.add_parser("notify", help="Send expiration warning e-mails now")
    subparsers.add_parser("services", help="Show Traefik routers serving the configured domains")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, dispatches."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(1)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    try:
        from certpilot.config import CertPilotConfig, ConfigValidationError

        config = CertPilotConfig(config_file=config_path)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(1)

    # -- replace bootstrap logging with configured logging ---
    from certpilot.logging import configure_logging

    configure_logging(config.settings.logging)
    if args.debug:
        logging.getLogger("certpilot").setLevel(logging.DEBUG)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    sys.exit(_dispatch(config, args))


def _dispatch(config, args) -> int:
    from certpilot.context import Container
    from certpilot.core.errors import CertPilotError

    try:
        container = Container(config.settings)
    except CertPilotError as exc:
        if args.debug:
            raise
        _print_error(str(exc))
        return 1

    command = args.command or "serve"
    try:
        if command == "serve":
            from certpilot.cli.commands.serve import run_serve

            return run_serve(container, args)
        if command in ("once", "request", "renew"):
            from certpilot.cli.commands.issue import run_issue

            return run_issue(container, args)
        if command in ("health", "check"):
            from certpilot.cli.commands.health import run_health

            return run_health(container, args)
        if command == "notify":
            from certpilot.cli.commands.notify import run_notify

            return run_notify(container, args)
        if command == "services":
            from certpilot.cli.commands.services import run_services

            return run_services(container, args)
        _print_error(f"unknown command: {command}")
        return 2
    finally:
        container.close()


def _print_settings_summary(config) -> None:
    """Print a short summary of the loaded configuration."""
    settings = config.settings
    lines = [
        f"Configuration OK: {settings.source}",
        f"  Traefik API:     {settings.traefik_api}",
        f"  ACME directory:  {settings.acme.directory_url}",
        f"  ACME adapter:    {settings.acme.adapter} ({settings.acme.challenge_type})",
        f"  Storage path:    {settings.certificates.storage_path}",
        f"  Renewal window:  {settings.certificates.renewal_days} day(s)",
        f"  Check interval:  {settings.app.check_interval:g}s",
        f"  Domains:         {', '.join(settings.all_domains())}",
        f"  Notifications:   {'enabled' if settings.notification.enabled else 'disabled'}",
        f"  Status API:      "
        + (f"{settings.api.bind}:{settings.api.port}" if settings.api.enabled else "disabled"),
    ]
    print("\n".join(lines))
