"""Serve subcommand: run the renewal daemon until SIGINT/SIGTERM."""

from __future__ import annotations

import logging
import signal
import threading

from certpilot.cli.commands._output import print_error
from certpilot.core.cancel import CancelToken
from certpilot.core.errors import AggregateError, CancellationError, CertPilotError

log = logging.getLogger(__name__)

INITIAL_PROCESS_TIMEOUT = 300.0


def run_serve(container, args) -> int:  # noqa: ARG001
    """Start the scheduler (and status API when enabled) and block."""
    settings = container.settings
    container.load_existing()

    if not container.traefik.is_healthy():
        log.warning("Traefik API at %s is not reachable, continuing without it", settings.traefik_api)

    try:
        container.adapter.startup_check()
    except CertPilotError as exc:
        print_error(f"ACME adapter startup failed: {exc}")
        return 1

    try:
        container.manager.process_all_domains(CancelToken(INITIAL_PROCESS_TIMEOUT))
    except AggregateError as exc:
        log.error("Initial certificate processing failed for: %s", ", ".join(exc.domains))  # noqa: TRY400
    except CancellationError as exc:
        log.warning("Initial certificate processing stopped: %s", exc)

    stop = threading.Event()

    def _handle_signal(signum, frame) -> None:  # noqa: ARG001
        log.info("Received %s, shutting down", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler = container.scheduler
    scheduler.start()

    server = None
    if settings.api.enabled:
        from certpilot.api import StatusServer, create_app  # noqa: PLC0415

        server = StatusServer(create_app(container.manager, scheduler), settings.api.bind, settings.api.port)
        try:
            server.start()
        except OSError as exc:
            scheduler.stop()
            print_error(f"cannot start status API on {settings.api.bind}:{settings.api.port}: {exc}")
            return 1

    log.info("certpilot running, managing %d domain(s)", len(container.manager.domains))
    stop.wait()

    if server is not None:
        server.stop()
    scheduler.stop()
    log.info("certpilot stopped")
    return 0
