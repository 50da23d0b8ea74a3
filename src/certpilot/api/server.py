"""Owned HTTP server handle for the status API.

The server lives in a daemon thread started by :meth:`StatusServer.start`
and is shut down by :meth:`StatusServer.stop`.  Nothing is kept in
module globals, so several servers (e.g. in tests) can coexist.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from werkzeug.serving import make_server

if TYPE_CHECKING:
    from flask import Flask
    from werkzeug.serving import BaseWSGIServer

log = logging.getLogger(__name__)


class StatusServer:
    """Serve a WSGI app on ``bind:port`` in a background thread."""

    def __init__(self, app: Flask, bind: str, port: int) -> None:
        self._app = app
        self._bind = bind
        self._port = port
        self._server: BaseWSGIServer | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._server is not None

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one when that was 0."""
        with self._lock:
            return self._server.server_port if self._server is not None else self._port

    def start(self) -> None:
        """Bind the socket and start serving.

        Raises
        ------
        RuntimeError
            If the server is already running.
        OSError
            If the address cannot be bound.

        """
        with self._lock:
            if self._server is not None:
                msg = "status server is already running"
                raise RuntimeError(msg)
            self._server = make_server(self._bind, self._port, self._app, threaded=True)
            self._thread = threading.Thread(
                target=self._server.serve_forever,
                name="certpilot-status-api",
                daemon=True,
            )
            self._thread.start()
        log.info("Status API listening on http://%s:%d", self._bind, self.port)

    def stop(self, timeout: float = 5.0) -> None:
        """Shut the server down; a no-op when it is not running."""
        with self._lock:
            server, thread = self._server, self._thread
            self._server = self._thread = None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join(timeout=timeout)
        log.info("Status API stopped")
