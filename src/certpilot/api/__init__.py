"""Read-only JSON status API.

Usage::

    from certpilot.api import StatusServer, create_app

    server = StatusServer(create_app(manager, scheduler), "127.0.0.1", 8089)
    server.start()
    ...
    server.stop()
"""

from certpilot.api.app import create_app
from certpilot.api.server import StatusServer

__all__ = ["StatusServer", "create_app"]
