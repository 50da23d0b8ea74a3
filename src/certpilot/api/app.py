"""Flask application factory for the status API.

Endpoints::

    GET  /livez                    process is alive
    GET  /healthz                  200 when every certificate is valid, else 503
    GET  /certificates             health of every registered certificate
    GET  /certificates/<domain>    health of one certificate (404 if unknown)
    GET  /scheduler                scheduler status and statistics
    POST /scheduler/run            trigger one renewal check now
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from flask import Blueprint, Flask, current_app, jsonify
from werkzeug.exceptions import HTTPException

from certpilot.core.errors import CertPilotError, NotFoundError
from certpilot.core.types import CertificateStatus

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue

    from certpilot.services.manager import CertificateManager
    from certpilot.services.scheduler import RenewalScheduler

log = logging.getLogger(__name__)

status_bp = Blueprint("status", __name__)


def create_app(
    manager: CertificateManager,
    scheduler: RenewalScheduler | None = None,
) -> Flask:
    """Create the status API application.

    Parameters
    ----------
    manager:
        Certificate manager whose registry is reported.
    scheduler:
        Running scheduler, if any.  Without one the ``/scheduler``
        endpoints answer 404.

    Returns
    -------
    Flask
        WSGI application, ready for :class:`StatusServer`.

    """
    app = Flask("certpilot")
    app.extensions["certpilot.manager"] = manager
    app.extensions["certpilot.scheduler"] = scheduler

    _register_error_handlers(app)
    app.register_blueprint(status_bp)
    return app


def _manager() -> CertificateManager:
    return current_app.extensions["certpilot.manager"]


def _scheduler() -> RenewalScheduler:
    scheduler = current_app.extensions.get("certpilot.scheduler")
    if scheduler is None:
        msg = "scheduler is not running in this process"
        raise _ApiError(msg, 404)
    return scheduler


class _ApiError(Exception):
    def __init__(self, detail: str, status: int) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status = status


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(_ApiError)
    def handle_api_error(exc: _ApiError) -> ResponseReturnValue:
        return jsonify({"error": exc.detail}), exc.status

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc: NotFoundError) -> ResponseReturnValue:
        return jsonify({"error": exc.detail, "domain": exc.domain}), 404

    @app.errorhandler(CertPilotError)
    def handle_certpilot_error(exc: CertPilotError) -> ResponseReturnValue:
        log.error("Status API request failed: %s", exc)  # noqa: TRY400
        return jsonify({"error": exc.detail, "domain": exc.domain}), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException) -> ResponseReturnValue:
        return jsonify({"error": exc.description}), exc.code or 500


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@status_bp.route("/livez")
def livez() -> ResponseReturnValue:
    from certpilot import __version__  # noqa: PLC0415

    return jsonify({"alive": True, "version": __version__}), 200


@status_bp.route("/healthz")
def healthz() -> ResponseReturnValue:
    health = _manager().check_certificate_health()
    counts = {status.value: 0 for status in CertificateStatus}
    for status in health.values():
        counts[status.status.value] += 1

    healthy = counts[CertificateStatus.VALID.value] == len(health)
    result = {
        "status": "ok" if healthy else "degraded",
        "total": len(health),
        **counts,
    }
    return jsonify(result), 200 if healthy else 503


@status_bp.route("/certificates")
def list_certificates() -> ResponseReturnValue:
    health = _manager().check_certificate_health()
    return jsonify({"certificates": [health[d].to_dict() for d in sorted(health)]}), 200


@status_bp.route("/certificates/<domain>")
def get_certificate(domain: str) -> ResponseReturnValue:
    manager = _manager()
    health = manager.check_certificate_health().get(domain)
    if health is None:
        raise NotFoundError(domain)
    cert_path, key_path = manager.get_certificate_paths(domain)
    return jsonify({**health.to_dict(), "cert_path": str(cert_path), "key_path": str(key_path)}), 200


@status_bp.route("/scheduler")
def scheduler_status() -> ResponseReturnValue:
    return jsonify(_scheduler().get_status().to_dict()), 200


@status_bp.route("/scheduler/run", methods=["POST"])
def scheduler_run() -> ResponseReturnValue:
    result = _scheduler().run_once()
    return jsonify(result.to_dict()), 200 if result.ok else 500
