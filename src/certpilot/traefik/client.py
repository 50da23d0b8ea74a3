"""Read-only client for the Traefik dashboard API.

Only the ``/api/http/routers``, ``/api/http/services`` and ``/ping``
endpoints are used.  The base URL is the configured ``traefik_api``
value, e.g. ``http://traefik:8080/api``; ``/ping`` is resolved against
the same base.
"""

from __future__ import annotations

import contextlib
import json
import logging
import re
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any

from certpilot.core.errors import CertPilotError

log = logging.getLogger(__name__)

_HOST_RULE = re.compile(r"host\(([^)]*)\)", re.IGNORECASE)
_BACKTICKED = re.compile(r"`([^`]+)`")


class TraefikError(CertPilotError):
    """The Traefik API could not be reached or returned garbage."""


@dataclass(frozen=True)
class Router:
    name: str
    rule: str = ""
    service: str = ""
    status: str = ""
    entry_points: tuple[str, ...] = ()
    tls: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Router:
        return cls(
            name=data.get("name", ""),
            rule=data.get("rule", ""),
            service=data.get("service", ""),
            status=data.get("status", ""),
            entry_points=tuple(data.get("entryPoints") or ()),
            tls=data.get("tls") is not None,
        )

    @property
    def hosts(self) -> list[str]:
        """Host names listed in ``Host(...)`` matchers of the rule."""
        hosts: list[str] = []
        for args in _HOST_RULE.findall(self.rule):
            for host in _BACKTICKED.findall(args):
                host = host.strip().lower()
                if host and host not in hosts:
                    hosts.append(host)
        return hosts

    def matches(self, domain: str) -> bool:
        domain = domain.lower()
        rule = self.rule.lower()
        if domain in self.hosts:
            return True
        return f"hostregexp(`{domain}`)" in rule


@dataclass(frozen=True)
class Service:
    name: str
    type: str = ""
    status: str = ""
    health: str = ""
    servers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Service:
        return cls(
            name=data.get("name", ""),
            type=data.get("type", ""),
            status=data.get("status", ""),
            health=data.get("health", ""),
            servers=dict(data.get("serverStatus") or {}),
        )


class TraefikClient:
    """Discover which Traefik routers and services serve which domains.

    Parameters
    ----------
    base_url:
        Traefik API root, e.g. ``http://traefik:8080/api``.
    timeout:
        Per-request timeout in seconds.

    """

    def __init__(self, base_url: str, timeout: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def get_routers(self) -> list[Router]:
        return [Router.from_api(item) for item in self._get_list("/http/routers")]

    def get_services(self) -> list[Service]:
        return [Service.from_api(item) for item in self._get_list("/http/services")]

    def get_routers_and_services(self) -> list[tuple[str, str]]:
        """Every ``(host, service)`` pair found in router rules, sorted."""
        pairs = {
            (host, router.service)
            for router in self.get_routers()
            if router.service
            for host in router.hosts
        }
        return sorted(pairs)

    def get_services_by_domain(self, domains: list[str]) -> dict[str, list[str]]:
        """Map each domain to the services whose routers match it.

        Domains no router matches are absent from the result.
        """
        result: dict[str, list[str]] = {}
        for router in self.get_routers():
            for domain in domains:
                if router.matches(domain) and router.service not in result.get(domain, []):
                    result.setdefault(domain, []).append(router.service)
        return result

    def get_service_health(self, name: str) -> str:
        """Health string reported by Traefik for service *name*.

        Raises
        ------
        TraefikError
            If the service does not exist or the API is unreachable.

        """
        for service in self.get_services():
            if service.name == name:
                return service.health or service.status
        msg = f"service {name} not found in Traefik"
        raise TraefikError(msg)

    def is_healthy(self) -> bool:
        """True when ``/ping`` answers 200."""
        try:
            with urllib.request.urlopen(self._url("/ping"), timeout=self._timeout) as resp:  # noqa: S310
                return resp.status == 200
        except (urllib.error.URLError, OSError) as exc:
            log.debug("Traefik ping failed: %s", exc)
            return False

    # -- HTTP ----------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _get_list(self, path: str) -> list[dict[str, Any]]:
        url = self._url(path)
        req = urllib.request.Request(url, headers={"Accept": "application/json"})  # noqa: S310
        try:
            resp = urllib.request.urlopen(req, timeout=self._timeout)  # noqa: S310
        except urllib.error.HTTPError as exc:
            body = ""
            with contextlib.suppress(Exception):
                body = exc.read().decode("utf-8", errors="replace")[:500]
            msg = f"Traefik API returned HTTP {exc.code} for {path}: {body}"
            raise TraefikError(msg) from exc
        except (urllib.error.URLError, OSError) as exc:
            msg = f"Failed to reach Traefik API at {url}: {exc}"
            raise TraefikError(msg) from exc

        with resp:
            try:
                data = json.loads(resp.read().decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                msg = f"Traefik API returned invalid JSON for {path}: {exc}"
                raise TraefikError(msg) from exc

        if not isinstance(data, list):
            msg = f"Traefik API returned {type(data).__name__} for {path}, expected a list"
            raise TraefikError(msg)
        return [item for item in data if isinstance(item, dict)]
