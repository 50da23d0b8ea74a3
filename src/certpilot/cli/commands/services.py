"""Services subcommand: Traefik routers serving the configured domains."""

from __future__ import annotations

from certpilot.cli.commands._output import print_error
from certpilot.traefik.client import TraefikError


def run_services(container, args) -> int:  # noqa: ARG001
    settings = container.settings
    traefik = container.traefik
    domains = settings.all_domains()
    try:
        by_domain = traefik.get_services_by_domain(domains)
        services = {s.name: s for s in traefik.get_services()}
    except TraefikError as exc:
        print_error(str(exc))
        return 1

    missing = 0
    for domain in domains:
        names = by_domain.get(domain, [])
        if not names:
            missing += 1
            print(f"{domain}: no Traefik router")
            continue
        for name in names:
            service = services.get(name)
            status = (service.health or service.status) if service is not None else "unknown"
            print(f"{domain}: {name} ({status})")

    if missing:
        print(f"{missing} configured domain(s) not routed by Traefik")
    return 0
