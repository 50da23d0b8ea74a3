"""ACME adapter registry.

Loads the configured adapter by name and returns a ready
:class:`AcmeAdapter`, wrapped in a circuit breaker when enabled.
Supports the built-in ``acmeow`` adapter and custom adapters via the
``ext:`` prefix.  A custom adapter class is constructed as
``cls(acme_settings, store)``.

Usage::

    from certpilot.acme.registry import load_acme_adapter

    adapter = load_acme_adapter(settings.acme, store)
    cert = adapter.request_certificate("example.com")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from certpilot.acme.base import AcmeAdapter
from certpilot.acme.circuit_breaker import CircuitBreakerAdapter
from certpilot.acme.loader import import_class
from certpilot.core.errors import AcmeError

if TYPE_CHECKING:
    from certpilot.config.settings import AcmeSettings
    from certpilot.storage.store import CertificateStore

log = logging.getLogger(__name__)

# Maps config string -> (module_path, class_name)
_BUILTIN_ADAPTERS: dict[str, tuple[str, str]] = {
    "acmeow": ("certpilot.acme.acmeow_client", "AcmeowAdapter"),
}


def load_acme_adapter(settings: AcmeSettings, store: CertificateStore) -> AcmeAdapter:
    """Load and return the configured ACME adapter.

    Raises
    ------
    AcmeError
        If the adapter cannot be loaded.

    """
    name = settings.adapter

    if name in _BUILTIN_ADAPTERS:
        mod_path, cls_name = _BUILTIN_ADAPTERS[name]
        cls = import_class(f"{mod_path}.{cls_name}", AcmeAdapter, "ACME adapter")
    elif name.startswith("ext:"):
        cls = import_class(name[4:], AcmeAdapter, "ACME adapter")
    else:
        msg = (
            f"Unknown ACME adapter '{name}'; "
            f"built-in options: {sorted(_BUILTIN_ADAPTERS)}. "
            "Use 'ext:mypackage.module.ClassName' for custom adapters."
        )
        raise AcmeError(msg)

    adapter: AcmeAdapter = cls(settings, store)
    log.info("Loaded ACME adapter: %s", name)

    breaker = settings.circuit_breaker
    if breaker.enabled:
        adapter = CircuitBreakerAdapter(
            adapter,
            failure_threshold=breaker.failure_threshold,
            recovery_timeout=breaker.recovery_timeout_seconds,
        )
    return adapter
