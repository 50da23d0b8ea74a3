"""Challenge handler factories for the acmeow adapter.

Build acmeow :class:`ChallengeHandler` instances from the
``acme.challenge_handler`` / ``acme.challenge_handler_config``
settings.  certpilot never answers challenges itself; the handlers
delegate to operator scripts or a webroot.

Built-in factories:

- ``callback_dns``  -- shell scripts that create and delete DNS-01 TXT records
- ``file_http``     -- HTTP-01 tokens written under a webroot
- ``callback_http`` -- shell scripts that deploy and remove HTTP-01 tokens

Custom factories load through ``ext:mypackage.module.FactoryClass``.
"""

from __future__ import annotations

import abc
import logging
import subprocess
from typing import Any

from certpilot.acme.loader import import_class
from certpilot.core.errors import AcmeError

log = logging.getLogger(__name__)

_DEFAULT_SCRIPT_TIMEOUT = 60
_DEFAULT_PROPAGATION_DELAY = 10


class ChallengeHandlerFactory(abc.ABC):
    """Create an acmeow ChallengeHandler from a config mapping."""

    #: Config keys that must be present and non-empty.
    required: tuple[str, ...] = ()

    def create(self, name: str, config: dict[str, Any]) -> Any:
        for key in self.required:
            if not config.get(key):
                msg = f"{name} handler requires '{key}' in challenge_handler_config"
                raise AcmeError(msg)
        return self.build(config)

    @abc.abstractmethod
    def build(self, config: dict[str, Any]) -> Any:
        """Return a ready-to-use acmeow challenge handler."""


def _script_runner(script: str, timeout: int, label: str):
    """Return a callable that runs *script* with its positional args."""

    def run(*args: str) -> None:
        log.info("%s: %s via %s", label, " ".join(args[:2]), script)
        subprocess.run(  # noqa: S603
            [script, *args],
            check=True,
            timeout=timeout,
            capture_output=True,
            text=True,
        )

    return run


class CallbackDnsFactory(ChallengeHandlerFactory):
    """DNS-01 via ``create_script <domain> <name> <value>`` / ``delete_script <domain> <name>``."""

    required = ("create_script", "delete_script")

    def build(self, config: dict[str, Any]) -> Any:
        from acmeow.handlers import CallbackDnsHandler  # noqa: PLC0415

        timeout = config.get("script_timeout", _DEFAULT_SCRIPT_TIMEOUT)
        return CallbackDnsHandler(
            create_record=_script_runner(config["create_script"], timeout, "DNS create"),
            delete_record=_script_runner(config["delete_script"], timeout, "DNS delete"),
            propagation_delay=config.get("propagation_delay", _DEFAULT_PROPAGATION_DELAY),
        )


class FileHttpFactory(ChallengeHandlerFactory):
    """HTTP-01 tokens written to ``<webroot>/.well-known/acme-challenge/``."""

    required = ("webroot",)

    def build(self, config: dict[str, Any]) -> Any:
        from acmeow.handlers import FileHttpHandler  # noqa: PLC0415

        return FileHttpHandler(webroot=config["webroot"])


class CallbackHttpFactory(ChallengeHandlerFactory):
    """HTTP-01 via ``deploy_script <domain> <token> <keyauth>`` / ``cleanup_script <domain> <token>``."""

    required = ("deploy_script", "cleanup_script")

    def build(self, config: dict[str, Any]) -> Any:
        from acmeow.handlers import CallbackHttpHandler  # noqa: PLC0415

        timeout = config.get("script_timeout", _DEFAULT_SCRIPT_TIMEOUT)
        return CallbackHttpHandler(
            deploy=_script_runner(config["deploy_script"], timeout, "HTTP deploy"),
            cleanup=_script_runner(config["cleanup_script"], timeout, "HTTP cleanup"),
        )


_BUILTIN_FACTORIES: dict[str, ChallengeHandlerFactory] = {
    "callback_dns": CallbackDnsFactory(),
    "file_http": FileHttpFactory(),
    "callback_http": CallbackHttpFactory(),
}


def load_challenge_handler(name: str, config: dict[str, Any]) -> Any:
    """Create the challenge handler configured under *name*.

    Raises
    ------
    AcmeError
        If the handler is unknown, misconfigured or cannot be imported.

    """
    if name in _BUILTIN_FACTORIES:
        return _BUILTIN_FACTORIES[name].create(name, config)

    if name.startswith("ext:"):
        cls = import_class(name[4:], ChallengeHandlerFactory, "challenge handler factory")
        return cls().create(name, config)

    msg = (
        f"Unknown challenge handler '{name}'; "
        f"built-in options: {sorted(_BUILTIN_FACTORIES)}. "
        "Use 'ext:mypackage.module.FactoryClass' for custom handlers."
    )
    raise AcmeError(msg)
