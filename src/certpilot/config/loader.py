"""certpilot configuration loader.

Lifecycle::

    # 1. CLI loads the file (once, at startup)
    config = CertPilotConfig(config_file="/etc/certpilot/config.yaml")

    # 2. Any module retrieves it afterwards
    from certpilot.config import get_config
    cfg = get_config()
    cfg.settings.certificates.renewal_days  # typed access

    # 3. Dynamic access to the raw mapping
    cfg.get("acme.challenge_handler_config.webroot")

String values of the form ``${VAR}`` or ``${VAR:-default}`` are
replaced with environment variables before validation.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from certpilot.config.settings import CertPilotSettings, build_settings, parse_duration
from certpilot.core.types import ChallengeType, KeyType

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_LOG_FORMATS = frozenset({"text", "json"})
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton reference
# ---------------------------------------------------------------------------
_instance: CertPilotConfig | None = None


def get_config() -> CertPilotConfig:
    """Return the loaded configuration.

    Raises :class:`RuntimeError` if no :class:`CertPilotConfig` has been
    created yet (i.e. the CLI entry point has not run).
    """
    if _instance is None:
        msg = (
            "Configuration not initialised. "
            "CertPilotConfig must be created with config_file= before calling get_config()."
        )
        raise RuntimeError(msg)
    return _instance


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """Raised when validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def resolve_env_vars(data: Any, path: str = "") -> Any:  # noqa: ANN401
    """Return a copy of *data* with every env reference resolved."""
    if isinstance(data, dict):
        return {
            key: resolve_env_vars(value, f"{path}.{key}" if path else str(key))
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [resolve_env_vars(item, f"{path}[{idx}]") for idx, item in enumerate(data)]
    if isinstance(data, str):
        return _resolve_value(data, path)
    return data


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------


def load_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML or JSON configuration file into a mapping."""
    path = Path(path)
    if not path.is_file():
        msg = f"configuration file not found: {path}"
        raise ConfigValidationError([msg])

    with path.open(encoding="utf-8") as fh:
        try:
            if path.suffix.lower() == ".json":
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ConfigValidationError([f"failed to parse {path}: {exc}"]) from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigValidationError([f"{path}: top level must be a mapping"])
    return data


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate(data: dict[str, Any]) -> None:  # noqa: C901, PLR0912
    """Check the resolved mapping, collecting every problem found.

    Raises
    ------
    ConfigValidationError
        Listing all problems at once.

    """
    errors: list[str] = []

    if not data.get("traefik_api"):
        errors.append("traefik_api is required")
    if not data.get("email"):
        errors.append("email is required")

    domains = data.get("domains") or []
    if not isinstance(domains, list) or not domains:
        errors.append("at least one domain configuration is required")
    else:
        for idx, entry in enumerate(domains):
            if not isinstance(entry, dict):
                errors.append(f"domains[{idx}] must be a mapping")
                continue
            if not entry.get("service"):
                errors.append(f"domains[{idx}].service is required")
            if not entry.get("domain"):
                errors.append(f"domains[{idx}].domain is required")
            aliases = entry.get("aliases") or []
            if not isinstance(aliases, list):
                errors.append(f"domains[{idx}].aliases must be a list")

    acme = data.get("acme") or {}
    key_type = str(acme.get("key_type") or "RSA2048").upper()
    if key_type not in KeyType.__members__:
        errors.append(
            f"acme.key_type '{acme.get('key_type')}' is not one of {sorted(KeyType.__members__)}",
        )
    challenge_type = acme.get("challenge_type", "http-01")
    if challenge_type not in {c.value for c in ChallengeType}:
        errors.append(f"acme.challenge_type '{challenge_type}' is not supported")
    if bool(acme.get("eab_kid")) != bool(acme.get("eab_hmac_key")):
        errors.append("acme.eab_kid and acme.eab_hmac_key must be set together")

    certs = data.get("certificates") or {}
    renewal_days = certs.get("renewal_days", 30)
    if not isinstance(renewal_days, int) or isinstance(renewal_days, bool) or renewal_days < 0:
        errors.append(f"certificates.renewal_days must be a non-negative integer, 0 meaning the default (got {renewal_days!r})")

    app = data.get("app") or {}
    for key in ("check_interval", "timeout", "run_timeout", "initial_delay"):
        if app.get(key) is None:
            continue
        try:
            seconds = parse_duration(app[key])
        except ValueError as exc:
            errors.append(f"app.{key}: {exc}")
            continue
        if key != "initial_delay" and seconds <= 0:
            errors.append(f"app.{key} must be greater than zero")

    notification = data.get("notification") or {}
    if notification.get("enabled") and not notification.get("smtp_host"):
        errors.append("notification.smtp_host is required when notifications are enabled")

    logging_cfg = data.get("logging") or {}
    level = str(logging_cfg.get("level") or app.get("log_level") or "INFO").upper()
    if level not in _LOG_LEVELS:
        errors.append(f"logging.level '{level}' is not a valid level")
    if logging_cfg.get("format", "text") not in _LOG_FORMATS:
        errors.append(f"logging.format must be one of {sorted(_LOG_FORMATS)}")

    if errors:
        raise ConfigValidationError(errors)


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class CertPilotConfig:
    """Loaded, validated configuration.

    After construction the typed settings tree is available at
    :pyattr:`settings` and the resolved raw mapping via
    :pyattr:`data` / :pymeth:`get`.
    """

    def __init__(
        self,
        *,
        config_file: str | Path | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        global _instance  # noqa: PLW0603

        if (config_file is None) == (data is None):
            msg = "exactly one of config_file= or data= is required"
            raise TypeError(msg)

        source = str(config_file) if config_file is not None else None
        raw = load_file(config_file) if config_file is not None else copy.deepcopy(data)
        self._data: dict[str, Any] = resolve_env_vars(raw)
        validate(self._data)
        self._settings = build_settings(self._data, source=source)
        _instance = self
        log.debug("Configuration loaded from %s", source or "<mapping>")

    @property
    def settings(self) -> CertPilotSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    def get(self, dotted: str, default: Any = None) -> Any:  # noqa: ANN401
        """Look up ``a.b.c`` in the resolved mapping."""
        node: Any = self._data
        for part in dotted.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    @classmethod
    def reset(cls) -> None:
        """Forget the loaded configuration -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None

    def __repr__(self) -> str:
        return f"<CertPilotConfig config_file={self._settings.source or '?'}>"
