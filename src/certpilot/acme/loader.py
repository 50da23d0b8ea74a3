"""Import helper for ``ext:`` plug-in classes."""

from __future__ import annotations

import importlib

from certpilot.core.errors import AcmeError


def import_class(fqn: str, base: type, label: str) -> type:
    """Import ``package.module.ClassName`` and check it subclasses *base*.

    Raises
    ------
    AcmeError
        If the name is not fully qualified, cannot be imported, or is
        not a subclass of *base*.

    """
    module_path, _, cls_name = fqn.rpartition(".")
    if not module_path:
        msg = f"Invalid {label} '{fqn}': must be fully qualified (e.g. 'mypackage.module.ClassName')"
        raise AcmeError(msg)

    try:
        module = importlib.import_module(module_path)
        cls = getattr(module, cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load {label} '{fqn}': {exc}"
        raise AcmeError(msg) from exc

    if not (isinstance(cls, type) and issubclass(cls, base)):
        msg = f"{label.capitalize()} '{fqn}' must be a subclass of {base.__name__}"
        raise AcmeError(msg)
    return cls
