"""Key custody backend registry.

Loads the configured custody backend by name and returns an initialised
:class:`KeyCustodyBackend` instance.  Supports built-in backends
(``http``, ``local``) and custom backends via the ``ext:`` prefix.

Usage::

    from kmscert.custody.registry import load_custody_backend

    custody = load_custody_backend(settings.custody)
    material = custody.get_public_key("robot-key-1")
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from kmscert.cert.public_key import DEFAULT_KEY_SIZES
from kmscert.custody.base import KeyCustodyBackend
from kmscert.errors import CustodyBackendError

if TYPE_CHECKING:
    from kmscert.config.settings import CustodySettings

log = logging.getLogger(__name__)

# Maps config string → (module_path, class_name)
_BUILTIN_BACKENDS: dict[str, tuple[str, str]] = {
    "http": ("kmscert.custody.http", "HttpKeyCustody"),
    "local": ("kmscert.custody.local", "LocalKeyCustody"),
}


def load_custody_backend(
    custody_settings: CustodySettings,
    *,
    allowed_key_sizes: tuple[int, ...] = DEFAULT_KEY_SIZES,
) -> KeyCustodyBackend:
    """Load and return the configured key custody backend.

    Parameters
    ----------
    custody_settings:
        The ``custody`` section from :class:`KmscertSettings`.
    allowed_key_sizes:
        RSA key sizes the backend may hand out.

    Raises
    ------
    CustodyBackendError
        If the backend cannot be loaded.

    """
    backend_name = custody_settings.backend

    if backend_name in _BUILTIN_BACKENDS:
        mod_path, cls_name = _BUILTIN_BACKENDS[backend_name]
        label = backend_name
    elif backend_name.startswith("ext:"):
        mod_path, _, cls_name = backend_name[4:].rpartition(".")
        label = backend_name
        if not mod_path:
            msg = (
                f"Invalid external custody backend '{backend_name[4:]}': must be fully "
                "qualified (e.g. 'mypackage.module.ClassName')"
            )
            raise CustodyBackendError(msg)
    else:
        msg = (
            f"Unknown custody backend '{backend_name}'; "
            f"built-in options: {sorted(_BUILTIN_BACKENDS)}. "
            f"Use 'ext:mypackage.module.ClassName' for custom backends."
        )
        raise CustodyBackendError(msg)

    try:
        module = importlib.import_module(mod_path)
        cls = getattr(module, cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load custody backend '{label}': {exc}"
        raise CustodyBackendError(msg) from exc

    _validate_class(cls, label)
    backend = cls(custody_settings, allowed_key_sizes=allowed_key_sizes)
    log.info("Loaded custody backend: %s", label)
    return backend


def _validate_class(cls: object, label: str) -> None:
    """Verify that a backend class has the required methods."""
    if not (isinstance(cls, type) and issubclass(cls, KeyCustodyBackend)):
        msg = f"Custody backend '{label}' is not a subclass of KeyCustodyBackend"
        raise CustodyBackendError(msg)

    for method_name in ("export_public_key", "_sign_digest"):
        method = getattr(cls, method_name, None)
        if method is None or getattr(method, "__isabstractmethod__", False):
            msg = f"Custody backend '{label}' does not implement '{method_name}()'"
            raise CustodyBackendError(msg)
