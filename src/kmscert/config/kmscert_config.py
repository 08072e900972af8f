"""kmscert configuration loader.

Typical use::

    KmscertConfig(config_file="/etc/kmscert/config.yaml")   # CLI, once

    from kmscert.config import get_config
    get_config().settings.custody.backend                    # typed
    get_config().get("custody.options.vault_name", "prod")   # raw

Loading runs in a fixed order: read YAML/JSON, substitute ``${VAR}`` and
``${VAR:-default}`` references, validate against the bundled JSON
schema, run the cross-field :meth:`KmscertConfig.additional_checks`, and
build the frozen settings tree.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from kmscert.config.settings import KmscertSettings, build_settings

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

# Whole-string references only; "x-${VAR}" is left untouched
_ENV_REF_RE = re.compile(r"^\$\{(?P<name>[^}:]+?)(?::-(?P<default>.*))?\}$", re.DOTALL)

_DOTTED_CLASS_RE = re.compile(r"^[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)+$")

log = logging.getLogger(__name__)

_instance: KmscertConfig | None = None


def get_config() -> KmscertConfig:
    """Return the loaded configuration.

    Raises :class:`RuntimeError` when no :class:`KmscertConfig` has been
    constructed in this process.
    """
    if _instance is None:
        msg = (
            "Configuration not initialised; construct "
            "KmscertConfig(config_file=...) before calling get_config()"
        )
        raise RuntimeError(msg)
    return _instance


class ConfigValidationError(Exception):
    """One or more problems found while loading the configuration.

    ``errors`` holds every message; ``str()`` lists them one per line.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        lines = "".join(f"\n  - {error}" for error in errors)
        super().__init__(f"Configuration validation failed:{lines}")


# ---------------------------------------------------------------------------
# Environment variable substitution
# ---------------------------------------------------------------------------


def _substitute(value: str, path: str) -> str:
    match = _ENV_REF_RE.fullmatch(value)
    if match is None:
        return value
    name, default = match.group("name"), match.group("default")
    if name in os.environ:
        return os.environ[name]
    if default is not None:
        return default
    msg = f"Environment variable '${{{name}}}' at '{path}' is not set and has no default"
    raise ConfigValidationError([msg])


def _resolve_env(node: Any, path: str = "") -> Any:  # noqa: ANN401
    """Return a copy of *node* with every ``${VAR}`` string substituted."""
    if isinstance(node, str):
        return _substitute(node, path)
    if isinstance(node, dict):
        return {
            key: _resolve_env(value, f"{path}.{key}" if path else str(key))
            for key, value in node.items()
        }
    if isinstance(node, list):
        return [_resolve_env(item, f"{path}[{idx}]") for idx, item in enumerate(node)]
    return node


def _load_document(source: Path) -> dict:
    """Parse *source* as JSON (``.json``) or YAML and substitute env vars."""
    try:
        text = source.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigValidationError([f"Configuration file not found: {source}"]) from None
    except OSError as exc:
        raise ConfigValidationError([f"Cannot read {source}: {exc}"]) from exc

    try:
        data = json.loads(text) if source.suffix == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigValidationError([f"Cannot parse {source}: {exc}"]) from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigValidationError(
            [f"Top level of {source} must be a mapping, got {type(data).__name__}"],
        )
    return _resolve_env(data)


def _validate_schema(data: dict) -> None:
    schema = json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))
    validator = jsonschema.Draft7Validator(schema)
    problems = sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))
    if problems:
        raise ConfigValidationError(
            [
                f"{'.'.join(str(p) for p in err.absolute_path) or '(root)'}: {err.message}"
                for err in problems
            ],
        )


class KmscertConfig:
    """Loaded, validated configuration.

    Constructing an instance publishes it as the process-wide
    configuration returned by :func:`get_config`.  A failed load leaves
    any previously published instance in place.
    """

    def __init__(self, *, config_file: str | Path) -> None:
        """Load and validate *config_file*.

        Raises
        ------
        ConfigValidationError
            If the file cannot be read or fails validation.

        """
        global _instance  # noqa: PLW0603

        self._source = Path(config_file)
        self._data = _load_document(self._source)
        _validate_schema(self._data)
        self.additional_checks()
        self._settings: KmscertSettings = build_settings(self._data)

        _instance = self
        log.debug("Loaded configuration from %s", self._source)

    @property
    def settings(self) -> KmscertSettings:
        return self._settings

    @property
    def source(self) -> Path:
        """Path of the loaded configuration file."""
        return self._source

    @property
    def data(self) -> dict:
        """Raw configuration after env-var substitution."""
        return self._data

    def get(self, dot_path: str, default: Any = None) -> Any:  # noqa: ANN401
        """Return the raw value at *dot_path*, e.g. ``"custody.http.base_url"``."""
        node: Any = self._data
        for part in dot_path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    # -- validation ---------------------------------------------------------

    def additional_checks(self, data: dict | None = None) -> None:
        """Cross-field checks the schema cannot express.

        Checks *data* when given, the loaded document otherwise.
        """
        if data is None:
            data = self._data
        errors: list[str] = []
        custody = data.get("custody") or {}
        backend = custody.get("backend", "http")
        http = custody.get("http") or {}
        local = custody.get("local") or {}

        if backend == "http" and not http.get("base_url"):
            errors.append("custody.http.base_url is required for the http custody backend")
        elif backend == "local" and not local.get("key_directory"):
            errors.append("custody.local.key_directory is required for the local custody backend")
        elif backend.startswith("ext:") and not _DOTTED_CLASS_RE.fullmatch(backend[4:]):
            errors.append(
                f"custody.backend '{backend}' must name a fully qualified class "
                "(e.g. 'ext:mypackage.module.ClassName')",
            )

        if bool(http.get("client_cert_path")) != bool(http.get("client_key_path")):
            errors.append(
                "custody.http.client_cert_path and custody.http.client_key_path "
                "must be set together",
            )

        cert = data.get("certificate") or {}
        default_years = cert.get("default_validity_years", 10)
        max_years = cert.get("max_validity_years", 30)
        if default_years > max_years:
            errors.append(
                f"certificate.default_validity_years ({default_years}) exceeds "
                f"certificate.max_validity_years ({max_years})",
            )

        audit = (data.get("logging") or {}).get("audit") or {}
        if audit.get("enabled") and not audit.get("file"):
            errors.append("logging.audit.file is required when logging.audit.enabled is true")

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    def reload_settings(self) -> KmscertSettings:
        """Re-read and re-validate the file, then build fresh settings.

        The instance is unchanged; an invalid file raises
        :class:`ConfigValidationError` exactly as the first load does.
        """
        data = _load_document(self._source)
        _validate_schema(data)
        self.additional_checks(data)
        return build_settings(data)

    @classmethod
    def reset(cls) -> None:
        """Forget the published instance (tests only)."""
        global _instance  # noqa: PLW0603
        _instance = None

    def __repr__(self) -> str:
        return f"<KmscertConfig config_file={self._source}>"
