"""
Runtime configuration.

Layers, lowest precedence first:

    built-in defaults (the section dataclasses below)
    the first YAML file found (./adsync.yml, ~/.config/adsync/config.yml, /etc/adsync/config.yml)
    environment: ADSYNC_<SECTION>__<KEY>, a .env file included
    CLI overrides (None values are ignored)

String values may reference ``${VAR}``. Values are coerced to the type
declared on the section field, so "true", "6" or "a:b" coming from the
environment end up as bool, int and list respectively.
"""

from __future__ import annotations

import os
import re
import uuid
from dataclasses import MISSING, asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv


class ConfigError(ValueError):
    """Raised when runtime configuration cannot be resolved."""


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    concurrency: Optional[int] = None   # None -> min(32, cpu * 4)
    progress_every: int = 100


@dataclass
class DirectorySection:
    backend: str = "snapshot"           # snapshot | ldap
    snapshot_path: str = ""
    server: str = ""
    port: Optional[int] = None
    use_ssl: bool = False
    bind_dn: str = ""
    password: str = ""                  # secret, never logged
    search_base: str = ""
    timeout_sec: int = 30


@dataclass
class MappingSection:
    search_paths: List[str] = field(default_factory=lambda: ["resources/mappings"])
    name: str = ""


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"
    file_level: str = "DEBUG"


@dataclass
class InputsSection:
    rows_path: str = ""
    sheet: Optional[str] = None


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    directory: DirectorySection
    mapping: MappingSection
    logging: LoggingSection
    inputs: InputsSection

    @property
    def run_id(self) -> str:
        """Run identifier, generated on first access when not configured."""
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


_SECTIONS = {
    "app": AppSection,
    "directory": DirectorySection,
    "mapping": MappingSection,
    "logging": LoggingSection,
    "inputs": InputsSection,
}

_DEFAULT_FILES: Tuple[str, ...] = (
    "./adsync.yml",
    os.path.expanduser("~/.config/adsync/config.yml"),
    "/etc/adsync/config.yml",
)

_BACKENDS = ("snapshot", "ldap")
_TRUE = {"1", "true", "yes", "y", "on"}
_VAR = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


# ---------- Layers ----------

def _defaults() -> Dict[str, Dict[str, Any]]:
    return {name: asdict(cls()) for name, cls in _SECTIONS.items()}


def _file_layer(files: Tuple[str, ...]) -> Dict[str, Any]:
    path = next((p for p in files if os.path.isfile(p)), None)
    if path is None:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _env_layer(prefix: str) -> Dict[str, Dict[str, str]]:
    """ADSYNC_DIRECTORY__SERVER=x -> {"directory": {"server": "x"}}; other names are ignored."""
    out: Dict[str, Dict[str, str]] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        section, sep, name = key[len(prefix):].lower().partition("__")
        if sep and name and section in _SECTIONS:
            out.setdefault(section, {})[name] = value
    return out


def _overlay(merged: Dict[str, Dict[str, Any]], layer: Dict[str, Any], *, skip_none: bool = False) -> None:
    for section, values in layer.items():
        if section not in _SECTIONS:
            raise ConfigError(f"Unknown configuration section: {section!r}")
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"Configuration section '{section}' must be a mapping")
        for key, value in values.items():
            if skip_none and value is None:
                continue
            merged[section][key] = value


# ---------- Values ----------

def _interpolate(value: Any) -> Any:
    if isinstance(value, str):
        return _VAR.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, list):
        return [_interpolate(v) for v in value]
    return value


def _coerce(section: str, key: str, declared: str, value: Any, default: Any) -> Any:
    """Convert `value` to the field's declared type (annotations are strings here)."""
    optional = declared.startswith("Optional[")
    if value is None:
        return None if optional else default
    if declared == "bool":
        return value if isinstance(value, bool) else str(value).strip().lower() in _TRUE
    if "int" in declared:
        if value == "" and optional:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"'{section}.{key}' must be an integer, got {value!r}") from None
    if declared.startswith("List["):
        if isinstance(value, str):
            return [p for p in value.split(os.pathsep) if p]
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value]
        raise ConfigError(f"'{section}.{key}' must be a list, got {value!r}")
    return str(value)


def _build_section(name: str, values: Dict[str, Any]) -> Any:
    cls = _SECTIONS[name]
    declared = {f.name: f for f in fields(cls)}
    unknown = sorted(set(values) - set(declared))
    if unknown:
        raise ConfigError(f"Unknown configuration key(s) in '{name}': {', '.join(unknown)}")
    kwargs = {}
    for key, value in values.items():
        f = declared[key]
        default = f.default if f.default is not MISSING else f.default_factory()  # type: ignore[misc]
        kwargs[key] = _coerce(name, key, str(f.type), _interpolate(value), default)
    return cls(**kwargs)


def _validate(cfg: AppConfig, require_directory: bool) -> None:
    """Report every missing key at once."""
    backend = cfg.directory.backend.strip().lower()
    if backend not in _BACKENDS:
        raise ConfigError(f"Unknown directory.backend: {backend!r} (expected one of {', '.join(_BACKENDS)})")
    cfg.directory.backend = backend

    missing: List[str] = []
    if require_directory and backend == "ldap":
        missing += [f"directory.{k}" for k in ("server", "search_base") if not getattr(cfg.directory, k)]
    if require_directory and backend == "snapshot" and not cfg.directory.snapshot_path:
        missing.append("directory.snapshot_path")
    if not cfg.mapping.name:
        missing.append("mapping.name")
    if missing:
        raise ConfigError("Missing required configuration: " + ", ".join(missing))


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "ADSYNC_",
    dotenv: bool = True,
    require_directory: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from defaults, the first YAML file, the environment
    and `cli_overrides`, in that order of precedence.

    `require_directory=False` skips the backend checks (preview needs no
    directory). Raises ConfigError on unknown keys, bad values or missing
    required settings.
    """
    if dotenv:
        env_file = find_dotenv(usecwd=True)
        if env_file:
            load_dotenv(env_file, override=False)

    merged = _defaults()
    _overlay(merged, _file_layer(files))
    _overlay(merged, _env_layer(env_prefix))
    _overlay(merged, cli_overrides or {}, skip_none=True)

    cfg = AppConfig(**{name: _build_section(name, values) for name, values in merged.items()})
    _validate(cfg, require_directory)
    return cfg
