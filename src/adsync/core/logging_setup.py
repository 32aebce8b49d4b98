"""
Logging for adsync runs.

Every logger built here writes to three sinks that share one format:

    stderr                               console level (INFO by default)
    <base_dir>/app.log                   file level, rotated at UTC midnight
    <base_dir>/YYYY-MM-DD/<action>_<run_id>.log

Each line carries the run id, the action, the mapping name and the root
OU. Engine modules log through ``logging.getLogger("adsync.core...")``
or an injected adapter; records without run context show ``-``.
Bind passwords, tokens and credentials embedded in LDAP URLs are
redacted before any sink sees them.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "run=%(run_id)s action=%(action)s mapping=%(mapping)s root=%(root)s | "
    "%(message)s"
)
REDACTED = "***REDACTED***"

_CONTEXT_FIELDS = ("run_id", "action", "mapping", "root")

# (prefix kept, secret replaced)
_SECRET_PATTERNS = (
    re.compile(r"((?:bind_?)?password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
    re.compile(r"(--password\s+)(\S+)", re.IGNORECASE),
    re.compile(r"(\b(?:token|secret|api[_-]?key)\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
    re.compile(r"(Authorization:\s*Bearer\s+)(\S+)", re.IGNORECASE),
    re.compile(r"(ldaps?://[^:/@\s]+:)([^@\s]+)(?=@)", re.IGNORECASE),
)


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(r"\1" + REDACTED, text)
    return text


class MaskSecretsFilter(logging.Filter):
    """Redacts secrets from the rendered message, %-args included."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            # "password=%s" only shows its secret once formatted
            try:
                record.msg = record.getMessage()
            except (TypeError, ValueError):
                record.msg = str(record.msg)
            else:
                record.args = None
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        return True


class _ContextDefaults(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for name in _CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True


class NullAdapter(logging.LoggerAdapter):
    """Adapter over a handler-less, non-propagating logger."""

    def __init__(self) -> None:
        base = logging.getLogger("adsync_null")
        if not base.handlers:
            base.addHandler(logging.NullHandler())
        base.propagate = False
        super().__init__(base, {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple[str, Dict[str, Any]]:
        return msg, kwargs


def _level(name: str, default: int) -> int:
    value = getattr(logging, str(name).upper(), None)
    return value if isinstance(value, int) else default


def _formatter() -> logging.Formatter:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    formatter.converter = time.gmtime  # type: ignore[attr-defined]
    return formatter


def _prepare(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(_ContextDefaults())
    handler.addFilter(MaskSecretsFilter())
    return handler


def _replace_handlers(
    logger: logging.Logger,
    same_kind: Callable[[logging.Handler], bool],
    keep: Callable[[logging.Handler], bool],
    make: Callable[[], logging.Handler],
) -> None:
    """Close handlers of one kind that fail `keep`; add `make()` if none is left."""
    survivors = 0
    for handler in list(logger.handlers):
        if not same_kind(handler):
            continue
        if keep(handler):
            survivors += 1
            continue
        logger.removeHandler(handler)
        handler.close()
    if not survivors:
        logger.addHandler(make())


def _file_target(handler: logging.Handler) -> str:
    return os.path.abspath(getattr(handler, "baseFilename", ""))


def build_logger(
    *,
    name: str = "adsync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Return an adapter bound to one run.

    Shared sinks (console, app.log) hang off the `name` logger and are
    rebuilt when they point at a stale stream or directory, so repeated
    calls in one process (tests, several runs) never duplicate lines.
    The per-run file lives on the child logger `<name>.<action>.<run_id>`.
    """
    formatter = _formatter()
    file_lvl = _level(file_level, logging.DEBUG)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)

    # pytest swaps sys.stderr between tests: always rebind to the current one
    _replace_handlers(
        base,
        same_kind=lambda h: type(h) is logging.StreamHandler,
        keep=lambda h: False,
        make=lambda: _prepare(
            logging.StreamHandler(stream=sys.stderr), _level(console_level, logging.INFO), formatter
        ),
    )

    os.makedirs(base_dir, exist_ok=True)
    app_log = os.path.abspath(os.path.join(base_dir, "app.log"))
    _replace_handlers(
        base,
        same_kind=lambda h: isinstance(h, logging.handlers.TimedRotatingFileHandler),
        keep=lambda h: _file_target(h) == app_log,
        make=lambda: _prepare(
            logging.handlers.TimedRotatingFileHandler(
                app_log, when="midnight", backupCount=14, encoding="utf-8", utc=True
            ),
            file_lvl,
            formatter,
        ),
    )

    day_dir = os.path.join(base_dir, datetime.now(timezone.utc).strftime("%Y-%m-%d"))
    os.makedirs(day_dir, exist_ok=True)
    run_log = os.path.abspath(os.path.join(day_dir, f"{action}_{run_id}.log"))

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True
    _replace_handlers(
        child,
        same_kind=lambda h: isinstance(h, logging.FileHandler),
        keep=lambda h: _file_target(h) == run_log,
        make=lambda: _prepare(logging.FileHandler(run_log, encoding="utf-8"), file_lvl, formatter),
    )

    context = {field: "-" for field in _CONTEXT_FIELDS}
    context.update({"run_id": run_id, "action": action})
    for key in ("mapping", "root"):
        if (extra or {}).get(key):
            context[key] = str(extra[key])  # type: ignore[index]

    adapter = logging.LoggerAdapter(child, context)
    adapter.debug("Logger ready (console=%s, file=%s, dir=%s)", console_level, file_level, base_dir)
    return adapter
