"""Process-wide logging setup for chatrelay.

Every record passes through ``RequestContextFilter``, which stamps it with
the request id, caller identity and model id of the request being served.
Those values live in contextvars so they follow a request across awaits
and into the streaming producer task.

Console output is human-readable by default or JSON with ``log_json``;
the optional rotating file under ``log_dir`` is always JSON.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from collections.abc import Mapping
from contextvars import ContextVar
from pathlib import Path
from typing import Any

ctx_request_id: ContextVar[str] = ContextVar("ctx_request_id", default="")
ctx_client_id: ContextVar[str] = ContextVar("ctx_client_id", default="")
ctx_model_id: ContextVar[str] = ContextVar("ctx_model_id", default="")

# (record attribute, source var, human label, max chars shown by HumanFormatter)
_CONTEXT_FIELDS: tuple[tuple[str, ContextVar[str], str, int | None], ...] = (
    ("request_id", ctx_request_id, "req", 12),
    ("client_id", ctx_client_id, "client", None),
    ("model_id", ctx_model_id, "model", None),
)

LOG_FILE_NAME = "chatrelay.log"
_JSON_DATEFMT = "%Y-%m-%dT%H:%M:%S"
_HUMAN_FMT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_HUMAN_DATEFMT = "%H:%M:%S"

_QUIET_LOGGERS: dict[str, int] = {
    "litellm": logging.WARNING,
    "LiteLLM": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "uvicorn": logging.INFO,
    "uvicorn.error": logging.INFO,
    "uvicorn.access": logging.WARNING,
}


def _context_of(record: logging.LogRecord) -> list[tuple[str, str, int | None]]:
    """Non-empty (attr, value, limit) context triples attached to a record."""
    found = []
    for attr, _var, _label, limit in _CONTEXT_FIELDS:
        value = getattr(record, attr, "")
        if value:
            found.append((attr, value, limit))
    return found


class RequestContextFilter(logging.Filter):
    """Copy the current request context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for attr, var, _label, _limit in _CONTEXT_FIELDS:
            setattr(record, attr, var.get(""))
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, context keys only when set."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update({attr: value for attr, value, _ in _context_of(record)})
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Plain text with a ``[req=.. client=.. model=..]`` suffix."""

    _labels = {attr: label for attr, _var, label, _limit in _CONTEXT_FIELDS}

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        parts = [
            f"{self._labels[attr]}={value[:limit] if limit else value}"
            for attr, value, limit in _context_of(record)
        ]
        if not parts:
            return base
        return f"{base} [{' '.join(parts)}]"


def _level(name: str, default: int) -> int:
    value = getattr(logging, name.upper(), None)
    return value if isinstance(value, int) else default


def _attach(
    root: logging.Logger,
    handler: logging.Handler,
    formatter: logging.Formatter,
    ctx_filter: logging.Filter,
) -> None:
    handler.setFormatter(formatter)
    handler.addFilter(ctx_filter)
    root.addHandler(handler)


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = False,
    log_dir: str | Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    module_levels: Mapping[str, str] | None = None,
) -> None:
    """Replace the root handlers with chatrelay's console (and file) handlers.

    Calling it again reconfigures from scratch; handlers never pile up.
    ``module_levels`` maps logger names to level names, e.g.
    ``{"chatrelay.runtime.router": "DEBUG"}``.
    """
    root = logging.getLogger()
    root.handlers.clear()
    root_level = _level(level, logging.INFO)
    root.setLevel(root_level)

    ctx_filter = RequestContextFilter()
    console_formatter: logging.Formatter
    if json_output:
        console_formatter = JSONFormatter(datefmt=_JSON_DATEFMT)
    else:
        console_formatter = HumanFormatter(fmt=_HUMAN_FMT, datefmt=_HUMAN_DATEFMT)
    _attach(root, logging.StreamHandler(sys.stderr), console_formatter, ctx_filter)

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            directory / LOG_FILE_NAME,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        _attach(root, file_handler, JSONFormatter(datefmt=_JSON_DATEFMT), ctx_filter)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
    for name, name_level in (module_levels or {}).items():
        logging.getLogger(name).setLevel(_level(name_level, root_level))


def configure_from_config(config: Mapping[str, Any], *, verbose: bool = False) -> None:
    """Apply the ``runtime`` section of a dumped RelayConfig.

    ``verbose`` (the CLI's ``-v``) forces DEBUG regardless of the configured level.
    """
    runtime = config.get("runtime") or {}
    configure_logging(
        level="DEBUG" if verbose else runtime.get("log_level", "INFO"),
        json_output=runtime.get("log_json", False),
        log_dir=runtime.get("log_dir"),
        module_levels=runtime.get("module_levels"),
    )


def update_log_level(level: str) -> None:
    """Change the root level in place. Unknown level names are ignored."""
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return
    logging.getLogger().setLevel(numeric)
    logging.getLogger(__name__).info("logging.level_changed level=%s", level.upper())
