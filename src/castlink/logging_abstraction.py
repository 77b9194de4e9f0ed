"""Structured logging for castlink.

Module loggers are children of the ``castlink`` package logger, and
``configure_logging`` attaches handlers to that package logger only once.
``extra=`` context is kept on the record as ``extra_data`` and both formatters
render it: the JSON formatter as a ``context`` object, the human formatter as
trailing ``key=value`` pairs. Every line also carries the current correlation
id and the asyncio task it was emitted from (``castlink-reader``,
``castlink-heartbeat``...).
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

from typing_extensions import override

from castlink.correlation import get_correlation_id

__all__ = [
    "CastLogger",
    "HumanReadableFormatter",
    "JSONFormatter",
    "configure_logging",
    "get_logger",
]

_PACKAGE_LOGGER = "castlink"
_configured: dict[str, bool] = {"done": False}


def _context(record: logging.LogRecord) -> dict[str, object]:
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping) and extra_data:
        return dict(cast("Mapping[str, object]", extra_data))
    return {}


def _task_name(record: logging.LogRecord) -> str | None:
    # LogRecord.taskName is only filled in when logging from inside a task
    return getattr(record, "taskName", None)


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
            "task": _task_name(record),
            "correlation_id": get_correlation_id(),
            "message": record.getMessage(),
        }
        context = _context(record)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class HumanReadableFormatter(logging.Formatter):
    """``time level [module:line] [corr-id] > message | key=value ...``"""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)-7s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"
        line = super().format(record)
        context = _context(record)
        if context:
            line += " | " + " | ".join(f"{key}={value}" for key, value in context.items())
        return line


def _human_handler(human_output: str) -> logging.Handler:
    if human_output in ("stdout", "stderr"):
        return logging.StreamHandler(sys.stdout if human_output == "stdout" else sys.stderr)
    try:
        path = Path(human_output)
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(path, mode="a")
    except OSError as e:
        print(f"Warning: cannot open log file {human_output}: {e}", file=sys.stderr)
        return logging.StreamHandler(sys.stderr)


def configure_logging(
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
    level: int | None = None,
) -> logging.Logger:
    """Attach handlers to the ``castlink`` logger and set its level.

    Calling it again only changes the level, unless every handler has been
    removed in the meantime.

    Args:
        log_format: "json", "human", or "both" (default: CAST_LOG_FORMAT)
        json_file: File receiving JSON lines (default: CAST_LOG_JSON_FILE);
            JSON output is skipped without one
        human_output: "stdout", "stderr", or a file path (default: CAST_LOG_HUMAN_OUTPUT)
        level: Log level (default: DEBUG when CAST_DEBUG is set, else INFO)

    """
    from castlink.const import (  # noqa: PLC0415
        CAST_DEBUG,
        CAST_LOG_FORMAT,
        CAST_LOG_HUMAN_OUTPUT,
        CAST_LOG_JSON_FILE,
    )

    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    package_logger.setLevel(level if level is not None else (logging.DEBUG if CAST_DEBUG else logging.INFO))
    if _configured["done"] and package_logger.handlers:
        return package_logger

    log_format = log_format or CAST_LOG_FORMAT
    json_file = json_file or CAST_LOG_JSON_FILE

    if log_format in ("json", "both") and json_file:
        try:
            json_path = Path(json_file)
            json_path.parent.mkdir(parents=True, exist_ok=True)
            json_handler = logging.FileHandler(json_path, mode="a")
        except OSError as e:
            print(f"Warning: cannot open JSON log file {json_file}: {e}", file=sys.stderr)
        else:
            json_handler.setFormatter(JSONFormatter())
            package_logger.addHandler(json_handler)

    if log_format in ("human", "both"):
        human_handler = _human_handler(human_output or CAST_LOG_HUMAN_OUTPUT)
        human_handler.setFormatter(HumanReadableFormatter())
        package_logger.addHandler(human_handler)

    _configured["done"] = True
    return package_logger


class CastLogger:
    """Thin wrapper over ``logging.Logger`` taking structured ``extra=`` context.

    Records point at the caller of ``info()``/``debug()``..., not at this class.
    """

    def __init__(self, name: str) -> None:
        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        msg: str,
        args: tuple[object, ...],
        extra: Mapping[str, object] | None,
        exc_info: bool = False,
    ) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(
                level,
                msg,
                *args,
                extra={"extra_data": dict(extra)} if extra else None,
                exc_info=exc_info,
                stacklevel=3,
            )

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, args, extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, args, extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, args, extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, args, extra)

    def critical(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.CRITICAL, msg, args, extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, msg, args, extra, exc_info=True)

    def is_enabled_for(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)

    @property
    def handlers(self) -> list[logging.Handler]:
        return self.logger.handlers


def get_logger(name: str) -> CastLogger:
    """Return a CastLogger for ``name`` (normally a module's ``__name__``)."""
    return CastLogger(name)
