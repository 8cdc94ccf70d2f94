"""Logging abstraction layer for the Lares controller.

JSON and human-readable output, correlation ids on every line, structured
``extra=`` context, and masking of panel secrets before anything is written.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast, override

from lares_controller.correlation import get_correlation_id

__all__ = [
    "HumanReadableFormatter",
    "JSONFormatter",
    "LaresLogger",
    "get_logger",
    "mask_sensitive_data",
]

_PIN_PATTERN = re.compile(r'"PIN"\s*:\s*"[^"]*"', re.IGNORECASE)
_MASKED_PIN = '"PIN":"***"'


def mask_sensitive_data(message: str) -> str:
    """Replace any JSON ``"PIN":"..."`` pair with ``"PIN":"***"``."""
    return _PIN_PATTERN.sub(_MASKED_PIN, message)


def _context_of(record: logging.LogRecord) -> Mapping[str, object] | None:
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping) and extra_data:
        return cast("Mapping[str, object]", extra_data)
    return None


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": mask_sensitive_data(record.getMessage()),
            "correlation_id": get_correlation_id(),
        }
        context = _context_of(record)
        if context is not None:
            log_data["context"] = {k: mask_sensitive_data(str(v)) for k, v in context.items()}
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``timestamp level [module:line] [corr-id] > message | k=v``"""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"
        formatted = super().format(record)
        context = _context_of(record)
        if context is not None:
            formatted = f"{formatted} | " + " | ".join(f"{k}={v}" for k, v in context.items())
        return mask_sensitive_data(formatted)


def _open_handler(target: str) -> logging.Handler | None:
    """Stream handler for ``stdout``/``stderr``, file handler for anything else."""
    if target == "stdout":
        return logging.StreamHandler(sys.stdout)
    if target == "stderr":
        return logging.StreamHandler(sys.stderr)
    path = Path(target)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(path, mode="a")
    except OSError as e:
        print(f"Warning: cannot open log file {target}: {e}", file=sys.stderr)
        return None


class LaresLogger:
    """Thin wrapper over :class:`logging.Logger` that accepts an ``extra`` mapping.

    Handlers are attached once per logger name, so calling :func:`get_logger`
    repeatedly from the same module is cheap.
    """

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
    ) -> None:
        from lares_controller.const import LARES_DEBUG

        self.name: str = name
        self.log_format: str = log_format
        self.logger: logging.Logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if LARES_DEBUG else logging.INFO)
        if not self.logger.handlers:
            self._configure_handlers(json_file, human_output)

    def _configure_handlers(self, json_file: str | Path | None, human_output: str | None) -> None:
        outputs: list[tuple[str, logging.Formatter]] = []
        if self.log_format in ("json", "both") and json_file:
            outputs.append((str(json_file), JSONFormatter()))
        if self.log_format in ("human", "both"):
            outputs.append((human_output or "stdout", HumanReadableFormatter()))

        for target, formatter in outputs:
            handler = _open_handler(target)
            if handler is None:
                continue
            handler.setFormatter(formatter)
            handler.setLevel(self.logger.level)
            self.logger.addHandler(handler)

    def _log(
        self,
        level: int,
        msg: str,
        *args: object,
        extra: Mapping[str, object] | None = None,
        exc_info: bool = False,
    ) -> None:
        payload = {"extra_data": dict(extra)} if extra else None
        # stacklevel=3 reports the caller of debug()/info(), not this wrapper
        self.logger.log(level, msg, *args, extra=payload, exc_info=exc_info, stacklevel=3)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def critical(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.CRITICAL, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, msg, *args, extra=extra, exc_info=True)

    def is_enabled_for(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    @property
    def handlers(self) -> list[logging.Handler]:
        return self.logger.handlers


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> LaresLogger:
    """Get or create a :class:`LaresLogger`, defaulting to the ``LARES_LOG_*`` settings."""
    from lares_controller.const import (
        LARES_LOG_FORMAT,
        LARES_LOG_HUMAN_OUTPUT,
        LARES_LOG_JSON_FILE,
    )

    return LaresLogger(
        name=name,
        log_format=log_format or LARES_LOG_FORMAT,
        json_file=json_file or LARES_LOG_JSON_FILE or None,
        human_output=human_output or LARES_LOG_HUMAN_OUTPUT,
    )
