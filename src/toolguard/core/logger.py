"""Structured JSON logging for security decisions.

Every guard verdict, confirmation outcome and config load is written as a
JSON line carrying the request context, so an operator can correlate a
denial with the agent and channel that triggered it. Entries written with
``audit()`` carry ``"audit": true`` so they can be filtered out of the
general stream.
"""

import json
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from toolguard.core.config import LoggingConfig

LEVEL_ENV_VAR = "TOOLGUARD_LOG_LEVEL"

_LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}


def parse_level(level: str) -> int:
    """Map a level name (case-insensitive, WARN accepted) to a logging constant.

    Unknown names fall back to INFO.
    """
    name = level.strip().upper()
    name = _LEVEL_ALIASES.get(name, name)
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


class ToolGuardLogger:
    """Structured JSON logger with optional rotating file output.

    Console output is always on. File output is enabled by passing
    ``log_file`` (usually taken from the ``logging.logPath`` config field).
    """

    log_file: Path | None

    def __init__(
        self,
        log_file: str | Path | None = None,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        level: str | None = None,
        name: str = "toolguard",
    ) -> None:
        """Initialize logger.

        Args:
            log_file: JSON log file (None = console only)
            max_bytes: Size that triggers rotation; 0 disables rotation
            backup_count: Rotated files kept
            level: Minimum level; falls back to TOOLGUARD_LOG_LEVEL, then WARNING
            name: Underlying stdlib logger name (handlers on it are replaced)
        """
        self._logger = logging.getLogger(name)
        self._logger.propagate = False
        self._reset_handlers()

        formatter = JSONFormatter()
        self.log_file = Path(log_file).expanduser() if log_file else None
        if self.log_file is not None:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                self.log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
            file_handler.setFormatter(formatter)
            self._logger.addHandler(file_handler)

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        self._logger.addHandler(stream_handler)

        self.set_level(level or os.environ.get(LEVEL_ENV_VAR, "WARNING"))

    def _reset_handlers(self) -> None:
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()

    @classmethod
    def from_config(cls, config: "LoggingConfig", level: str | None = None) -> "ToolGuardLogger":
        """Build a logger from the ``logging`` section of a SecurityConfig.

        A disabled section still yields a console logger so warnings about
        the configuration itself are not lost.
        """
        if not config.enabled or not config.log_path:
            return cls(level=level)

        rotation = config.rotation
        if rotation is not None and rotation.enabled:
            return cls(
                log_file=config.log_path,
                max_bytes=config.max_log_size,
                backup_count=rotation.max_files,
                level=level,
            )
        return cls(log_file=config.log_path, max_bytes=0, backup_count=0, level=level)

    def set_level(self, level: str) -> None:
        self._logger.setLevel(parse_level(level))

    def is_enabled_for(self, level: str) -> bool:
        return self._logger.isEnabledFor(parse_level(level))

    def _emit(self, level: int, msg: str, kv: dict[str, Any], exc_info: bool = False) -> None:
        self._logger.log(level, msg, extra={"kv": kv}, exc_info=exc_info)

    def debug(self, msg: str, **kv: Any) -> None:
        self._emit(logging.DEBUG, msg, kv)

    def info(self, msg: str, **kv: Any) -> None:
        self._emit(logging.INFO, msg, kv)

    def warn(self, msg: str, **kv: Any) -> None:
        self._emit(logging.WARNING, msg, kv)

    def error(self, msg: str, exc_info: bool = False, **kv: Any) -> None:
        """Log an error; ``exc_info=True`` attaches the active traceback."""
        self._emit(logging.ERROR, msg, kv, exc_info=exc_info)

    def audit(self, msg: str, **kv: Any) -> None:
        """Record a security decision.

        Written at WARNING so it survives the default level.
        """
        self._emit(logging.WARNING, msg, {"audit": True, **kv})

    @contextmanager
    def operation(self, operation_name: str, **kv: Any) -> Iterator[None]:
        """Time a block, logging ``<name>_start`` and ``<name>_end`` at debug.

        Example:
            with logger.operation("config_load", path=path):
                ...
        """
        started = time.perf_counter()
        self.debug(f"{operation_name}_start", **kv)
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.debug(f"{operation_name}_end", duration_ms=round(elapsed_ms, 3), **kv)


class JSONFormatter(logging.Formatter):
    """Renders a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        kv = getattr(record, "kv", None)
        if kv:
            entry.update(kv)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # Enums and paths show up in kv; fall back to their string form
        return json.dumps(entry, default=str)


_default_logger: ToolGuardLogger | None = None


def get_logger() -> ToolGuardLogger:
    """Return the shared console logger, creating it on first use."""
    global _default_logger
    if _default_logger is None:
        _default_logger = ToolGuardLogger()
    return _default_logger
