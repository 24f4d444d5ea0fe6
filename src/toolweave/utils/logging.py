"""Logging setup for hosts embedding the orchestration core.

The library itself only logs through module loggers; hosts call
:func:`setup_logging` once to route those records to a rotating log file and,
optionally, the console.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["setup_logging", "get_logger", "get_log_path", "LOG_DIR_ENV", "LOG_LEVEL_ENV"]

LOG_DIR_ENV = "TOOLWEAVE_LOG_DIR"
LOG_LEVEL_ENV = "TOOLWEAVE_LOG_LEVEL"

_DEFAULT_LOG_DIR = Path.home() / ".toolweave" / "logs"
_LOG_FILE_NAME = "toolweave.log"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "tenacity")
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_CONFIGURED = False
_LOG_PATH: Path | None = None


def setup_logging(
    level: int | str | None = None,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Configure root logging with a rotating file handler and optional console output.

    Args:
        level: Level number or name; defaults to ``TOOLWEAVE_LOG_LEVEL`` or INFO.
        log_dir: Directory for the log file; defaults to ``TOOLWEAVE_LOG_DIR``
            or ``~/.toolweave/logs``.
        console: Also log to stderr.
        max_bytes: Rotation size of the log file.
        backup_count: Rotated files to keep.
        force: Reconfigure even if logging was already set up.

    Returns:
        Path of the active log file.
    """
    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    resolved_level = _resolve_level(level)
    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILE_NAME

    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers: list[logging.Handler] = []
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handlers.append(file_handler)
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(resolved_level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=resolved_level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _quiet_external_loggers(resolved_level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def get_logger(name: str) -> logging.Logger:
    """Return a module-specific logger."""
    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the currently configured log file, if any."""
    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()


def _resolve_level(level: int | str | None) -> int:
    candidate = level if level is not None else os.environ.get(LOG_LEVEL_ENV, logging.INFO)
    if isinstance(candidate, int):
        return candidate
    named = logging.getLevelName(str(candidate).strip().upper())
    return named if isinstance(named, int) else logging.INFO


def _quiet_external_loggers(root_level: int) -> None:
    quiet_level = max(root_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
