"""Logging setup for the switchyard CLI and embedding applications.

Records go to a rotating ``switchyard.log`` and, optionally, stderr. Handlers
carry no level of their own, so a logger lowered with
:func:`apply_runtime_logging` reaches the file even while the root stays at
INFO.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import RuntimeSettings

__all__ = [
    "RUNTIME_LOGGER",
    "apply_runtime_logging",
    "get_log_path",
    "resolve_level",
    "setup_logging",
]

RUNTIME_LOGGER = "switchyard.ai"
LOG_DIR_ENV = "SWITCHYARD_LOG_DIR"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_DEFAULT_LOG_DIR = Path.home() / ".switchyard" / "logs"
_LOG_FILENAME = "switchyard.log"
_TRANSPORT_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_LOG_PATH: Path | None = None


# -----------------------------------------------------------------------------
# Setup
# -----------------------------------------------------------------------------


def setup_logging(
    level: int | str = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Route root logging into ``switchyard.log`` and optionally stderr.

    Args:
        level: Root level as an int or a name such as ``"DEBUG"``.
        log_dir: Directory for the log file; ``SWITCHYARD_LOG_DIR`` wins when unset.
        console: Also log to stderr.
        max_bytes: Rotation threshold of the file handler.
        backup_count: Number of rotated files kept.
        force: Reconfigure even if logging was already set up.

    Returns:
        Path of the active log file.
    """

    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    root_level = resolve_level(level)
    log_path = _resolve_log_dir(log_dir) / _LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=root_level,
        handlers=_build_handlers(log_path, console=console, max_bytes=max_bytes, backup_count=backup_count),
        force=True,
    )
    logging.captureWarnings(True)
    _quiet_transport_loggers(root_level)

    _LOG_PATH = log_path
    return log_path


def apply_runtime_logging(settings: "RuntimeSettings") -> None:
    """Lower the ``switchyard.ai`` loggers to DEBUG when ``settings.debug_logging`` is set.

    Prompt payloads are logged at DEBUG by the completion client, so without
    this they would be dropped by an INFO root. Turning the flag off hands the
    level back to the root.
    """

    logger = logging.getLogger(RUNTIME_LOGGER)
    logger.setLevel(logging.DEBUG if settings.debug_logging else logging.NOTSET)


def resolve_level(level: int | str) -> int:
    """Translate a level name into its numeric value; unknown names mean INFO."""

    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def get_log_path() -> Path | None:
    return _LOG_PATH


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _build_handlers(log_path: Path, *, console: bool, max_bytes: int, backup_count: int) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()


def _quiet_transport_loggers(root_level: int) -> None:
    # httpx and httpcore log every request at INFO/DEBUG.
    quiet_level = max(root_level, logging.WARNING)
    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
