from __future__ import annotations

import logging
import os
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Mapping

_LOGGER = logging.getLogger("whooshkit.logging")
_PACKAGE_LOGGER = "whooshkit"
_LOG_DIR_ENV = "WHOOSHKIT_LOG_DIR"
_DEBUG_ENV = "WHOOSHKIT_DEBUG"
_LOG_FILE = "whooshkit.log"
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: int | None = None) -> logging.Logger:
    """Attach handlers to the package logger; safe to call repeatedly."""

    logger = logging.getLogger(_PACKAGE_LOGGER)
    if not any(isinstance(handler, logging.NullHandler) for handler in logger.handlers):
        logger.addHandler(logging.NullHandler())

    debug = bool(os.environ.get(_DEBUG_ENV))
    if level is None and not debug:
        return logger

    resolved = level if level is not None else logging.DEBUG
    logger.setLevel(resolved)
    if not any(getattr(handler, "_whooshkit_stream", False) for handler in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        setattr(handler, "_whooshkit_stream", True)
        logger.addHandler(handler)
    return logger


def get_log_dir() -> Path:
    """``$WHOOSHKIT_LOG_DIR`` when set, else ``~/.cache/whooshkit/logs``."""

    override = os.environ.get(_LOG_DIR_ENV)
    return Path(override).expanduser() if override else Path.home() / ".cache" / "whooshkit" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def _format_entry(
    context: str, exc: BaseException, details: Mapping[str, object] | None
) -> str:
    lines = [f"[{datetime.now().isoformat()}] {context} failed: {type(exc).__name__}: {exc}"]
    # Render inputs (command, seed, settings source) needed to reproduce the failure.
    for key, value in (details or {}).items():
        if value is not None:
            lines.append(f"  {key} = {value}")
    lines.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    return "\n".join(lines) + "\n"


def log_exception(
    context: str,
    exc: BaseException,
    *,
    details: Mapping[str, object] | None = None,
) -> Path | None:
    """Append a failure entry to the log file; returns its path, or None if unwritable."""

    path = get_log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(_format_entry(context, exc, details))
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file %s: %s", path, log_exc, exc_info=True)
        return None
    return path
