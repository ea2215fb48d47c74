"""Minimal logging helpers for Herald.

* ``setup_logging`` initialises a single file handler on the root logger.
* ``get_log_path`` exposes where the log ends up.

User-facing output (retry notices, fatal errors) is written to stderr by the
callers themselves; the log file keeps the detail for later inspection.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Optional

__all__ = [
    "get_log_path",
    "platform_data_dir",
    "setup_logging",
]

APP = "herald"

_configured = False
_log_dir: Optional[Path] = None
_log_path: Optional[Path] = None


def platform_data_dir() -> Path:
    """Return a per-user writable application data directory."""
    if os.name == "nt":
        base = Path(os.getenv("LOCALAPPDATA") or os.getenv("APPDATA") or (Path.home() / "AppData" / "Local"))
        return base / APP
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP
    xdg_home = os.getenv("XDG_DATA_HOME")
    if xdg_home:
        return Path(xdg_home) / APP
    return Path.home() / ".local" / "share" / APP


def _default_logs_dir() -> Path:
    return platform_data_dir() / "logs"


def _resolve_log_path(file_env: str) -> Path:
    override = os.getenv(file_env)
    if override:
        path = Path(override).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        return path
    logs_dir = _default_logs_dir()
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir / "herald.log"


def setup_logging(
    *,
    level_env: str = "HERALD_LOG_LEVEL",
    file_env: str = "HERALD_LOG_FILE",
) -> Path:
    """
    Configure the root logger with a single file handler.

    The handler logs WARNING and higher (or the level named by
    ``HERALD_LOG_LEVEL``) to ``herald.log`` or the path in ``HERALD_LOG_FILE``.
    Idempotent: repeated calls return the previously configured directory.
    """
    global _configured, _log_dir, _log_path

    if _configured:
        return _log_dir if _log_dir is not None else _default_logs_dir()

    level_name = os.getenv(level_env, "WARNING").upper().strip()
    level = getattr(logging, level_name, logging.WARNING)
    if not isinstance(level, int):
        level = logging.WARNING

    handler: logging.Handler
    try:
        log_path = _resolve_log_path(file_env)
        handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        log_path = Path(tempfile.gettempdir()) / "herald.log"
        handler = logging.FileHandler(log_path, encoding="utf-8")

    _log_path = log_path
    _log_dir = log_path.parent

    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(process)d %(name)s: %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    _configured = True
    return _log_dir


def get_log_path() -> Optional[Path]:
    """Expose the resolved log file path for modules that need it."""
    return _log_path
