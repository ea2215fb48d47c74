"""
Lightweight package init.

The launcher runs on every invocation of the tool, so importing ``herald``
stays cheap: no subprocesses, no filesystem writes.

Exports:
    __version__ : best-effort package version (falls back to "0+unknown")
    main        : launcher entry point (``herald.launcher.main``)
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as _pkg_version

__all__ = ["__version__", "main"]


def _detect_version() -> str:
    try:
        return _pkg_version("herald")
    except PackageNotFoundError:
        return "0+unknown"


__version__ = _detect_version()


def main(argv: "list[str] | None" = None) -> int:
    from .launcher import main as _main

    return _main(argv)
