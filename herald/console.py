"""stderr helpers shared by the launcher and the admin CLI.

stdout belongs to the delegated tool, so everything the launcher itself has to
say goes to stderr. Colour is applied through colorama, which also strips it
when stderr is not a terminal.
"""

from __future__ import annotations

import sys
from typing import TextIO

from colorama import Fore, Style
from colorama import init as colorama_init

__all__ = ["error", "note", "warn"]

colorama_init()


def _write(msg: object, stream: TextIO) -> None:
    s = str(msg)
    if not s.endswith("\n"):
        s += "\n"
    try:
        stream.write(s)
    except UnicodeEncodeError:
        stream.write(s.encode("ascii", "replace").decode("ascii"))
    stream.flush()


def note(msg: object) -> None:
    _write(msg, sys.stderr)


def warn(msg: object) -> None:
    _write(f"{Fore.YELLOW}{msg}{Style.RESET_ALL}", sys.stderr)


def error(msg: object) -> None:
    _write(f"{Fore.RED}{Style.BRIGHT}{msg}{Style.RESET_ALL}", sys.stderr)
