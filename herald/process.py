"""
Thin subprocess wrapper for the external rebuild steps.

With ``capture=True`` the child's combined stdout/stderr is collected (so the
spinner owns the terminal and the text is only shown on failure); otherwise
the child writes straight to the inherited streams.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from os import PathLike
from typing import Mapping, Optional, Sequence, Union

__all__ = ["CommandResult", "run_command"]

LOGGER = logging.getLogger(__name__)

StrPath = Union[str, PathLike[str]]


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_command(
    cmd: Sequence[str],
    *,
    cwd: Optional[StrPath] = None,
    env: Optional[Mapping[str, str]] = None,
    capture: bool = False,
) -> CommandResult:
    """
    Run *cmd* to completion and return its exit code (and output when captured).

    A command that cannot be started at all (missing executable, bad cwd) is
    reported as exit code 127 with the OS error as output, the same way a
    shell would report it, so callers see one failure shape.
    """
    LOGGER.info("run: %s (cwd=%s)", " ".join(cmd), cwd)
    try:
        if capture:
            cp = subprocess.run(
                list(cmd),
                cwd=cwd,
                env=dict(env) if env is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                check=False,
            )
            return CommandResult(cp.returncode, cp.stdout or "")
        cp = subprocess.run(list(cmd), cwd=cwd, env=dict(env) if env is not None else None, check=False)
        return CommandResult(cp.returncode)
    except OSError as exc:
        LOGGER.warning("unable to start %s: %s", cmd[0] if cmd else "<empty>", exc)
        return CommandResult(127, f"{cmd[0] if cmd else '<empty>'}: {exc}\n")
