"""
Hand the process over to the cached artifact.

On POSIX the launcher image is replaced (``os.execvp``): stdio, the process
id and signal delivery all belong to the tool from then on, and its exit code
is the launcher's exit code by construction. Where exec is not a real process
replacement (Windows) the artifact is spawned instead, termination signals
are forwarded, and the child's exit code is returned for the caller to exit
with.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from pathlib import Path
from types import FrameType
from typing import Any, Dict, List, Optional, Sequence

from .errors import DelegateExecError

__all__ = ["Delegator"]

LOGGER = logging.getLogger(__name__)

_FORWARDED_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGBREAK") if hasattr(signal, name)
)


class Delegator:
    def __init__(self, runtime: Sequence[str] = (), *, replace_process: Optional[bool] = None) -> None:
        self.runtime = list(runtime)
        self.replace_process = (os.name != "nt") if replace_process is None else replace_process

    def command(self, artifact: Path, args: Sequence[str]) -> List[str]:
        return [*self.runtime, str(artifact), *args]

    def _check_artifact(self, artifact: Path) -> None:
        if not artifact.is_file():
            raise DelegateExecError(f"Cached tool {artifact} is missing; unable to launch it.")
        if not self.runtime and not os.access(artifact, os.X_OK):
            raise DelegateExecError(f"Cached tool {artifact} is not executable.")

    def exec(self, artifact: Path, args: Sequence[str]) -> int:
        """
        Launch *artifact* with *args* unchanged.

        Never returns in replace mode; returns the child's exit code in spawn
        mode. Raises ``DelegateExecError`` when the artifact cannot start.
        """
        self._check_artifact(artifact)
        argv = self.command(artifact, args)
        LOGGER.info("delegating to %s", argv[0])
        if self.replace_process:
            return self._exec(argv)
        return self._spawn(argv)

    def _exec(self, argv: List[str]) -> int:
        try:
            os.execvp(argv[0], argv)
        except OSError as exc:
            raise DelegateExecError(f"Unable to launch {argv[0]}: {exc}") from exc
        raise AssertionError("os.execvp returned")  # pragma: no cover

    def _spawn(self, argv: List[str]) -> int:
        try:
            child = subprocess.Popen(argv)
        except OSError as exc:
            raise DelegateExecError(f"Unable to launch {argv[0]}: {exc}") from exc

        previous: Dict[int, Any] = {}

        def _forward(signum: int, _frame: Optional[FrameType]) -> None:
            try:
                child.send_signal(signum)
            except OSError:
                pass

        for signum in _FORWARDED_SIGNALS:
            try:
                previous[signum] = signal.signal(signum, _forward)
            except (OSError, ValueError):
                continue
        try:
            returncode = child.wait()
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler if handler is not None else signal.SIG_DFL)

        if returncode < 0:
            # Killed by a signal on POSIX; report it the way a shell would.
            return 128 - returncode
        return returncode
