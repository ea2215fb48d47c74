# progress_ux.py: single-line Halo spinner bound to the rebuild ProgressEngine
from __future__ import annotations

import os
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from colorama import Fore, Style
from halo import Halo

from ..console import note
from .engine import ProgressEngine, ProgressState


def should_enable_spinners(stream: Any | None = None, *, ci: bool = False) -> bool:
    """Spinners only on an interactive terminal, never when *ci* is set or under TERM=dumb."""
    if ci:
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    target = stream or sys.stderr
    try:
        return bool(target.isatty())
    except (AttributeError, ValueError):
        return False


@contextmanager
def step_spinner(engine: ProgressEngine, prefix: str, *, enabled: Optional[bool] = None) -> Iterator[None]:
    """
    Render *engine* progress while the block runs.

    With a spinner: one animated line on stderr, closed with a tick or a
    cross. Without: one ``→ prefix [i/n] step …`` line per step, which is what
    CI logs want.
    """
    use_spinner = should_enable_spinners(sys.stderr) if enabled is None else enabled

    if not use_spinner:
        shown: list[Optional[str]] = [None]

        def _print_step(state: ProgressState) -> None:
            if state.current_step and state.current_step != shown[0] and state.done_steps < state.total_steps:
                shown[0] = state.current_step
                note(f"→ {prefix} {state.label} …")

        off = engine.on_update(_print_step)
        try:
            yield
        finally:
            off()
        return

    spinner = Halo(text=prefix, spinner=os.environ.get("HERALD_SPINNER", "dots"), stream=sys.stderr)

    def _render(state: ProgressState) -> None:
        spinner.text = f"{prefix} {Fore.CYAN}{state.label}{Style.RESET_ALL}"

    off = engine.on_update(_render)
    spinner.start()
    try:
        yield
    except BaseException:
        spinner.fail(f"{prefix} {engine.state.label}")
        raise
    else:
        spinner.succeed(prefix)
    finally:
        off()
        spinner.stop()
