"""
Herald progress reporting.

- ProgressEngine / ProgressState  → counts rebuild steps, no UI
- step_spinner(engine, prefix)    → Halo spinner on a TTY, plain step lines elsewhere
- should_enable_spinners(stream)  → whether the spinner may draw on *stream*

Environment knobs:
  HERALD_SPINNER   Halo spinner glyph (default "dots")
  TERM=dumb / CI   disable the spinner
"""

from __future__ import annotations

from .engine import ProgressEngine, ProgressState
from .progress_ux import should_enable_spinners, step_spinner

__all__ = ["ProgressEngine", "ProgressState", "should_enable_spinners", "step_spinner"]
