from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional

Listener = Callable[["ProgressState"], None]


@dataclass
class ProgressState:
    total_steps: int = 0
    done_steps: int = 0
    current_step: Optional[str] = None
    started_at: float = field(default_factory=time.monotonic)

    @property
    def label(self) -> str:
        position = min(self.done_steps + 1, self.total_steps) if self.total_steps else 0
        return f"[{position}/{self.total_steps}] {self.current_step or ''}".rstrip()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


class ProgressEngine:
    """
    Counts the steps of one rebuild and tells listeners about every change.

    Listeners run synchronously on the thread that reported the change.
    """

    def __init__(self) -> None:
        self.state = ProgressState()
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []

    def on_update(self, listener: Listener) -> Callable[[], None]:
        """Subscribe *listener*; call the returned function to unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_total(self, total_steps: int) -> None:
        with self._lock:
            self.state = ProgressState(total_steps=max(0, int(total_steps)))
            self._emit()

    def set_current(self, name: Optional[str]) -> None:
        with self._lock:
            self.state.current_step = name
            self._emit()

    def advance(self) -> None:
        with self._lock:
            self.state.done_steps += 1
            self._emit()

    @contextmanager
    def step(self, name: str) -> Iterator[None]:
        """Mark *name* current for the block; count it done only if the block succeeds."""
        self.set_current(name)
        yield
        self.advance()

    def finish(self) -> None:
        with self._lock:
            self.state.done_steps = max(self.state.done_steps, self.state.total_steps)
            self._emit()

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self.state)
