"""
Cross-process exclusion around cache rebuilds.

Three interchangeable variants, chosen once by ``select_lock``:

``AdvisoryFileLock``
    ``flock(LOCK_EX)`` on a descriptor opened against ``<cache>/lockfile``.
    The kernel drops it when the descriptor closes, including when the
    holder dies, so nothing needs cleaning up.
``SpinFileLock``
    A PID-stamped file created with ``O_CREAT | O_EXCL``. Waiters poll every
    0.1 s until they can create it. The holder removes it on release, at
    interpreter exit and on SIGTERM/SIGHUP. A file left behind by a killed
    (SIGKILL) process blocks waiters until someone deletes it.
``NoLock``
    Degraded mode: concurrent rebuilds are not serialised.

Errors raised by the locking step itself never abort the launch. The lock
logs them and carries on unlocked (``degraded`` becomes True).
"""

from __future__ import annotations

import atexit
import logging
import os
import signal
import threading
import time
from pathlib import Path
from types import FrameType, TracebackType
from typing import Any, Callable, Dict, Mapping, Optional, Type

from .cache import CacheDirectory
from .console import note

try:
    import fcntl
except ImportError:  # Windows
    fcntl = None  # type: ignore[assignment]

__all__ = [
    "AdvisoryFileLock",
    "Lock",
    "NoLock",
    "SpinFileLock",
    "WAIT_MESSAGE",
    "select_lock",
]

LOGGER = logging.getLogger(__name__)

WAIT_MESSAGE = "Waiting for another herald command to release the startup lock..."

_CLEANUP_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGTERM", "SIGHUP") if hasattr(signal, name)
)


class Lock:
    """Context-manager base; the plain instance behaves like ``NoLock``."""

    kind = "none"

    def __init__(self) -> None:
        self.degraded = False
        self.held = False

    def acquire(self) -> "Lock":
        return self

    def release(self) -> None:
        return None

    def _degrade(self, action: str, exc: BaseException) -> None:
        LOGGER.warning("%s lock: %s failed (%s); continuing without locking", self.kind, action, exc)
        self.degraded = True

    def __enter__(self) -> "Lock":
        return self.acquire()

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()


class NoLock(Lock):
    kind = "none"


class AdvisoryFileLock(Lock):
    kind = "advisory"

    def __init__(self, scope: Path) -> None:
        super().__init__()
        self.scope = scope
        self._fd: Optional[int] = None

    def _open(self) -> Optional[int]:
        try:
            self.scope.parent.mkdir(parents=True, exist_ok=True)
            return os.open(str(self.scope), os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as exc:
            self._degrade("open", exc)
            return None

    def try_acquire(self) -> bool:
        """Non-blocking attempt; False only when another process holds the lock."""
        if self.held or self.degraded:
            return True
        fd = self._open()
        if fd is None:
            return True
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False
        except OSError as exc:
            os.close(fd)
            self._degrade("flock", exc)
            return True
        self._fd = fd
        self.held = True
        return True

    def acquire(self) -> "AdvisoryFileLock":
        if self.try_acquire():
            return self
        note(WAIT_MESSAGE)
        fd = self._open()
        if fd is None:
            return self
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError as exc:
            os.close(fd)
            self._degrade("flock", exc)
            return self
        self._fd = fd
        self.held = True
        return self

    def release(self) -> None:
        fd, self._fd = self._fd, None
        self.held = False
        if fd is None:
            return
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as exc:
            LOGGER.warning("advisory lock: unlock failed (%s)", exc)
        finally:
            os.close(fd)


class SpinFileLock(Lock):
    kind = "spin"

    def __init__(
        self,
        path: Path,
        *,
        interval: float = 0.1,
        timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__()
        self.path = path
        self.interval = interval
        self.timeout = timeout
        self._sleep = sleep
        self._previous_handlers: Dict[int, Any] = {}

    def try_acquire(self) -> bool:
        if self.held or self.degraded:
            return True
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._degrade("mkdir", exc)
            return True
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as exc:
            self._degrade("create", exc)
            return True
        try:
            os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        except OSError as exc:
            os.close(fd)
            self._discard_unowned()
            self._degrade("write", exc)
            return True
        os.close(fd)
        self.held = True
        self._register_cleanup()
        return True

    def acquire(self) -> "SpinFileLock":
        if self.try_acquire():
            return self
        note(WAIT_MESSAGE)
        started = time.monotonic()
        while not self.try_acquire():
            if self.timeout is not None and time.monotonic() - started >= self.timeout:
                self._degrade("wait", TimeoutError(f"{self.path} still present after {self.timeout}s"))
                return self
            self._sleep(self.interval)
        return self

    def _discard_unowned(self) -> None:
        # Created but never stamped: waiters would spin on it forever.
        try:
            self.path.unlink()
        except OSError as exc:
            LOGGER.warning("spin lock: unable to remove half-written %s (%s)", self.path, exc)

    def owner_pid(self) -> Optional[int]:
        try:
            return int(self.path.read_text(encoding="ascii").strip())
        except (OSError, ValueError):
            return None

    def _on_signal(self, signum: int, _frame: Optional[FrameType]) -> None:
        self.release()
        raise SystemExit(128 + signum)

    def _register_cleanup(self) -> None:
        atexit.register(self.release)
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in _CLEANUP_SIGNALS:
            try:
                self._previous_handlers[signum] = signal.signal(signum, self._on_signal)
            except (OSError, ValueError):
                continue

    def _unregister_cleanup(self) -> None:
        atexit.unregister(self.release)
        previous, self._previous_handlers = self._previous_handlers, {}
        for signum, handler in previous.items():
            try:
                signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
            except (OSError, ValueError):
                continue

    def release(self) -> None:
        if not self.held:
            return
        self.held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            LOGGER.warning("spin lock: unable to remove %s (%s)", self.path, exc)
        self._unregister_cleanup()


def select_lock(cache: CacheDirectory, *, environ: Optional[Mapping[str, str]] = None) -> Lock:
    """
    Pick the strongest locking primitive the host offers.

    ``HERALD_LOCK`` (``advisory`` / ``spin`` / ``none``) forces a variant, which
    helps on network filesystems where flock is known to misbehave.
    """
    env = os.environ if environ is None else environ
    forced = env.get("HERALD_LOCK", "").strip().lower()

    lock: Lock
    if forced == "none":
        lock = NoLock()
    elif fcntl is not None and forced != "spin":
        lock = AdvisoryFileLock(cache.lock_scope)
    elif hasattr(os, "O_EXCL"):
        lock = SpinFileLock(cache.spin_lock)
    else:
        lock = NoLock()
    LOGGER.debug("selected %s lock for %s", lock.kind, cache.path)
    return lock
