"""
Launcher entry point: make sure the cached tool is current, then become it.

    ResolvePath → CheckPrerequisites → CheckFreshness
        ├─ fresh → Delegate
        └─ stale → AcquireLock → (re-check) → Rebuild → Delegate

Any ``HeraldError`` before delegation ends the invocation with a message on
stderr and exit code 1; nothing is launched after a fatal error.
"""

from __future__ import annotations

import enum
import logging
import os
import sys
import time
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence

from .cache import CacheDirectory, CacheState
from .config import LauncherConfig, load_config
from .console import error, warn
from .delegate import Delegator
from .errors import HeraldError, ResolutionError
from .locking import Lock, select_lock
from .logging_config import setup_logging
from .paths import installation_root, resolve_invocation_path
from .process import run_command
from .rebuild import RetryingRebuilder, Runner
from .vcs import check_prerequisites, current_revision

__all__ = ["LaunchState", "Launcher", "main", "run"]

LOGGER = logging.getLogger(__name__)

_ROOT_WARNING = (
    "Woah! You appear to be trying to run herald as root.\n"
    "We strongly recommend running herald without superuser privileges."
)


class LaunchState(enum.Enum):
    RESOLVE_PATH = "resolve-path"
    CHECK_PREREQUISITES = "check-prerequisites"
    CHECK_FRESHNESS = "check-freshness"
    ACQUIRE_LOCK = "acquire-lock"
    REBUILD = "rebuild"
    DELEGATE = "delegate"
    DELEGATED = "delegated"
    FAILED = "failed"


class Launcher:
    def __init__(
        self,
        argv: Sequence[str],
        *,
        root: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        revision: Optional[Callable[[], str]] = None,
        runner: Runner = run_command,
        sleep: Callable[[float], None] = time.sleep,
        delegator: Optional[Delegator] = None,
        git: Optional[str] = None,
    ) -> None:
        self.argv = list(argv)
        self.environ = os.environ if environ is None else environ
        self._root = root
        self._revision = revision
        self._runner = runner
        self._sleep = sleep
        self._delegator = delegator
        self._git = git
        self.state = LaunchState.RESOLVE_PATH
        self.rebuilt = False

        self.config: Optional[LauncherConfig] = None
        self.cache: Optional[CacheDirectory] = None
        self.cache_state: Optional[CacheState] = None

    def _enter(self, state: LaunchState) -> None:
        LOGGER.debug("%s -> %s", self.state.value, state.value)
        self.state = state

    def prepare(self) -> CacheState:
        """Resolve the root, load config and verify prerequisites."""
        self._enter(LaunchState.RESOLVE_PATH)
        root = self._root
        if root is None:
            if not self.argv:
                raise ResolutionError("Unable to determine the launcher path (no argv).")
            root = installation_root(resolve_invocation_path(self.argv[0]), environ=self.environ)
        config = load_config(root, self.environ)

        self._enter(LaunchState.CHECK_PREREQUISITES)
        git = check_prerequisites(root, git=self._git)
        self._warn_if_superuser(config)

        cache = CacheDirectory.from_config(config)
        revision = self._revision or (lambda: current_revision(root, git=git))
        self.config = config
        self.cache = cache
        self.cache_state = CacheState(cache, config, revision=revision)
        return self.cache_state

    def _warn_if_superuser(self, config: LauncherConfig) -> None:
        geteuid = getattr(os, "geteuid", None)
        if geteuid is None or geteuid() != 0 or config.ci:
            return
        if Path("/.dockerenv").exists():
            return
        warn(_ROOT_WARNING)

    def rebuilder(self) -> RetryingRebuilder:
        assert self.config is not None and self.cache is not None
        return RetryingRebuilder(
            self.config,
            self.cache,
            runner=self._runner,
            sleep=self._sleep,
            environ=self.environ,
        )

    def lock(self) -> Lock:
        assert self.cache is not None
        return select_lock(self.cache, environ=self.environ)

    def ensure_fresh(self, *, force: bool = False) -> bool:
        """Rebuild under the lock when stale (or *force*); return True if rebuilt."""
        state = self.cache_state or self.prepare()

        self._enter(LaunchState.CHECK_FRESHNESS)
        if not force and state.is_fresh():
            return False

        self._enter(LaunchState.ACQUIRE_LOCK)
        with self.lock() as lock:
            if lock.degraded:
                LOGGER.warning("rebuilding without a lock")
            # Another process may have finished the rebuild while we waited.
            if not force and state.is_fresh():
                LOGGER.info("cache became fresh while waiting for the lock")
                return False
            self._enter(LaunchState.REBUILD)
            self.rebuilder().rebuild(state.revision)
        self.rebuilt = True
        return True

    def delegator(self) -> Delegator:
        if self._delegator is not None:
            return self._delegator
        assert self.config is not None
        return Delegator(self.config.expand(self.config.runtime))

    def run(self) -> int:
        try:
            self.ensure_fresh()
            assert self.cache is not None
            self._enter(LaunchState.DELEGATE)
            returncode = self.delegator().exec(self.cache.artifact, self.argv[1:])
        except BaseException:
            self._enter(LaunchState.FAILED)
            raise
        self._enter(LaunchState.DELEGATED)
        return returncode


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging()
    args = list(sys.argv if argv is None else argv)
    try:
        return Launcher(args).run()
    except HeraldError as exc:
        LOGGER.error("launch failed: %s", exc.message)
        error(exc.render())
        return exc.exit_code
    except OSError as exc:
        LOGGER.exception("launch failed")
        error(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        return 130


def run() -> None:
    """Console-script entry point."""
    raise SystemExit(main())
