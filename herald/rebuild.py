"""
Rebuild the cached tool artifact.

Order is fixed and strictly sequential:

1. drop the resolved-version markers so an old version string cannot leak
   into the new build,
2. resolve dependencies (bounded retries, fixed back-off),
3. bootstrap the toolchain (always; the command is idempotent), then install
   the locked dependencies into it,
4. compile the artifact,
5. write the stamp, only once the artifact exists.

Callers hold the rebuild lock (or run degraded) for the whole sequence.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, Mapping, Optional, Sequence

from .cache import CacheDirectory
from .config import LauncherConfig
from .console import note, warn
from .errors import RebuildError, RetryExhaustedError
from .process import CommandResult, run_command
from .progress import ProgressEngine, step_spinner

__all__ = ["RetryingRebuilder", "Runner"]

LOGGER = logging.getLogger(__name__)

Runner = Callable[..., CommandResult]

STEP_RESOLVE = "Resolve dependencies"
STEP_BOOTSTRAP = "Bootstrap toolchain"
STEP_COMPILE = "Compile tool"
STEP_INSTALL = "Install dependencies"
STEP_INVALIDATE = "Invalidate version markers"
STEP_STAMP = "Write stamp"


@contextmanager
def _filesystem_step(step: str) -> Iterator[None]:
    """Report an OSError raised inside the block as a failure of *step*."""
    try:
        yield
    except OSError as exc:
        LOGGER.error("%s: %s", step, exc)
        raise RebuildError(step, None, detail=str(exc)) from exc


class RetryingRebuilder:
    def __init__(
        self,
        config: LauncherConfig,
        cache: CacheDirectory,
        *,
        runner: Runner = run_command,
        sleep: Callable[[float], None] = time.sleep,
        environ: Optional[Mapping[str, str]] = None,
        spinner: Optional[bool] = None,
    ) -> None:
        self.config = config
        self.cache = cache
        self._runner = runner
        self._sleep = sleep
        self._environ = os.environ if environ is None else environ
        self._spinner = False if config.ci else spinner
        self.engine = ProgressEngine()

    @property
    def capture(self) -> bool:
        # CI logs get the children's full output; terminals only see it on failure.
        return not self.config.ci

    def child_env(self) -> Dict[str, str]:
        env = dict(self._environ)
        tag = self.config.environment_tag
        if self.config.ci:
            tag += ":herald_bot"
        else:
            env["HERALD_SUMMARY_ONLY"] = "1"
        env["HERALD_ENVIRONMENT"] = tag + ":herald_install"
        env["PIP_CACHE_DIR"] = str(self.config.package_cache_dir)
        return env

    def _run(self, cmd: Sequence[str], *, cwd: Path) -> CommandResult:
        return self._runner(list(cmd), cwd=cwd, env=self.child_env(), capture=self.capture)

    def invalidate_version_markers(self) -> None:
        for marker in (self.config.version_marker, self.cache.version_cache):
            try:
                marker.unlink()
                LOGGER.info("removed version marker %s", marker)
            except FileNotFoundError:
                continue

    def resolve_dependencies(self) -> int:
        """Run the resolver until it succeeds; return the attempt count."""
        cmd = self.config.expand(self.config.resolve_command)
        attempts = self.config.retry_attempts
        delay = self.config.retry_delay
        result = CommandResult(0)
        for attempt in range(1, attempts + 1):
            result = self._run(cmd, cwd=self.config.tool_dir)
            if result.ok:
                return attempt
            remaining = attempts - attempt
            LOGGER.warning(
                "dependency resolution failed (exit %s); %d tries left", result.returncode, remaining
            )
            if result.output:
                LOGGER.warning("resolver output:\n%s", result.output.rstrip())
            if remaining:
                warn(
                    f"Error: Unable to resolve dependencies for the tool. "
                    f"Retrying in {delay:g} seconds... ({remaining} tries left)"
                )
                self._sleep(delay)
        if result.output:
            note(result.output.rstrip())
        raise RetryExhaustedError(" ".join(cmd), attempts)

    def bootstrap_toolchain(self) -> None:
        """Create the runtime, then install the locked dependencies into it."""
        result = self._run(self.config.expand(self.config.bootstrap_command), cwd=self.config.root)
        if not result.ok:
            raise RebuildError(STEP_BOOTSTRAP, result.returncode, result.output)
        if not self.config.install_command:
            return
        result = self._run(self.config.expand(self.config.install_command), cwd=self.config.tool_dir)
        if not result.ok:
            raise RebuildError(STEP_INSTALL, result.returncode, result.output)

    def compile(self) -> None:
        artifact = self.cache.artifact
        previous = artifact.with_name(artifact.name + ".old")
        with _filesystem_step(STEP_COMPILE):
            self.cache.ensure()
            # Move rather than overwrite: a running tool may still have it mapped.
            if artifact.exists():
                os.replace(artifact, previous)

        cmd = [*self.config.expand(self.config.compile_command), *self.config.tool_args]
        result = self._run(cmd, cwd=self.config.tool_dir)
        if not result.ok:
            raise RebuildError(STEP_COMPILE, result.returncode, result.output)
        if not artifact.is_file():
            raise RebuildError(STEP_COMPILE, None, result.output)

        try:
            previous.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            LOGGER.warning("unable to remove %s (%s)", previous, exc)

    def rebuild(self, revision: str) -> None:
        """Run every step and stamp the cache with *revision*."""
        LOGGER.info("rebuilding %s at revision %s", self.cache.artifact, revision)
        with _filesystem_step(STEP_INVALIDATE):
            self.cache.ensure()
            self.invalidate_version_markers()

        steps = (
            (STEP_RESOLVE, self.resolve_dependencies),
            (STEP_BOOTSTRAP, self.bootstrap_toolchain),
            (STEP_COMPILE, self.compile),
        )
        note("Building herald tool...")
        self.engine.set_total(len(steps))
        with step_spinner(self.engine, "Building herald tool", enabled=self._spinner):
            for name, fn in steps:
                with self.engine.step(name):
                    fn()
            self.engine.finish()
        LOGGER.info("rebuild finished in %.1fs", self.engine.state.elapsed)

        with _filesystem_step(STEP_STAMP):
            self.cache.write_stamp(revision)
        LOGGER.info("stamped %s with %s", self.cache.stamp, revision)
