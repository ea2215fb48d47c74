"""
Cache directory handle and the freshness decision.

``CacheDirectory`` names every file in ``<root>/bin/cache`` and is passed to
whoever touches the cache. ``CacheState`` only reads filesystem metadata; the
one mutation living here is ``CacheDirectory.write_stamp`` which callers use
after a successful compile.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from .config import LauncherConfig
from .vcs import current_revision

__all__ = [
    "ARTIFACT_MISSING",
    "MANIFEST_NEWER",
    "STAMP_EMPTY",
    "STAMP_MISMATCH",
    "STAMP_MISSING",
    "CacheDirectory",
    "CacheState",
    "FreshnessReport",
]

LOGGER = logging.getLogger(__name__)

ARTIFACT_MISSING = "artifact-missing"
STAMP_MISSING = "stamp-missing"
STAMP_EMPTY = "stamp-empty"
STAMP_MISMATCH = "stamp-mismatch"
MANIFEST_NEWER = "manifest-newer-than-lock"


@dataclass(frozen=True)
class CacheDirectory:
    path: Path
    artifact_name: str = "tool.pyz"
    stamp_name: str = "tool.stamp"
    version_cache_name: str = "tool.version.json"

    @classmethod
    def from_config(cls, config: LauncherConfig) -> "CacheDirectory":
        return cls(
            path=config.cache_dir,
            artifact_name=config.artifact_name,
            stamp_name=config.stamp_name,
            version_cache_name=config.version_cache_name,
        )

    @property
    def artifact(self) -> Path:
        return self.path / self.artifact_name

    @property
    def stamp(self) -> Path:
        return self.path / self.stamp_name

    @property
    def version_cache(self) -> Path:
        return self.path / self.version_cache_name

    @property
    def lock_scope(self) -> Path:
        """File whose descriptor carries the advisory lock."""
        return self.path / "lockfile"

    @property
    def spin_lock(self) -> Path:
        """PID-stamped lock file used where advisory locks are unavailable."""
        return self.path / ".upgrade_lock"

    def ensure(self) -> None:
        self.path.mkdir(parents=True, exist_ok=True)

    def read_stamp(self) -> Optional[str]:
        """Stamp contents, or None when absent. Unreadable or undecodable stamps never raise."""
        try:
            raw = self.stamp.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            LOGGER.warning("unable to read stamp %s (%s); treating the cache as stale", self.stamp, exc)
            return ""
        # A stamp torn by an unlocked concurrent rebuild decodes to something
        # that cannot equal a revision, so it reads as a mismatch.
        return raw.decode("utf-8", errors="replace").strip()

    def write_stamp(self, revision: str) -> None:
        """Replace the stamp atomically: readers see the old content or the new one."""
        self.ensure()
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path), prefix=f".{self.stamp_name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(revision + "\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.stamp)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise


@dataclass
class FreshnessReport:
    revision: str
    reasons: List[str] = field(default_factory=list)

    @property
    def fresh(self) -> bool:
        return not self.reasons


def _mtime(path: Path) -> Optional[float]:
    try:
        return path.stat().st_mtime
    except FileNotFoundError:
        return None


class CacheState:
    """
    Answer "is the cached artifact usable as-is?".

    Fresh means all of: the artifact exists, the stamp is non-empty and names
    the current revision, and the dependency manifest is not newer than its
    lock file. The revision is looked up once (``UnknownRevisionError``
    propagates) and cached for the stamp write that follows a rebuild.
    """

    def __init__(
        self,
        cache: CacheDirectory,
        config: LauncherConfig,
        *,
        revision: Optional[Callable[[], str]] = None,
    ) -> None:
        self.cache = cache
        self.config = config
        self._revision_fn = revision or (lambda: current_revision(config.root))
        self._revision: Optional[str] = None

    @property
    def revision(self) -> str:
        if self._revision is None:
            self._revision = self._revision_fn()
        return self._revision

    def check(self) -> FreshnessReport:
        report = FreshnessReport(revision=self.revision)

        if not self.cache.artifact.is_file():
            report.reasons.append(ARTIFACT_MISSING)

        stamp = self.cache.read_stamp()
        if stamp is None:
            report.reasons.append(STAMP_MISSING)
        elif not stamp:
            report.reasons.append(STAMP_EMPTY)
        elif stamp != report.revision:
            report.reasons.append(STAMP_MISMATCH)

        manifest_mtime = _mtime(self.config.manifest)
        if manifest_mtime is not None:
            lock_mtime = _mtime(self.config.lock_file)
            if lock_mtime is None or manifest_mtime > lock_mtime:
                report.reasons.append(MANIFEST_NEWER)

        if report.reasons:
            LOGGER.info("cache stale: %s", ", ".join(report.reasons))
        return report

    def is_fresh(self) -> bool:
        return self.check().fresh
