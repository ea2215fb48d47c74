from __future__ import annotations

import os
import signal
import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

from conftest import child_env
from herald.cache import CacheDirectory
from herald.locking import (
    WAIT_MESSAGE,
    AdvisoryFileLock,
    NoLock,
    SpinFileLock,
    select_lock,
)

posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX signals")


def test_select_lock_prefers_advisory_when_flock_exists(cache: CacheDirectory) -> None:
    pytest.importorskip("fcntl")
    lock = select_lock(cache, environ={})
    assert isinstance(lock, AdvisoryFileLock)
    assert lock.scope == cache.lock_scope


@pytest.mark.parametrize(("forced", "kind"), [("none", NoLock), ("spin", SpinFileLock)])
def test_select_lock_can_be_forced(cache: CacheDirectory, forced: str, kind: type) -> None:
    assert isinstance(select_lock(cache, environ={"HERALD_LOCK": forced}), kind)


def test_select_lock_falls_back_to_spin_without_fcntl(cache: CacheDirectory, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("herald.locking.fcntl", None)
    assert isinstance(select_lock(cache, environ={}), SpinFileLock)


def test_no_lock_is_a_noop() -> None:
    with NoLock() as lock:
        assert not lock.degraded


# ── spin lock ────────────────────────────────────────────────────────────────


def test_spin_lock_writes_pid_and_cleans_up(tmp_path: Path) -> None:
    path = tmp_path / "cache" / ".upgrade_lock"
    with SpinFileLock(path) as lock:
        assert lock.held
        assert lock.owner_pid() == os.getpid()
    assert not path.exists()


def test_spin_lock_release_is_idempotent(tmp_path: Path) -> None:
    lock = SpinFileLock(tmp_path / ".upgrade_lock").acquire()
    lock.release()
    lock.release()
    assert not lock.held


def test_spin_lock_waits_until_file_disappears(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / ".upgrade_lock"
    path.write_text("99999\n", encoding="ascii")
    sleeps: list[float] = []

    def _sleep(seconds: float) -> None:
        sleeps.append(seconds)
        if len(sleeps) == 3:
            path.unlink()

    lock = SpinFileLock(path, sleep=_sleep).acquire()
    try:
        assert lock.held
        assert sleeps == [0.1, 0.1, 0.1]
        assert WAIT_MESSAGE in capsys.readouterr().err
        assert lock.owner_pid() == os.getpid()
    finally:
        lock.release()


def test_spin_lock_timeout_degrades(tmp_path: Path) -> None:
    path = tmp_path / ".upgrade_lock"
    path.write_text("99999\n", encoding="ascii")
    lock = SpinFileLock(path, timeout=0.0, sleep=lambda _s: None).acquire()
    assert lock.degraded
    assert not lock.held
    lock.release()
    assert path.read_text(encoding="ascii") == "99999\n"


def test_spin_lock_create_error_degrades(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    with SpinFileLock(blocker / ".upgrade_lock") as lock:
        assert lock.degraded
        assert not lock.held


def test_spin_lock_write_error_degrades_and_removes_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / ".upgrade_lock"

    def _disk_full(fd: int, data: bytes) -> int:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("herald.locking.os.write", _disk_full)
    lock = SpinFileLock(path).acquire()
    monkeypatch.undo()

    assert lock.degraded
    assert not lock.held
    assert not path.exists()
    follower = SpinFileLock(path)
    assert follower.try_acquire() is True
    assert follower.held
    follower.release()


@posix_only
def test_spin_lock_removed_when_holder_is_terminated(tmp_path: Path) -> None:
    path = tmp_path / ".upgrade_lock"
    script = textwrap.dedent(
        f"""
        import sys, time
        from pathlib import Path
        from herald.locking import SpinFileLock
        lock = SpinFileLock(Path({str(path)!r})).acquire()
        print("locked", flush=True)
        time.sleep(60)
        """
    )
    child = subprocess.Popen([sys.executable, "-c", script], stdout=subprocess.PIPE, text=True, env=child_env())
    try:
        assert child.stdout is not None
        assert child.stdout.readline().strip() == "locked"
        assert path.exists()
        child.send_signal(signal.SIGTERM)
        assert child.wait(timeout=30) == 128 + signal.SIGTERM
    finally:
        if child.poll() is None:
            child.kill()
            child.wait()
    assert not path.exists()


# ── advisory lock ────────────────────────────────────────────────────────────


def test_advisory_lock_excludes_second_holder(tmp_path: Path) -> None:
    pytest.importorskip("fcntl")
    scope = tmp_path / "cache" / "lockfile"
    first = AdvisoryFileLock(scope)
    second = AdvisoryFileLock(scope)
    with first:
        assert first.held
        assert second.try_acquire() is False
    assert second.try_acquire() is True
    second.release()


def test_advisory_lock_open_error_degrades(tmp_path: Path) -> None:
    pytest.importorskip("fcntl")
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    with AdvisoryFileLock(blocker / "lockfile") as lock:
        assert lock.degraded


_SERIAL_WORKER = textwrap.dedent(
    """
    import os, sys, time
    from pathlib import Path
    from herald.locking import AdvisoryFileLock
    scope, log, name = Path(sys.argv[1]), Path(sys.argv[2]), sys.argv[3]
    with AdvisoryFileLock(scope):
        with log.open("a") as fh:
            fh.write(f"start {name}\\n")
        time.sleep(0.5)
        with log.open("a") as fh:
            fh.write(f"end {name}\\n")
    """
)


def test_concurrent_holders_never_interleave(tmp_path: Path) -> None:
    pytest.importorskip("fcntl")
    scope = tmp_path / "lockfile"
    log = tmp_path / "compile.log"
    children = [
        subprocess.Popen(
            [sys.executable, "-c", _SERIAL_WORKER, str(scope), str(log), name],
            env=child_env(),
        )
        for name in ("a", "b")
    ]
    for child in children:
        assert child.wait(timeout=60) == 0

    lines = log.read_text().splitlines()
    assert len(lines) == 4
    for first, second in ((lines[0], lines[1]), (lines[2], lines[3])):
        assert first.startswith("start ")
        assert second == "end " + first.split()[1]


@posix_only
def test_advisory_lock_released_when_holder_is_killed(tmp_path: Path) -> None:
    pytest.importorskip("fcntl")
    scope = tmp_path / "lockfile"
    script = textwrap.dedent(
        f"""
        import time
        from pathlib import Path
        from herald.locking import AdvisoryFileLock
        lock = AdvisoryFileLock(Path({str(scope)!r})).acquire()
        print("locked", flush=True)
        time.sleep(60)
        """
    )
    child = subprocess.Popen([sys.executable, "-c", script], stdout=subprocess.PIPE, text=True, env=child_env())
    try:
        assert child.stdout is not None
        assert child.stdout.readline().strip() == "locked"
        probe = AdvisoryFileLock(scope)
        assert probe.try_acquire() is False
        child.send_signal(signal.SIGINT)
        child.wait(timeout=30)
    finally:
        if child.poll() is None:
            child.kill()
            child.wait()

    probe = AdvisoryFileLock(scope)
    assert probe.try_acquire() is True
    probe.release()
