# tests/unit-tests/conftest.py
from __future__ import annotations

import os
import shutil
import subprocess
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterator, List, Optional

import pytest

from herald.cache import CacheDirectory
from herald.config import LauncherConfig, load_config
from herald.process import CommandResult

REPO_ROOT = Path(__file__).resolve().parents[2]
REVISION = "0123456789abcdef0123456789abcdef01234567"

_ENV_TO_CLEAR = (
    "CI",
    "BOT",
    "CONTINUOUS_INTEGRATION",
    "HERALD_ROOT",
    "HERALD_LOCK",
    "HERALD_TOOL_ARGS",
    "HERALD_PACKAGE_CACHE",
    "HERALD_ENVIRONMENT",
)


@pytest.fixture(scope="session", autouse=True)
def _log_env(tmp_path_factory: pytest.TempPathFactory) -> None:
    """Keep the launcher's log file out of the user's data directory."""
    log_dir = tmp_path_factory.mktemp("logs")
    os.environ["HERALD_LOG_FILE"] = str(log_dir / "herald.log")
    os.environ.setdefault("TERM", "dumb")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_TO_CLEAR:
        monkeypatch.delenv(name, raising=False)


def _touch(path: Path, text: str = "", *, mtime: Optional[float] = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def touch() -> Callable[..., Path]:
    return _touch


@pytest.fixture
def install_root(tmp_path: Path) -> Path:
    """A minimal installation: launcher shim, fake checkout, tool package."""
    root = tmp_path / "install"
    (root / ".git").mkdir(parents=True)
    launcher = _touch(root / "bin" / "herald", "#!/bin/sh\n")
    launcher.chmod(0o755)
    _touch(root / "packages" / "tool" / "requirements.in", "requests\n", mtime=1_000_000)
    _touch(root / "packages" / "tool" / "requirements.txt", "requests==2.32.3\n", mtime=1_000_100)
    _touch(root / "packages" / "tool" / "src" / "tool" / "__main__.py", "def main():\n    pass\n")
    return root


@pytest.fixture
def config(install_root: Path) -> LauncherConfig:
    """Config with stub commands so fake runners can tell the steps apart."""
    base = load_config(install_root, environ={})
    return replace(
        base,
        resolve_command=("resolve", "{lock}"),
        bootstrap_command=("bootstrap",),
        install_command=(),
        compile_command=("compile", "{artifact}"),
        runtime=(),
    )


@pytest.fixture
def cache(config: LauncherConfig) -> CacheDirectory:
    return CacheDirectory.from_config(config)


def make_fresh(cache: CacheDirectory, revision: str = REVISION) -> None:
    _touch(cache.artifact, "artifact")
    cache.write_stamp(revision)


class FakeRunner:
    """Records commands; resolve fails ``resolve_failures`` times, compile writes the artifact."""

    def __init__(self, *, resolve_failures: int = 0, fail_step: Optional[str] = None, writes_artifact: bool = True):
        self.resolve_failures = resolve_failures
        self.fail_step = fail_step
        self.writes_artifact = writes_artifact
        self.calls: List[List[str]] = []
        self.envs: List[dict] = []

    def steps(self) -> List[str]:
        return [cmd[0] for cmd in self.calls]

    def __call__(self, cmd, *, cwd=None, env=None, capture=False) -> CommandResult:
        self.calls.append(list(cmd))
        self.envs.append(dict(env or {}))
        step = cmd[0]
        if step == "resolve" and self.resolve_failures > 0:
            self.resolve_failures -= 1
            return CommandResult(69, "network unreachable\n")
        if step == self.fail_step:
            return CommandResult(2, f"{step} exploded\n")
        if step == "compile" and self.writes_artifact:
            _touch(Path(cmd[1]), "compiled")
        return CommandResult(0)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


def child_env() -> dict:
    """Environment for child interpreters that import herald from this checkout."""
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT), env.get("PYTHONPATH", "")]))
    return env


@pytest.fixture
def git_checkout(tmp_path: Path) -> Iterator[Path]:
    """A real git repository with one commit (skipped when git is missing)."""
    git = shutil.which("git")
    if git is None:
        pytest.skip("git not installed")
    root = tmp_path / "checkout"
    root.mkdir()
    ident = ["-c", "user.name=Herald Tests", "-c", "user.email=tests@example.invalid", "-c", "commit.gpgsign=false"]
    subprocess.run([git, "init", "-q"], cwd=root, check=True)
    _touch(root / "README", "checkout\n")
    subprocess.run([git, "add", "README"], cwd=root, check=True)
    subprocess.run([git, *ident, "commit", "-q", "-m", "initial"], cwd=root, check=True)
    yield root


PYTHON = sys.executable
