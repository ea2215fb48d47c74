"""
Launcher configuration: installation layout and external command templates.

Values come from three layers, later ones winning:

1. built-in defaults (pip-tools pins the manifest, a venv receives the pinned
   requirements, and the tool sources are packed into a zipapp),
2. the optional JSON file ``<root>/bin/herald.json``,
3. environment variables (CI toggle, package cache, extra tool args).

Command templates are argument lists whose items may reference
``{python}``, ``{root}``, ``{cache}``, ``{tool_dir}``, ``{manifest}``,
``{lock}``, ``{source_dir}``, ``{entry_point}``, ``{artifact}``,
``{runtime_dir}``, ``{runtime_python}`` and ``{package_cache}``.
"""

from __future__ import annotations

import json
import os
import shlex
import sys
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import ConfigError

__all__ = ["CONFIG_FILE", "LauncherConfig", "is_ci", "load_config"]

CONFIG_FILE = Path("bin") / "herald.json"

_TRUTHY = {"1", "true", "yes", "on"}
_CI_VARS = ("CI", "BOT", "CONTINUOUS_INTEGRATION")

_DEFAULT_RESOLVE: Tuple[str, ...] = (
    "{python}", "-m", "piptools", "compile", "--quiet", "--output-file", "{lock}", "{manifest}",
)
_DEFAULT_BOOTSTRAP: Tuple[str, ...] = ("{python}", "-m", "venv", "{runtime_dir}")
_DEFAULT_INSTALL: Tuple[str, ...] = (
    "{runtime_python}", "-m", "pip", "install", "--quiet", "--requirement", "{lock}",
)
_DEFAULT_COMPILE: Tuple[str, ...] = (
    "{python}", "-m", "zipapp", "{source_dir}", "--output", "{artifact}", "--main", "{entry_point}",
)
_DEFAULT_RUNTIME: Tuple[str, ...] = ("{runtime_python}",)


def _is_truthy(value: str) -> bool:
    return value.strip().lower() in _TRUTHY


def is_ci(environ: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if environ is None else environ
    return any(_is_truthy(env.get(name, "")) for name in _CI_VARS)


@dataclass(frozen=True)
class LauncherConfig:
    root: Path
    cache_subdir: str = "bin/cache"
    artifact_name: str = "tool.pyz"
    stamp_name: str = "tool.stamp"
    version_cache_name: str = "tool.version.json"
    tool_subdir: str = "packages/tool"
    manifest_name: str = "requirements.in"
    lock_name: str = "requirements.txt"
    source_subdir: str = "src"
    entry_point: str = "tool.__main__:main"
    version_marker_name: str = "version"
    runtime_subdir: str = "bin/cache/runtime"
    resolve_command: Tuple[str, ...] = _DEFAULT_RESOLVE
    bootstrap_command: Tuple[str, ...] = _DEFAULT_BOOTSTRAP
    install_command: Tuple[str, ...] = _DEFAULT_INSTALL
    compile_command: Tuple[str, ...] = _DEFAULT_COMPILE
    runtime: Tuple[str, ...] = _DEFAULT_RUNTIME
    retry_attempts: int = 10
    retry_delay: float = 5.0
    ci: bool = False
    package_cache: Optional[Path] = None
    tool_args: Tuple[str, ...] = field(default_factory=tuple)
    environment_tag: str = ""

    @property
    def cache_dir(self) -> Path:
        return self.root / self.cache_subdir

    @property
    def tool_dir(self) -> Path:
        return self.root / self.tool_subdir

    @property
    def manifest(self) -> Path:
        return self.tool_dir / self.manifest_name

    @property
    def lock_file(self) -> Path:
        return self.tool_dir / self.lock_name

    @property
    def source_dir(self) -> Path:
        return self.tool_dir / self.source_subdir

    @property
    def version_marker(self) -> Path:
        return self.root / self.version_marker_name

    @property
    def runtime_dir(self) -> Path:
        return self.root / self.runtime_subdir

    @property
    def runtime_python(self) -> Path:
        """Interpreter inside the runtime venv (may not exist yet)."""
        if os.name == "nt":
            return self.runtime_dir / "Scripts" / "python.exe"
        return self.runtime_dir / "bin" / "python"

    @property
    def package_cache_dir(self) -> Path:
        return self.package_cache if self.package_cache is not None else self.root / ".package-cache"

    def placeholders(self) -> Dict[str, str]:
        return {
            "python": sys.executable,
            "root": str(self.root),
            "cache": str(self.cache_dir),
            "tool_dir": str(self.tool_dir),
            "manifest": str(self.manifest),
            "lock": str(self.lock_file),
            "source_dir": str(self.source_dir),
            "entry_point": self.entry_point,
            "artifact": str(self.cache_dir / self.artifact_name),
            "runtime_dir": str(self.runtime_dir),
            "runtime_python": str(self.runtime_python),
            "package_cache": str(self.package_cache_dir),
        }

    def expand(self, template: Tuple[str, ...]) -> list[str]:
        """Substitute placeholders in a command template."""
        values = self.placeholders()
        try:
            return [part.format_map(values) for part in template]
        except (KeyError, IndexError, ValueError) as exc:
            raise ConfigError(f"Bad placeholder in command {list(template)!r}: {exc}") from exc


_PATH_FIELDS = {"package_cache"}
_COMMAND_FIELDS = {"resolve_command", "bootstrap_command", "install_command", "compile_command", "runtime"}


def _coerce(name: str, value: Any) -> Any:
    if name in _COMMAND_FIELDS:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"'{name}' in {CONFIG_FILE} must be a list of strings")
        return tuple(value)
    if name in _PATH_FIELDS:
        if not isinstance(value, str):
            raise ConfigError(f"'{name}' in {CONFIG_FILE} must be a string")
        return Path(value).expanduser()
    if name == "retry_attempts":
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ConfigError(f"'retry_attempts' in {CONFIG_FILE} must be a positive integer")
        return value
    if name == "retry_delay":
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
            raise ConfigError(f"'retry_delay' in {CONFIG_FILE} must be a non-negative number")
        return float(value)
    if not isinstance(value, str):
        raise ConfigError(f"'{name}' in {CONFIG_FILE} must be a string")
    return value


def _read_file_overrides(root: Path) -> Dict[str, Any]:
    path = root / CONFIG_FILE
    if not path.is_file():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Unable to read {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a JSON object")

    known = {f.name for f in fields(LauncherConfig)}
    overrides: Dict[str, Any] = {}
    for key, value in raw.items():
        if key in ("root", "ci", "tool_args", "environment_tag") or key not in known:
            raise ConfigError(f"Unknown key '{key}' in {path}")
        overrides[key] = _coerce(key, value)
    return overrides


def load_config(root: Path, environ: Optional[Mapping[str, str]] = None) -> LauncherConfig:
    """Build the configuration for *root* from defaults, JSON and environment."""
    env = os.environ if environ is None else environ
    config = replace(LauncherConfig(root=root), **_read_file_overrides(root))

    package_cache = env.get("HERALD_PACKAGE_CACHE", "").strip()
    try:
        tool_args = tuple(shlex.split(env.get("HERALD_TOOL_ARGS", "")))
    except ValueError as exc:
        raise ConfigError(f"Unable to parse HERALD_TOOL_ARGS: {exc}") from exc

    return replace(
        config,
        ci=is_ci(env),
        package_cache=Path(package_cache).expanduser() if package_cache else config.package_cache,
        tool_args=tool_args,
        environment_tag=env.get("HERALD_ENVIRONMENT", ""),
    )
