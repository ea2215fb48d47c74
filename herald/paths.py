"""
Resolve where the launcher really lives.

The launcher is usually reached through ``PATH`` symlinks (``/usr/local/bin``
links, version-manager shims, ...). The installation root is two directories
above the real launcher file (``<root>/bin/herald``), so every link in the
chain has to be followed before the root can be derived.
"""

from __future__ import annotations

import logging
import os
from os import PathLike
from pathlib import Path
from typing import Mapping, Optional, Union

from .errors import ResolutionError

__all__ = ["MAX_LINK_HOPS", "installation_root", "resolve_invocation_path"]

LOGGER = logging.getLogger(__name__)

MAX_LINK_HOPS = 40

StrPath = Union[str, PathLike[str]]


def _collapse_double_slash(text: str) -> str:
    # Some POSIX mounts hand out paths like "//home/..."; on Windows "//" is UNC.
    if os.name == "nt":
        return text
    while text.startswith("//"):
        text = text[1:]
    return text


def resolve_invocation_path(
    path: StrPath,
    *,
    cwd: Optional[StrPath] = None,
    max_hops: int = MAX_LINK_HOPS,
) -> Path:
    """
    Return the absolute, symlink-free path of the file *path* points at.

    Links are followed one hop at a time; a relative link target is taken
    relative to the directory holding the link. Raises ``ResolutionError``
    when the chain is longer than *max_hops* or ends at a missing file.
    """
    text = os.fspath(path)
    if not text:
        raise ResolutionError("Unable to determine the launcher path (empty argv[0]).")

    base = os.fspath(cwd) if cwd is not None else os.getcwd()
    current = os.path.join(base, _collapse_double_slash(text))

    hops = 0
    while os.path.islink(current):
        if hops >= max_hops:
            raise ResolutionError(f"Too many levels of symbolic links while resolving {text!r}.")
        try:
            target = os.readlink(current)
        except OSError as exc:
            raise ResolutionError(f"Unable to read symbolic link {current!r}: {exc}") from exc
        current = os.path.join(os.path.dirname(current), _collapse_double_slash(target))
        hops += 1

    if not os.path.isfile(current):
        raise ResolutionError(f"Launcher file {current!r} does not exist.")

    directory = os.path.realpath(os.path.dirname(current))
    resolved = Path(_collapse_double_slash(directory)) / os.path.basename(current)
    LOGGER.debug("resolved %s -> %s (%d hops)", text, resolved, hops)
    return resolved


def installation_root(launcher_path: Path, *, environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return ``HERALD_ROOT`` when set, otherwise the launcher's grandparent directory."""
    env = os.environ if environ is None else environ
    override = env.get("HERALD_ROOT", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return launcher_path.parent.parent
