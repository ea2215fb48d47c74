"""
Version-control prerequisites and the current source revision.

The stamp file records the revision the cached artifact was built from, so a
revision that cannot be read means freshness cannot be decided at all.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from .errors import PrerequisiteError, UnknownRevisionError

__all__ = ["GIT", "check_prerequisites", "current_revision"]

LOGGER = logging.getLogger(__name__)

GIT = "git"

_MISSING_GIT = "Unable to find git in your PATH."
_MISSING_GIT_HELP = (
    "       Herald needs git to decide whether its cached tool is up to date.\n"
    "       Install git and make sure it is on PATH, then run the command again."
)
_NOT_A_CHECKOUT = "The Herald directory {root} is not a clone of the project repository."
_NOT_A_CHECKOUT_HELP = (
    "       The launcher requires git in order to operate properly;\n"
    "       reinstall it with 'git clone', or point HERALD_ROOT at a checkout."
)


def check_prerequisites(root: Path, *, git: Optional[str] = None) -> str:
    """
    Verify git is reachable and *root* is a git checkout.

    Returns the git executable path. Raises ``PrerequisiteError`` otherwise.
    """
    exe = git or shutil.which(GIT)
    if not exe:
        raise PrerequisiteError(_MISSING_GIT, remediation=_MISSING_GIT_HELP)
    if not (root / ".git").exists():
        raise PrerequisiteError(_NOT_A_CHECKOUT.format(root=root), remediation=_NOT_A_CHECKOUT_HELP)
    return exe


def current_revision(root: Path, *, git: str = GIT) -> str:
    """Return ``git rev-parse HEAD`` for *root*."""
    try:
        cp = subprocess.run(
            [git, "rev-parse", "HEAD"],
            cwd=str(root),
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
        )
    except OSError as exc:
        raise UnknownRevisionError(f"Unable to run git in {root}: {exc}") from exc

    revision = cp.stdout.strip()
    if cp.returncode != 0 or not revision:
        detail = cp.stderr.strip() or f"exit code {cp.returncode}"
        LOGGER.error("git rev-parse HEAD failed in %s: %s", root, detail)
        raise UnknownRevisionError(f"Unable to determine the current revision of {root} ({detail}).")
    return revision
