# herald/cli.py: maintenance commands for an installation (`herald-admin …`)
from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn, Optional

import typer

from .cache import CacheDirectory
from .config import load_config
from .errors import HeraldError
from .launcher import Launcher
from .logging_config import get_log_path, setup_logging

LOGGER = logging.getLogger(__name__)

app = typer.Typer(
    add_completion=False,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Inspect and maintain the cached tool of a Herald installation.",
)

_ROOT_HELP = "Installation root (the directory holding bin/ and packages/)."


def _require_root(root: Optional[Path]) -> Path:
    if root is None:
        typer.secho("No installation root: pass --root or set HERALD_ROOT.", err=True, fg=typer.colors.RED)
        raise typer.Exit(2)
    return root.expanduser().resolve()


def _fail(exc: HeraldError) -> NoReturn:
    LOGGER.error("%s", exc.message)
    typer.secho(exc.render(), err=True, fg=typer.colors.RED)
    raise typer.Exit(exc.exit_code)


@app.callback()
def _main() -> None:
    setup_logging()


@app.command()
def status(
    root: Optional[Path] = typer.Option(None, "--root", envvar="HERALD_ROOT", help=_ROOT_HELP),
) -> None:
    """Report whether the cached tool is fresh; exit 1 when it is stale."""
    launcher = Launcher([], root=_require_root(root))
    try:
        report = launcher.prepare().check()
    except HeraldError as exc:
        _fail(exc)

    assert launcher.cache is not None
    typer.echo(f"revision: {report.revision}")
    typer.echo(f"artifact: {launcher.cache.artifact}")
    typer.echo(f"stamp:    {launcher.cache.read_stamp() or '-'}")
    if report.fresh:
        typer.secho("fresh", fg=typer.colors.GREEN)
        return
    typer.secho("stale: " + ", ".join(report.reasons), fg=typer.colors.YELLOW)
    raise typer.Exit(1)


@app.command()
def rebuild(
    root: Optional[Path] = typer.Option(None, "--root", envvar="HERALD_ROOT", help=_ROOT_HELP),
    force: bool = typer.Option(False, "--force", "-f", help="Rebuild even when the cache is fresh"),
) -> None:
    """Rebuild the cached tool under the installation lock."""
    launcher = Launcher([], root=_require_root(root))
    try:
        rebuilt = launcher.ensure_fresh(force=force)
    except HeraldError as exc:
        _fail(exc)
    typer.echo("rebuilt" if rebuilt else "already up to date")


@app.command()
def paths(
    root: Optional[Path] = typer.Option(None, "--root", envvar="HERALD_ROOT", help=_ROOT_HELP),
) -> None:
    """Print the installation layout as resolved from config and environment."""
    try:
        config = load_config(_require_root(root))
    except HeraldError as exc:
        _fail(exc)
    cache = CacheDirectory.from_config(config)
    rows = [
        ("root", config.root),
        ("cache", cache.path),
        ("artifact", cache.artifact),
        ("stamp", cache.stamp),
        ("lock", cache.lock_scope),
        ("manifest", config.manifest),
        ("lockfile", config.lock_file),
        ("package cache", config.package_cache_dir),
        ("log", get_log_path()),
    ]
    width = max(len(name) for name, _ in rows)
    for name, value in rows:
        typer.echo(f"{name.ljust(width)}  {value}")


if __name__ == "__main__":  # pragma: no cover
    app()
