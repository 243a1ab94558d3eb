"""CLI for release tracking.

Intended to run from a repository hook (``post-receive``), where git sets
``GIT_DIR``:

    #!/bin/sh
    exec track-release

Usage:
    track-release                     # Repository from $GIT_DIR, or discovered from cwd
    track-release /srv/git/pkg.git    # Explicit repository
    track-release --no-build          # Record releases, do not run the build hook
    track-release --hook ./build.sh   # Use another build hook
    track-release --json              # Print a JSON summary of the run
"""

from __future__ import annotations

import json as json_mod
import sqlite3
import sys
from pathlib import Path
from typing import NoReturn

import click

from releasetrack import __version__
from releasetrack.config import TrackerConfig, load_config
from releasetrack.core import ReleaseDB
from releasetrack.git import GitError, GitRepository, open_repository
from releasetrack.hooks import BuildOutcome, dispatch_pending
from releasetrack.logging import PROG_NAME, setup_logging
from releasetrack.tracker import BranchTracker


def _fail(message: str) -> NoReturn:
    click.echo(f"{PROG_NAME}: {message}", err=True)
    sys.exit(1)


def _open(path: Path | None, hook: Path | None) -> tuple[GitRepository, TrackerConfig]:
    """Open the repository and read its configuration, exiting on failure."""
    try:
        repo = open_repository(path)
        config = load_config(repo, hook=hook)
    except GitError as exc:
        _fail(exc.message)
    return repo, config


def _open_db(config: TrackerConfig) -> ReleaseDB:
    db = ReleaseDB(config.db_path)
    try:
        db.initialize()
    except (sqlite3.Error, ValueError) as exc:
        db.close()
        _fail(f"{config.db_path}: {exc}")
    return db


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name=PROG_NAME)
@click.argument("path", required=False, type=click.Path(path_type=Path, file_okay=False))
@click.option(
    "--hook",
    type=click.Path(path_type=Path, dir_okay=False, resolve_path=True),
    default=None,
    help="Build hook to run for new releases (default: release.hook or $GIT_DIR/hooks/release)",
)
@click.option("--no-build", is_flag=True, help="Record releases without running the build hook")
@click.option("--verbose", "-v", is_flag=True, help="Also report branches and releases left unchanged")
@click.option("--json", "as_json", is_flag=True, help="Print a JSON summary of the run")
def cli(path: Path | None, hook: Path | None, no_build: bool, verbose: bool, as_json: bool) -> None:
    """Record releases from the branches of the repository at PATH and build new ones.

    PATH defaults to $GIT_DIR, then to the repository containing the current
    directory.
    """
    repo, config = _open(path, hook)

    try:
        setup_logging(config.git_dir, verbose=verbose)
    except OSError as exc:
        # A read-only git dir should not stop tracking; fall back to stderr only.
        setup_logging(None, verbose=verbose)
        click.echo(f"{PROG_NAME}: warning: cannot write {config.log_path}: {exc}", err=True)

    with _open_db(config) as db:
        outcomes: list[BuildOutcome] = []
        try:
            summary = BranchTracker(repo, db).track_all()
            if not no_build:
                outcomes = dispatch_pending(db, config.hook_path, git_dir=config.git_dir)
        except GitError as exc:
            _fail(exc.message)
        except sqlite3.Error as exc:
            _fail(f"{config.db_path}: {exc}")

    if as_json:
        click.echo(
            json_mod.dumps(
                {
                    "package": config.package_name,
                    "database": str(config.db_path),
                    "tracking": summary,
                    "builds": [o.to_dict() for o in outcomes],
                },
                indent=2,
            )
        )


if __name__ == "__main__":
    cli()
