"""Repository-level settings, read from git configuration.

Per-branch tracking is configured the same way as any other git setting::

    [release-branch "master"]
        track = tip

    [release-branch "stable"]
        track = tag

Optional repository-wide keys:

    ``release.hook``      build hook to run for each new release
                          (default ``$GIT_DIR/hooks/release``)
    ``release.database``  release store path (default ``$GIT_DIR/releases.sqlite3``)
    ``package.name``      name of the package the repository builds
                          (default: the repository directory name)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from releasetrack.core import DB_FILENAME
from releasetrack.logging import LOG_FILENAME

if TYPE_CHECKING:
    from releasetrack.git import GitRepository

logger = logging.getLogger(__name__)

HOOK_RELATIVE_PATH = Path("hooks") / "release"


@dataclass
class TrackerConfig:
    git_dir: Path
    db_path: Path
    hook_path: Path
    package_name: str
    log_path: Path


def tracking_key(branch: str) -> str:
    """The configuration key holding *branch*'s tracking mode."""
    return f"release-branch.{branch}.track"


def default_package_name(git_dir: Path) -> str:
    """Derive a package name from the repository location.

    ``/srv/git/widget.git`` and ``/home/me/widget/.git`` both give ``widget``.
    """
    path = git_dir.parent if git_dir.name == ".git" else git_dir
    name = path.name
    if len(name) > 4 and name.endswith(".git"):
        name = name[:-4]
    return name


def _resolve(git_dir: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else git_dir / path


def load_config(repo: GitRepository, *, hook: Path | None = None, db_path: Path | None = None) -> TrackerConfig:
    """Build the effective configuration for *repo*.

    Explicit arguments take precedence over git configuration, which takes
    precedence over the defaults inside the git directory. A relative
    explicit *hook* is taken relative to the current directory.
    """
    git_dir = repo.git_dir
    if hook is not None:
        # Hooks run with the git dir as working directory.
        hook = hook.expanduser().absolute()
    else:
        configured = repo.config_get("release.hook")
        hook = _resolve(git_dir, configured) if configured else git_dir / HOOK_RELATIVE_PATH
    if db_path is None:
        configured = repo.config_get("release.database")
        db_path = _resolve(git_dir, configured) if configured else git_dir / DB_FILENAME
    package_name = repo.config_get("package.name") or default_package_name(git_dir)
    config = TrackerConfig(
        git_dir=git_dir,
        db_path=db_path,
        hook_path=hook,
        package_name=package_name,
        log_path=git_dir / LOG_FILENAME,
    )
    logger.debug("configuration for %s: %s", package_name, config)
    return config
