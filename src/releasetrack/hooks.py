"""Build hook dispatch.

Separated from the CLI for testability. After tracking, every release still
in state NEW is handed to the repository's build hook, invoked as::

    <hook> <commit> <branch> <version>

and the hook's exit status is recorded against the release. Building is
optional: a repository without an executable hook just accumulates NEW rows
for some other process to pick up.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from releasetrack.core import Release, ReleaseDB
from releasetrack.db_base import STATE_SUCCESS, failed_state
from releasetrack.types import BuildOutcomeDict

logger = logging.getLogger(__name__)

# Recorded as the exit status when the hook could not be started at all.
LAUNCH_FAILURE_CODE = -1


@dataclass(frozen=True)
class BuildOutcome:
    release: Release
    state: str

    @property
    def succeeded(self) -> bool:
        return self.state == STATE_SUCCESS

    def to_dict(self) -> BuildOutcomeDict:
        return {
            "release": self.release.version,
            "branch": self.release.branch,
            "commit": self.release.commit,
            "state": self.state,
        }


def hook_is_runnable(hook_path: Path) -> bool:
    """True if *hook_path* is a regular file we may read and execute."""
    return hook_path.is_file() and os.access(hook_path, os.R_OK | os.X_OK)


def run_hook(hook_path: Path, release: Release, *, git_dir: Path | None = None) -> int:
    """Run the build hook for one release and return its exit status.

    Blocks until the hook exits. The hook inherits stdout/stderr so its
    output reaches whoever pushed. Returns LAUNCH_FAILURE_CODE if the
    process could not be started.
    """
    env = None
    cwd = None
    if git_dir is not None:
        env = {**os.environ, "GIT_DIR": str(git_dir)}
        cwd = str(git_dir)
    try:
        proc = subprocess.run(
            [str(hook_path), release.commit, release.branch, release.version],
            cwd=cwd,
            env=env,
            stdin=subprocess.DEVNULL,
            check=False,
        )
    except OSError as exc:
        logger.error(
            "failed to launch %s: %s",
            hook_path,
            exc,
            extra={"branch": release.branch, "release": release.version, "error": str(exc)},
        )
        return LAUNCH_FAILURE_CODE
    return proc.returncode


def dispatch_pending(db: ReleaseDB, hook_path: Path, *, git_dir: Path | None = None) -> list[BuildOutcome]:
    """Build every NEW release with *hook_path*, one at a time.

    Every release the hook is attempted for leaves state NEW, whether the
    hook succeeds, fails or cannot be launched. Returns the outcomes in
    dispatch order; an empty list if the hook is missing or not executable.
    """
    if not hook_is_runnable(hook_path):
        logger.debug("no runnable build hook at %s, not building", hook_path)
        return []

    outcomes: list[BuildOutcome] = []
    for release in db.pending_releases():
        logger.info(
            "will build '%s' for '%s' as '%s'",
            release.commit,
            release.branch,
            release.version,
            extra={"branch": release.branch, "release": release.version, "commit": release.commit},
        )
        code = run_hook(hook_path, release, git_dir=git_dir)
        state = STATE_SUCCESS if code == 0 else failed_state(code)
        try:
            updated = db.record_outcome(release.version, release.branch, state, commit=release.commit)
        except (KeyError, ValueError) as exc:
            # Another run replaced or built this release while the hook ran.
            logger.warning(
                "could not record build status for %s on %s: %s",
                release.version,
                release.branch,
                exc,
                extra={"branch": release.branch, "release": release.version, "error": str(exc)},
            )
            continue
        logger.info(
            "build status is: %s",
            state,
            extra={"branch": release.branch, "release": release.version, "commit": release.commit},
        )
        outcomes.append(BuildOutcome(release=updated, state=state))
    return outcomes
