"""Per-branch release tracking.

Each local branch may be configured with a tracking mode:

``tip``
    every commit the branch tip is seen at becomes a release, versioned
    ``YYMM.DDHH.MMSS-git<short oid>`` from its committer time;
``tag``
    the branch's whole history is searched for commits carrying tags that
    look like version numbers (``v1.2``, ``debian/1.2-3``, ...), each of
    which becomes a release.

Branches without a mode are ignored. Problems with one branch (bad name,
unknown mode, unreadable history) are logged and never stop the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, assert_never

from releasetrack.config import tracking_key
from releasetrack.core import ReleaseDB
from releasetrack.db_base import UpsertResult
from releasetrack.git import Branch, GitError, GitRepository, Tag
from releasetrack.scanner import scan_branch
from releasetrack.types import TrackSummary
from releasetrack.validation import check_release_branch
from releasetrack.versions import tip_version

logger = logging.getLogger(__name__)

TrackMode = Literal["absent", "tip", "tag", "unsupported"]


@dataclass(frozen=True)
class Tracking:
    """A branch's tracking mode; ``value`` keeps the raw configured string."""

    mode: TrackMode
    value: str | None = None


def parse_tracking(value: str | None) -> Tracking:
    if value is None:
        return Tracking("absent")
    if value == "tip":
        return Tracking("tip", value)
    if value == "tag":
        return Tracking("tag", value)
    return Tracking("unsupported", value)


def _empty_summary() -> TrackSummary:
    return {"branches": 0, "skipped": 0, "failed": 0, "inserted": 0, "replaced": 0, "unchanged": 0}


class BranchTracker:
    """Finds the releases on each configured branch and records them in the store."""

    def __init__(self, repo: GitRepository, db: ReleaseDB) -> None:
        self.repo = repo
        self.db = db

    def tracking_for(self, branch: str) -> Tracking:
        return parse_tracking(self.repo.config_get(tracking_key(branch)))

    def track(
        self,
        branch: str,
        tip: str,
        *,
        tags: dict[str, list[Tag]] | None = None,
    ) -> list[UpsertResult] | None:
        """Record the releases on one branch.

        Returns the upsert result for every release found, or None if the
        branch was not tracked (invalid name, no or unsupported mode).
        Raises GitError if the branch's commits cannot be read. *tags* is
        an optional tag index shared across branches of one run.
        """
        if check_release_branch(branch) is None:
            logger.warning(
                "ignoring branch '%s' because its name is not valid for release-tracking",
                branch,
                extra={"branch": branch},
            )
            return None

        tracking = self.tracking_for(branch)
        match tracking.mode:
            case "absent":
                logger.debug("branch '%s' is not release-tracked", branch)
                return None
            case "unsupported":
                logger.warning(
                    "tracking mode '%s' (for branch '%s') is not supported",
                    tracking.value,
                    branch,
                    extra={"branch": branch},
                )
                return None
            case "tip":
                return [self._track_tip(branch, tip)]
            case "tag":
                return self._track_tags(branch, tip, tags)
            case _:
                assert_never(tracking.mode)

    def track_all(self, branches: list[Branch] | None = None) -> TrackSummary:
        """Track every local branch (or *branches*), isolating per-branch failures."""
        summary = _empty_summary()
        if branches is None:
            branches = self.repo.branches()
        tags = self.repo.tags_by_target() if branches else {}
        for branch in branches:
            summary["branches"] += 1
            try:
                results = self.track(branch.name, branch.target, tags=tags)
            except GitError as exc:
                logger.error(
                    "failed to scan branch '%s': %s",
                    branch.name,
                    exc.message,
                    extra={"branch": branch.name, "commit": branch.target, "error": exc.message},
                )
                summary["failed"] += 1
                continue
            if results is None:
                summary["skipped"] += 1
                continue
            for result in results:
                match result:
                    case "inserted":
                        summary["inserted"] += 1
                    case "replaced":
                        summary["replaced"] += 1
                    case "skipped-identical":
                        summary["unchanged"] += 1
        return summary

    # -- Modes ---------------------------------------------------------------

    def _track_tip(self, branch: str, tip: str) -> UpsertResult:
        try:
            commit = self.repo.get_commit(tip)
        except GitError as exc:
            msg = f"failed to locate commit {tip} as tip of branch '{branch}'"
            raise GitError(exc.command, f"{msg}: {exc.message}", exc.returncode) from exc
        version = tip_version(commit.when, commit.oid)
        return self._record(version, branch, commit.oid, commit.when)

    def _track_tags(self, branch: str, tip: str, tags: dict[str, list[Tag]] | None) -> list[UpsertResult]:
        return [
            self._record(found.version, branch, found.commit, found.when)
            for found in scan_branch(self.repo, branch, tip, tags=tags)
        ]

    def _record(self, version: str, branch: str, oid: str, when: datetime) -> UpsertResult:
        result = self.db.upsert_release(version, branch, oid, when)
        if result != "skipped-identical":
            logger.info(
                "added %s as %s on %s",
                oid[:8],
                version,
                branch,
                extra={"branch": branch, "release": version, "commit": oid},
            )
        else:
            logger.debug("%s on %s already recorded at %s", version, branch, oid[:8])
        return result
