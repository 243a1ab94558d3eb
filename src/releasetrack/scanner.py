"""Discover tagged releases in a branch's history."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime

from releasetrack.git import GitError, GitRepository, Tag
from releasetrack.validation import check_release_tag

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TagRelease:
    """A release-looking tag found on a commit of the scanned branch."""

    version: str
    commit: str
    when: datetime
    tag: str


def scan_branch(
    repo: GitRepository,
    branch: str,
    tip: str,
    *,
    tags: dict[str, list[Tag]] | None = None,
) -> Iterator[TagRelease]:
    """Yield a TagRelease for every release tag in *branch*'s ancestry.

    The whole history reachable from *tip* is walked; each commit's tags are
    matched independently, so one commit may yield several releases. *tags*
    (target commit → tags) may be passed in to share one index between
    branches; otherwise it is read fresh.

    A tag whose commit cannot be read is logged and skipped. A failure of
    the walk itself raises GitError.
    """
    if tags is None:
        tags = repo.tags_by_target()
    if not tags:
        return
    for oid in repo.walk(tip):
        candidates = tags.get(oid)
        if not candidates:
            continue
        matched: list[tuple[str, Tag]] = []
        for tag in candidates:
            version = check_release_tag(tag.name)
            if version is not None:
                matched.append((version, tag))
        if not matched:
            continue
        try:
            commit = repo.get_commit(oid)
        except GitError as exc:
            for _, tag in matched:
                logger.error(
                    "failed to locate commit for tag '%s' on branch '%s': %s",
                    tag.short_name,
                    branch,
                    exc.message,
                    extra={"branch": branch, "commit": oid, "error": exc.message},
                )
            continue
        for version, tag in matched:
            yield TagRelease(version=version, commit=oid, when=commit.when, tag=tag.short_name)
