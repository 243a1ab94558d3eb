"""TypedDict shapes returned by ``to_dict()`` helpers and the CLI ``--json`` output."""

from __future__ import annotations

from typing import TypedDict


class ReleaseDict(TypedDict):
    release: str
    branch: str
    commit: str
    when: str
    added: str
    state: str
    built: str | None


class TrackSummary(TypedDict):
    """Counters accumulated over one tracking run."""

    branches: int
    skipped: int
    failed: int
    inserted: int
    replaced: int
    unchanged: int


class BuildOutcomeDict(TypedDict):
    release: str
    branch: str
    commit: str
    state: str
