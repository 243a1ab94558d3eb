"""Core database operations for the release store.

Single source of truth for all SQLite operations. The tracker writes new
releases here and the build dispatcher reads pending ones back and records
their outcome. Concurrent runs share the file through WAL mode and
immediate write transactions.

Convention-based location: the store lives at ``$GIT_DIR/releases.sqlite3``
so that any SQLite client (including the ``sqlite3`` shell) can inspect it.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from releasetrack.db_base import (
    STATE_NEW,
    STATE_SUCCESS,
    UpsertResult,
    format_timestamp,
    now_timestamp,
    parse_failed_state,
)
from releasetrack.db_schema import CURRENT_SCHEMA_VERSION, SCHEMA_SQL
from releasetrack.types import ReleaseDict

logger = logging.getLogger(__name__)

DB_FILENAME = "releases.sqlite3"

_MAX_NAME_LENGTH = 32
_OID_LENGTH = 40
# A concurrent writer can win the race between our SELECT and INSERT; each
# IntegrityError means "re-read and reconcile", but never loop forever.
_UPSERT_ATTEMPTS = 3


@dataclass
class Release:
    version: str
    branch: str
    commit: str
    when: str
    added: str
    state: str = STATE_NEW
    built: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.state == STATE_NEW

    @property
    def failure_code(self) -> int | None:
        return parse_failed_state(self.state)

    def to_dict(self) -> ReleaseDict:
        return {
            "release": self.version,
            "branch": self.branch,
            "commit": self.commit,
            "when": self.when,
            "added": self.added,
            "state": self.state,
            "built": self.built,
        }


def _build_release(row: sqlite3.Row) -> Release:
    return Release(
        version=row["release"],
        branch=row["branch"],
        commit=row["commit"],
        when=row["when"],
        added=row["added"],
        state=row["state"],
        built=row["built"],
    )


def _validate_release_key(version: str, branch: str, commit: str) -> None:
    if not version or len(version) > _MAX_NAME_LENGTH:
        msg = f"Release version must be 1-{_MAX_NAME_LENGTH} characters: {version!r}"
        raise ValueError(msg)
    if not branch or len(branch) > _MAX_NAME_LENGTH:
        msg = f"Branch name must be 1-{_MAX_NAME_LENGTH} characters: {branch!r}"
        raise ValueError(msg)
    if len(commit) != _OID_LENGTH:
        msg = f"Commit id must be {_OID_LENGTH} hex characters: {commit!r}"
        raise ValueError(msg)


# ---------------------------------------------------------------------------
# ReleaseDB
# ---------------------------------------------------------------------------


class ReleaseDB:
    """Direct SQLite operations on the ``releases`` table."""

    def __init__(self, db_path: str | Path, *, check_same_thread: bool = True) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread

    @classmethod
    def from_git_dir(cls, git_dir: Path) -> ReleaseDB:
        """Open (creating if needed) the store kept inside a repository's git dir."""
        db = cls(git_dir / DB_FILENAME)
        db.initialize()
        return db

    def __enter__(self) -> ReleaseDB:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level="DEFERRED",
                check_same_thread=self._check_same_thread,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def initialize(self) -> None:
        """Create the releases table if it is missing.

        Safe to call on every run. A store stamped by a newer schema version
        is refused rather than silently written to.
        """
        current_version = self.get_schema_version()
        if current_version > CURRENT_SCHEMA_VERSION:
            msg = (
                f"Release store schema v{current_version} is newer than this version "
                f"of releasetrack (expects v{CURRENT_SCHEMA_VERSION})."
            )
            raise ValueError(msg)
        self.conn.executescript(SCHEMA_SQL)
        if current_version < CURRENT_SCHEMA_VERSION:
            self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
        self.conn.commit()

    ensure_schema = initialize

    def get_schema_version(self) -> int:
        """Return the current schema version from PRAGMA user_version."""
        result: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -- Writes --------------------------------------------------------------

    def upsert_release(self, version: str, branch: str, commit: str, when: datetime) -> UpsertResult:
        """Record that *version* on *branch* corresponds to *commit*.

        Idempotent: an identical row is left alone. A row for the same
        (version, branch) on a different commit is deleted and inserted
        afresh, so ``added`` reflects the new commit and ``state`` is reset
        to NEW. The lookup, delete and insert run in one transaction.
        """
        _validate_release_key(version, branch, commit)
        when_str = format_timestamp(when)
        for _ in range(_UPSERT_ATTEMPTS - 1):
            try:
                return self._upsert_once(version, branch, commit, when_str)
            except sqlite3.IntegrityError:
                logger.debug("upsert of %s on %s raced with another writer, retrying", version, branch)
        return self._upsert_once(version, branch, commit, when_str)

    def _upsert_once(self, version: str, branch: str, commit: str, when: str) -> UpsertResult:
        conn = self.conn
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                'SELECT "commit" FROM "releases" WHERE "release" = ? AND "branch" = ?',
                (version, branch),
            ).fetchone()
            result: UpsertResult = "inserted"
            if row is not None:
                if row["commit"] == commit:
                    conn.rollback()
                    return "skipped-identical"
                conn.execute(
                    'DELETE FROM "releases" WHERE "release" = ? AND "branch" = ?',
                    (version, branch),
                )
                result = "replaced"
            conn.execute(
                'INSERT INTO "releases" ("release", "branch", "commit", "when", "added", "state") '
                "VALUES (?, ?, ?, ?, ?, ?)",
                (version, branch, commit, when, now_timestamp(), STATE_NEW),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        return result

    def record_outcome(self, version: str, branch: str, outcome: str, *, commit: str | None = None) -> Release:
        """Move a NEW release to its terminal build state.

        *outcome* must be ``SUCCESS`` or ``FAILED (<code>)``. Releases that
        have already been built cannot be moved again. With *commit*, the
        row must still point at that commit: a release replaced while it was
        being built keeps state NEW for the new commit.
        """
        if outcome != STATE_SUCCESS and parse_failed_state(outcome) is None:
            msg = f"Invalid build outcome: {outcome!r}"
            raise ValueError(msg)
        sql = 'UPDATE "releases" SET "state" = ? WHERE "release" = ? AND "branch" = ? AND "state" = ?'
        params = [outcome, version, branch, STATE_NEW]
        if commit is not None:
            sql += ' AND "commit" = ?'
            params.append(commit)
        try:
            cursor = self.conn.execute(sql, params)
            if cursor.rowcount == 0:
                current = self.conn.execute(
                    'SELECT "commit", "state" FROM "releases" WHERE "release" = ? AND "branch" = ?',
                    (version, branch),
                ).fetchone()
                if current is None:
                    msg = f"Release not found: {version} on {branch}"
                    raise KeyError(msg)
                if commit is not None and current["commit"] != commit:
                    msg = f"Cannot record outcome for {version} on {branch}: now at commit {current['commit'][:8]}, not {commit[:8]}"
                    raise ValueError(msg)
                msg = f"Cannot record outcome for {version} on {branch}: state is '{current['state']}', expected '{STATE_NEW}'"
                raise ValueError(msg)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_release(version, branch)

    # -- Reads ---------------------------------------------------------------

    def get_release(self, version: str, branch: str) -> Release:
        row = self.conn.execute(
            'SELECT * FROM "releases" WHERE "release" = ? AND "branch" = ?',
            (version, branch),
        ).fetchone()
        if row is None:
            msg = f"Release not found: {version} on {branch}"
            raise KeyError(msg)
        return _build_release(row)

    def list_releases(self, *, branch: str | None = None, state: str | None = None) -> list[Release]:
        """List releases, optionally filtered by branch and/or state, oldest first."""
        clauses: list[str] = []
        params: list[str] = []
        if branch is not None:
            clauses.append('"branch" = ?')
            params.append(branch)
        if state is not None:
            clauses.append('"state" = ?')
            params.append(state)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(f'SELECT * FROM "releases"{where} ORDER BY rowid', params).fetchall()
        return [_build_release(r) for r in rows]

    def pending_releases(self) -> Iterator[Release]:
        """Yield every release still waiting to be built.

        Rows are fetched up front so the caller can record outcomes while
        iterating.
        """
        yield from self.list_releases(state=STATE_NEW)
