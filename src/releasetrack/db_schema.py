"""Database schema for the releases store.

The table layout is shared with other tools that read the same
``releases.sqlite3`` file (build scripts, the ``sqlite3`` shell), so column
names, types and quoting must not change.
"""

from __future__ import annotations

RELEASES_TABLE = "releases"

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS "releases" (
    "release" VARCHAR(32) NOT NULL,
    "commit"  CHAR(40) NOT NULL,
    "branch"  VARCHAR(32) NOT NULL,
    "when"    DATETIME NOT NULL,
    "added"   DATETIME NOT NULL,
    "state"   VARCHAR(16) NOT NULL,
    "built"   DATETIME DEFAULT NULL,
    PRIMARY KEY ("release", "branch")
);
"""

RELEASE_COLUMNS = ("release", "commit", "branch", "when", "added", "state", "built")

CURRENT_SCHEMA_VERSION = 1
