"""Version numbers synthesized for ``tip``-tracked branches."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

SHORT_OID_LENGTH = 8
_TIP_FORMAT = "%y%m.%d%H.%M%S-git"


def git_time(epoch: int, offset_minutes: int = 0) -> datetime:
    """Convert git's (seconds since epoch, UTC offset in minutes) pair to an aware datetime.

    The result carries the committer's own zone; ``.astimezone(UTC)`` gives
    the same instant in UTC.
    """
    return datetime.fromtimestamp(epoch, timezone(timedelta(minutes=offset_minutes)))


def tip_version(when: datetime, oid: str) -> str:
    """Build the version for a branch tip: ``YYMM.DDHH.MMSS-git<short oid>``.

    *when* is normalised to UTC first, so the same commit always yields the
    same version regardless of the committer's zone. Naive datetimes are
    taken to be UTC already.
    """
    if when.tzinfo is not None:
        when = when.astimezone(UTC)
    return when.strftime(_TIP_FORMAT) + oid[:SHORT_OID_LENGTH]
