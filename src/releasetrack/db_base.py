"""Shared timestamp helpers and constants for the release store."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Literal

# Stored layout of every DATETIME column.
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

STATE_NEW = "NEW"
STATE_SUCCESS = "SUCCESS"
_FAILED_RE = re.compile(r"^FAILED \((-?\d+)\)$")

UpsertResult = Literal["inserted", "skipped-identical", "replaced"]


def format_timestamp(when: datetime) -> str:
    """Render *when* in UTC using the stored layout.

    Naive datetimes are taken to already be UTC.
    """
    if when.tzinfo is not None:
        when = when.astimezone(UTC)
    return when.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=UTC)


def now_timestamp() -> str:
    return format_timestamp(datetime.now(UTC))


def failed_state(code: int) -> str:
    """Build the state string recorded for a failed build."""
    return f"FAILED ({code})"


def parse_failed_state(state: str) -> int | None:
    """Return the exit code from a ``FAILED (<code>)`` state, else None."""
    m = _FAILED_RE.match(state)
    return int(m.group(1)) if m else None


def is_terminal_state(state: str) -> bool:
    return state == STATE_SUCCESS or parse_failed_state(state) is not None
