"""Name validation for release tags and release-tracked branches.

Pure functions with no git, SQLite or Click dependencies.
"""

from __future__ import annotations

import re

MAX_VERSION_LENGTH = 32
MAX_BRANCH_LENGTH = 32

_TAG_NAMESPACE = "refs/tags/"
_LITERAL_PREFIXES = ("debian/", "release/")
# <major>.<minor>... where <major> is all digits and <minor> starts with one.
# ASCII only: str.isdigit() would also accept e.g. Arabic-Indic digits.
_VERSION_RE = re.compile(r"[0-9]+\.[0-9][A-Za-z0-9\-_.~@]*")
_BRANCH_RE = re.compile(r"[A-Za-z0-9\-_]+")


def check_release_tag(tag_name: str) -> str | None:
    """Return the version number a release tag names, or None.

    Accepts ``1.2``, ``v1.2``, ``R1.2``, ``debian/1.2`` and ``release/1.2``
    (optionally under ``refs/tags/``). The version must start with
    ``<digits>.<digit>``, may continue with letters, digits and ``-_.~@``,
    and may be at most 32 characters long.
    """
    name = tag_name.removeprefix(_TAG_NAMESPACE)
    # "release/" must be tried before the single-letter "r". Earlier track-release
    # versions checked "r" first and so rejected "release/1.0".
    for prefix in _LITERAL_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix) :]
            break
    else:
        if name[:1].lower() in ("v", "r"):
            name = name[1:]
    if not name:
        return None
    if _VERSION_RE.fullmatch(name) is None:
        return None
    if len(name) > MAX_VERSION_LENGTH:
        return None
    return name


def check_release_branch(branch_name: str) -> str | None:
    """Return *branch_name* if it may be release-tracked, else None.

    Branch names are stored alongside each release, so they are limited to
    letters, digits, hyphens and underscores, at most 32 characters.
    """
    if _BRANCH_RE.fullmatch(branch_name) is None:
        return None
    if len(branch_name) > MAX_BRANCH_LENGTH:
        return None
    return branch_name
