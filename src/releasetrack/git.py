"""Read-only access to a git repository through the ``git`` command line.

Every command runs with an explicit ``--git-dir`` so that the environment a
hook is invoked with (``GIT_DIR=.``, a bare repository as cwd) cannot change
which repository is read once it has been opened.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from collections import defaultdict
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from releasetrack.versions import git_time

logger = logging.getLogger(__name__)

_GIT_TIMEOUT_SECONDS = 60.0
_TAGS_PREFIX = "refs/tags/"
_HEADS_PREFIX = "refs/heads/"
_COMMITTER_RE = re.compile(r"^(?P<name>.*?) <(?P<email>[^>]*)> (?P<time>-?\d+) (?P<offset>[+-]\d{4})$")

__all__ = [
    "Branch",
    "Commit",
    "GitError",
    "GitRepository",
    "Tag",
    "open_repository",
]


class GitError(Exception):
    """A git command failed or produced output that could not be parsed."""

    def __init__(self, command: str, message: str, returncode: int = 1) -> None:
        self.command = command
        self.message = message
        self.returncode = returncode
        super().__init__(f"git {command}: {message}")


@dataclass(frozen=True, slots=True)
class Branch:
    name: str
    target: str


@dataclass(frozen=True, slots=True)
class Tag:
    """A tag, peeled to the object it ultimately names.

    ``name`` is the full ref name (``refs/tags/...``).
    """

    name: str
    target: str

    @property
    def short_name(self) -> str:
        return self.name.removeprefix(_TAGS_PREFIX)


@dataclass(frozen=True, slots=True)
class Commit:
    oid: str
    committer_name: str
    committer_email: str
    commit_time: int
    offset_minutes: int
    message: str = ""

    @property
    def when(self) -> datetime:
        """Committer time in the committer's own zone."""
        return git_time(self.commit_time, self.offset_minutes)

    @property
    def short_oid(self) -> str:
        return self.oid[:8]


def _parse_offset(offset: str) -> int:
    sign = -1 if offset[0] == "-" else 1
    return sign * (int(offset[1:3]) * 60 + int(offset[3:5]))


def parse_commit(oid: str, raw: str) -> Commit:
    """Parse the raw body printed by ``git cat-file commit``."""
    headers, _, message = raw.partition("\n\n")
    for line in headers.splitlines():
        if not line.startswith("committer "):
            continue
        m = _COMMITTER_RE.match(line[len("committer ") :])
        if m is None:
            break
        return Commit(
            oid=oid,
            committer_name=m["name"],
            committer_email=m["email"],
            commit_time=int(m["time"]),
            offset_minutes=_parse_offset(m["offset"]),
            message=message,
        )
    raise GitError("cat-file", f"commit {oid} has no usable committer line")


class GitRepository:
    """A git repository identified by its (absolute) git directory."""

    def __init__(self, git_dir: Path) -> None:
        self.git_dir = git_dir

    def __repr__(self) -> str:
        return f"GitRepository({str(self.git_dir)!r})"

    # -- References ----------------------------------------------------------

    def branches(self) -> list[Branch]:
        """Local branches and the commit each one points at."""
        out = self._run(["for-each-ref", "--format=%(refname)\t%(objectname)", _HEADS_PREFIX])
        result: list[Branch] = []
        for line in out.splitlines():
            refname, _, target = line.partition("\t")
            result.append(Branch(name=refname.removeprefix(_HEADS_PREFIX), target=target))
        return result

    def tags(self) -> list[Tag]:
        """All tags; annotated tags are peeled to their target object."""
        out = self._run(["for-each-ref", "--format=%(refname)\t%(objectname)\t%(*objectname)", _TAGS_PREFIX])
        result: list[Tag] = []
        for line in out.splitlines():
            refname, _, rest = line.partition("\t")
            direct, _, peeled = rest.partition("\t")
            result.append(Tag(name=refname, target=peeled or direct))
        return result

    def tags_by_target(self) -> dict[str, list[Tag]]:
        """Index tags by the commit they point at."""
        index: dict[str, list[Tag]] = defaultdict(list)
        for tag in self.tags():
            index[tag.target].append(tag)
        return dict(index)

    # -- Objects -------------------------------------------------------------

    def get_commit(self, oid: str) -> Commit:
        """Read one commit. Raises GitError if *oid* is not a readable commit."""
        raw = self._run(["cat-file", "commit", oid])
        return parse_commit(oid, raw)

    def walk(self, tip: str) -> Iterator[str]:
        """Yield every commit reachable from *tip*, each exactly once.

        Order is ``git rev-list --topo-order``: no parent is shown before all
        of its children. The walk streams from a child process and is
        finite; a fresh call starts a fresh walk. Raises GitError once the
        output is exhausted if git reported a failure (unknown tip, missing
        objects).
        """
        cmd = self._command(["rev-list", "--topo-order", tip])
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            raise GitError("rev-list", str(exc), -1) from exc
        assert proc.stdout is not None
        assert proc.stderr is not None
        finished = False
        try:
            for line in proc.stdout:
                oid = line.strip()
                if oid:
                    yield oid
            stderr = proc.stderr.read()
            returncode = proc.wait()
            finished = True
            if returncode != 0:
                raise GitError("rev-list", stderr.strip() or f"cannot walk history from {tip}", returncode)
        finally:
            if not finished:
                proc.kill()
                proc.wait()
            proc.stdout.close()
            proc.stderr.close()

    # -- Configuration -------------------------------------------------------

    def config_get(self, key: str) -> str | None:
        """Look up a configuration value; None if it is not set."""
        cmd = self._command(["config", "--get", key])
        proc = self._execute(cmd, "config")
        if proc.returncode == 1:
            return None
        if proc.returncode != 0:
            raise GitError("config", proc.stderr.strip() or f"cannot read {key}", proc.returncode)
        return proc.stdout.rstrip("\n")

    # -- Internals -----------------------------------------------------------

    def _command(self, args: list[str]) -> list[str]:
        return ["git", f"--git-dir={self.git_dir}", *args]

    def _execute(self, cmd: list[str], name: str) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=_GIT_TIMEOUT_SECONDS,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitError(name, f"timed out after {_GIT_TIMEOUT_SECONDS:.0f}s", -1) from exc
        except OSError as exc:
            raise GitError(name, str(exc), -1) from exc

    def _run(self, args: list[str]) -> str:
        proc = self._execute(self._command(args), args[0])
        if proc.returncode != 0:
            raise GitError(args[0], proc.stderr.strip() or f"{args[0]} failed", proc.returncode)
        return proc.stdout


def open_repository(path: Path | None = None) -> GitRepository:
    """Locate and open a repository.

    With *path*, that directory (a working tree, a bare repository, or a
    ``.git`` directory) is opened. Without it, git's own rules apply:
    ``$GIT_DIR`` if set, otherwise discovery upwards from the working
    directory. Raises GitError if no repository is found.
    """
    cmd = ["git"]
    env = None
    if path is not None:
        cmd += ["-C", str(path)]
        # An explicit path wins over the repository the environment names.
        env = {k: v for k, v in os.environ.items() if k not in ("GIT_DIR", "GIT_WORK_TREE")}
    cmd += ["rev-parse", "--absolute-git-dir"]
    try:
        proc = subprocess.run(
            cmd,
            env=env,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=_GIT_TIMEOUT_SECONDS,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise GitError("rev-parse", str(exc), -1) from exc
    if proc.returncode != 0:
        where = str(path) if path is not None else "the current directory"
        raise GitError("rev-parse", proc.stderr.strip() or f"no repository found at {where}", proc.returncode)
    git_dir = Path(proc.stdout.strip()).resolve()
    logger.debug("opened repository at %s", git_dir)
    return GitRepository(git_dir)
