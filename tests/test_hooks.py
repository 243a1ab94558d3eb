"""Tests for build hook dispatch."""

from __future__ import annotations

import logging
import stat
from datetime import UTC, datetime
from pathlib import Path

import pytest

from releasetrack.core import Release, ReleaseDB
from releasetrack.hooks import LAUNCH_FAILURE_CODE, BuildOutcome, dispatch_pending, hook_is_runnable, run_hook

WHEN = datetime(2024, 3, 5, 10, 20, 30, tzinfo=UTC)
C1 = "1" * 40
C2 = "2" * 40


def _write_hook(path: Path, body: str) -> Path:
    path.write_text(f"#!/bin/sh\n{body}\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


@pytest.fixture
def recording_hook(tmp_path: Path) -> Path:
    """Hook that appends its arguments to calls.txt; fails with 3 on branch ``broken``."""
    log = tmp_path / "calls.txt"
    return _write_hook(
        tmp_path / "build",
        f'echo "$1 $2 $3 $GIT_DIR" >> "{log}"\n'
        'case "$2" in\n'
        "  broken) exit 3 ;;\n"
        "esac\n"
        "exit 0",
    )


def _calls(tmp_path: Path) -> list[str]:
    log = tmp_path / "calls.txt"
    return log.read_text().splitlines() if log.exists() else []


class TestHookIsRunnable:
    def test_executable_file(self, tmp_path: Path) -> None:
        assert hook_is_runnable(_write_hook(tmp_path / "h", "exit 0"))

    def test_missing(self, tmp_path: Path) -> None:
        assert not hook_is_runnable(tmp_path / "absent")

    def test_not_executable(self, tmp_path: Path) -> None:
        hook = tmp_path / "h"
        hook.write_text("#!/bin/sh\nexit 0\n")
        hook.chmod(0o644)
        assert not hook_is_runnable(hook)

    def test_directory(self, tmp_path: Path) -> None:
        assert not hook_is_runnable(tmp_path)


class TestRunHook:
    def _release(self) -> Release:
        return Release(version="1.0", branch="master", commit=C1, when="2024-03-05 10:20:30", added="2024-03-05 10:21:00")

    def test_passes_commit_branch_version(self, tmp_path: Path, recording_hook: Path) -> None:
        assert run_hook(recording_hook, self._release(), git_dir=tmp_path) == 0
        assert _calls(tmp_path) == [f"{C1} master 1.0 {tmp_path}"]

    def test_returns_exit_status(self, tmp_path: Path) -> None:
        hook = _write_hook(tmp_path / "h", "exit 42")
        assert run_hook(hook, self._release()) == 42

    def test_launch_failure(self, tmp_path: Path) -> None:
        # Executable bit set, but no interpreter line and not a binary.
        hook = tmp_path / "h"
        hook.write_bytes(b"\x00\x01\x02")
        hook.chmod(0o755)
        assert run_hook(hook, self._release()) == LAUNCH_FAILURE_CODE

    def test_runs_in_git_dir(self, tmp_path: Path) -> None:
        out = tmp_path / "cwd.txt"
        hook = _write_hook(tmp_path / "h", f'pwd > "{out}"')
        git_dir = tmp_path / "pkg.git"
        git_dir.mkdir()
        run_hook(hook, self._release(), git_dir=git_dir)
        assert Path(out.read_text().strip()).resolve() == git_dir.resolve()


class TestDispatchPending:
    def test_builds_every_new_release_in_order(self, tmp_path: Path, db: ReleaseDB, recording_hook: Path) -> None:
        db.upsert_release("1.0", "master", C1, WHEN)
        db.upsert_release("1.1", "stable", C2, WHEN)
        outcomes = dispatch_pending(db, recording_hook, git_dir=tmp_path)
        assert [(o.release.version, o.state) for o in outcomes] == [("1.0", "SUCCESS"), ("1.1", "SUCCESS")]
        assert _calls(tmp_path) == [f"{C1} master 1.0 {tmp_path}", f"{C2} stable 1.1 {tmp_path}"]

    def test_failure_recorded_with_code(self, db: ReleaseDB, recording_hook: Path) -> None:
        db.upsert_release("1.0", "broken", C1, WHEN)
        (outcome,) = dispatch_pending(db, recording_hook)
        assert outcome.state == "FAILED (3)"
        assert not outcome.succeeded
        release = db.get_release("1.0", "broken")
        assert release.state == "FAILED (3)"
        assert release.failure_code == 3
        assert release.built is None

    def test_launch_failure_recorded(self, tmp_path: Path, db: ReleaseDB) -> None:
        hook = tmp_path / "h"
        hook.write_bytes(b"\x00\x01\x02")
        hook.chmod(0o755)
        db.upsert_release("1.0", "master", C1, WHEN)
        (outcome,) = dispatch_pending(db, hook)
        assert outcome.state == "FAILED (-1)"

    def test_no_release_left_new(self, db: ReleaseDB, recording_hook: Path) -> None:
        db.upsert_release("1.0", "master", C1, WHEN)
        db.upsert_release("1.0", "broken", C2, WHEN)
        dispatch_pending(db, recording_hook)
        assert list(db.pending_releases()) == []
        assert {r.state for r in db.list_releases()} == {"SUCCESS", "FAILED (3)"}

    def test_built_releases_not_rebuilt(self, tmp_path: Path, db: ReleaseDB, recording_hook: Path) -> None:
        db.upsert_release("1.0", "master", C1, WHEN)
        dispatch_pending(db, recording_hook)
        assert dispatch_pending(db, recording_hook) == []
        assert len(_calls(tmp_path)) == 1

    def test_missing_hook_leaves_releases_new(self, tmp_path: Path, db: ReleaseDB) -> None:
        db.upsert_release("1.0", "master", C1, WHEN)
        assert dispatch_pending(db, tmp_path / "no-such-hook") == []
        assert db.get_release("1.0", "master").is_pending

    def test_non_executable_hook_is_ignored(self, tmp_path: Path, db: ReleaseDB) -> None:
        hook = tmp_path / "h"
        hook.write_text("#!/bin/sh\nexit 0\n")
        hook.chmod(0o644)
        db.upsert_release("1.0", "master", C1, WHEN)
        assert dispatch_pending(db, hook) == []
        assert db.get_release("1.0", "master").state == "NEW"

    def test_release_built_elsewhere_during_build(
        self, db: ReleaseDB, recording_hook: Path, caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        db.upsert_release("1.0", "master", C1, WHEN)
        db.upsert_release("1.1", "master", C2, WHEN)

        def racing_hook(hook_path: Path, release: Release, *, git_dir: Path | None = None) -> int:
            # A concurrent run finished this release first.
            if release.version == "1.0":
                db.record_outcome("1.0", "master", "FAILED (1)")
            return 0

        monkeypatch.setattr("releasetrack.hooks.run_hook", racing_hook)
        with caplog.at_level(logging.WARNING, logger="releasetrack"):
            outcomes = dispatch_pending(db, recording_hook)
        assert [o.release.version for o in outcomes] == ["1.1"]
        assert "could not record build status for 1.0 on master" in caplog.text
        assert db.get_release("1.0", "master").state == "FAILED (1)"

    def test_release_replaced_during_build(
        self, db: ReleaseDB, recording_hook: Path, caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        db.upsert_release("1.0", "stable", C1, WHEN)

        def racing_hook(hook_path: Path, release: Release, *, git_dir: Path | None = None) -> int:
            # A concurrent run moved the tag to another commit.
            with ReleaseDB(db.db_path) as other:
                other.upsert_release("1.0", "stable", C2, WHEN)
            return 0

        monkeypatch.setattr("releasetrack.hooks.run_hook", racing_hook)
        with caplog.at_level(logging.WARNING, logger="releasetrack"):
            outcomes = dispatch_pending(db, recording_hook)
        assert outcomes == []
        assert "could not record build status for 1.0 on stable" in caplog.text
        release = db.get_release("1.0", "stable")
        assert release.commit == C2
        assert release.state == "NEW"

    def test_logs_build_progress(self, db: ReleaseDB, recording_hook: Path, caplog: pytest.LogCaptureFixture) -> None:
        db.upsert_release("1.0", "master", C1, WHEN)
        with caplog.at_level(logging.INFO, logger="releasetrack"):
            dispatch_pending(db, recording_hook)
        assert f"will build '{C1}' for 'master' as '1.0'" in caplog.text
        assert "build status is: SUCCESS" in caplog.text


class TestBuildOutcome:
    def test_to_dict(self) -> None:
        release = Release(version="1.0", branch="master", commit=C1, when="w", added="a", state="SUCCESS")
        outcome = BuildOutcome(release=release, state="SUCCESS")
        assert outcome.succeeded
        assert outcome.to_dict() == {"release": "1.0", "branch": "master", "commit": C1, "state": "SUCCESS"}
