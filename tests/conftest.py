"""Shared pytest fixtures for releasetrack tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from releasetrack.core import ReleaseDB
from tests._git_factory import FakeRepository, GitRepoBuilder


@pytest.fixture
def db(tmp_path: Path) -> Generator[ReleaseDB, None, None]:
    """Fresh ReleaseDB for each test."""
    d = ReleaseDB(tmp_path / "releases.sqlite3")
    d.initialize()
    yield d
    d.close()


@pytest.fixture
def fake_repo(tmp_path: Path) -> FakeRepository:
    return FakeRepository(tmp_path / "fake.git")


@pytest.fixture
def git_repo(tmp_path: Path) -> GitRepoBuilder:
    """A real, empty, non-bare repository (requires git)."""
    return GitRepoBuilder(tmp_path / "work")


@pytest.fixture
def bare_repo(tmp_path: Path) -> GitRepoBuilder:
    """A real, empty, bare repository (requires git)."""
    return GitRepoBuilder(tmp_path / "pkg.git", bare=True)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _reset_releasetrack_logger() -> Generator[None, None, None]:
    """Drop handlers installed by setup_logging so tests do not leak log files."""
    yield
    logger = logging.getLogger("releasetrack")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
