"""releasetrack: record releases from git branches and build them from a repository hook."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("releasetrack")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from releasetrack.core import Release, ReleaseDB

__all__ = ["Release", "ReleaseDB", "__version__"]
