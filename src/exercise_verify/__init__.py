"""exercise-verify - static verification engine for coding exercises."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("exercise-verify")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
