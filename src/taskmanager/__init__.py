"""TaskManager - JSON task tracker with AI-assisted task generation."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("taskmanager-cli")
except PackageNotFoundError:
    # Package not installed (development mode without editable install)
    __version__ = "0.1.0"

__all__ = ["__version__"]
