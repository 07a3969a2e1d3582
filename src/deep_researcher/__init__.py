"""Deep Researcher - multi-phase web research pipeline with an MCP server."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("deep-researcher")
except PackageNotFoundError:
    # Package not installed (development mode without editable install)
    __version__ = "0.1.0"

from deep_researcher.server import create_server, main

__all__ = ["__version__", "create_server", "main"]
