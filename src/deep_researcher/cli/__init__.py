"""deep-researcher command-line interface."""

from deep_researcher.cli.main import cli
from deep_researcher.cli.output import emit, emit_error, emit_success

__all__ = [
    "cli",
    "emit",
    "emit_error",
    "emit_success",
]
