"""Enables running the CLI via: python -m deep_researcher.cli"""

from deep_researcher.cli.main import cli

if __name__ == "__main__":
    cli()
