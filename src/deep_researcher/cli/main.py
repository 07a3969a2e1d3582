"""deep-researcher CLI entry point."""

import asyncio
import time
from typing import Optional

import click

from deep_researcher.config import ServerConfig, set_config
from deep_researcher.cli.output import emit_error, emit_success
from deep_researcher.core.research.errors import ResearchError
from deep_researcher.core.research.service import ResearchService


@click.group()
@click.option(
    "--config",
    "config_file",
    envvar="DEEP_RESEARCHER_CONFIG_FILE",
    type=click.Path(exists=False),
    help="Path to a deep-researcher TOML config file",
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str]) -> None:
    """Deep Researcher - multi-phase web research from the command line."""
    ctx.ensure_object(dict)
    config = ServerConfig.from_env(config_file)
    set_config(config)
    ctx.obj["config"] = config


@cli.command("run")
@click.argument("query")
@click.option("--json", "as_json", is_flag=True, help="Emit a JSON envelope instead of markdown")
@click.pass_context
def run_cmd(ctx: click.Context, query: str, as_json: bool) -> None:
    """Research QUERY unattended and print the markdown answer.

    Clarifying questions are skipped; results are served from the semantic
    cache when a similar query was answered recently.
    """
    config: ServerConfig = ctx.obj["config"]
    config.setup_logging()

    if not query.strip():
        emit_error(
            "Research query must not be empty",
            "VALIDATION_ERROR",
            error_type="validation",
            remediation="Pass a non-empty QUERY argument",
        )

    try:
        service = ResearchService.from_config(config)
    except ValueError as exc:
        emit_error(
            str(exc),
            "AI_NO_PROVIDER",
            error_type="unavailable",
            remediation="Set TAVILY_API_KEY and OPENAI_API_KEY",
        )

    start = time.perf_counter()
    try:
        markdown, cache_hit = asyncio.run(service.run(query))
    except ResearchError as exc:
        emit_error(str(exc), "INTERNAL_ERROR", error_type="internal")
    except KeyboardInterrupt:
        emit_error("Research interrupted", "INTERNAL_ERROR", error_type="internal")

    if as_json:
        emit_success(
            {"query": query, "markdown": markdown, "cache_hit": cache_hit},
            telemetry={"duration_ms": round((time.perf_counter() - start) * 1000, 1)},
        )
    else:
        click.echo(markdown)


@cli.command("serve")
@click.pass_context
def serve_cmd(ctx: click.Context) -> None:
    """Run the MCP server over stdio."""
    from deep_researcher.server import create_server

    server = create_server(ctx.obj["config"])
    server.run()


if __name__ == "__main__":
    cli()
