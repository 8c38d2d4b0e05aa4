"""Command line entry point for the todo MCP server."""

from typing import Any

import click

from todo_mcp.server import Settings, TodoServer


@click.command()
@click.option("--host", default=None, help="Interface to bind (default: 127.0.0.1)")
@click.option("--port", type=int, default=None, help="Port to listen on for HTTP (default: 4000)")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Logging level",
)
@click.option("--database-url", default=None, help="SQLAlchemy async database URL")
@click.option(
    "--json-response",
    is_flag=True,
    default=False,
    help="Enable JSON responses instead of SSE streams",
)
def main(
    host: str | None,
    port: int | None,
    log_level: str | None,
    database_url: str | None,
    json_response: bool,
) -> int:
    # Options left unset fall back to TODO_MCP_* environment variables
    overrides: dict[str, Any] = {}
    if host is not None:
        overrides["host"] = host
    if port is not None:
        overrides["port"] = port
    if log_level is not None:
        overrides["log_level"] = log_level.upper()
    if database_url is not None:
        overrides["database_url"] = database_url
    if json_response:
        overrides["json_response"] = True

    server = TodoServer(settings=Settings(**overrides))
    server.run()
    return 0
