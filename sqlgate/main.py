"""
SqlGate CLI Entry Point

Command-line interface for running the gateway over stdio or HTTP and for
checking SQL and configuration offline.
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from sqlgate.config import Settings, get_settings, load_settings
from sqlgate.exceptions import ConfigurationError
from sqlgate.utils.logger import setup_logging

app = typer.Typer(
    name="sqlgate",
    help="SqlGate - Read-only SQL gateway for AI agents",
    add_completion=False,
)
console = Console()
# stdout belongs to the protocol while serving over stdio
err_console = Console(stderr=True)


def _load(env_file: Optional[Path], verbose: bool) -> Settings:
    settings = load_settings(env_file) if env_file else get_settings()
    if verbose:
        settings.log_level = "DEBUG"
    setup_logging(level=settings.log_level, log_file=settings.log_file)
    return settings


def _build_server(settings: Settings):
    from sqlgate.database.manager import ConnectionManager
    from sqlgate.server.protocol import McpServer
    from sqlgate.tools.dispatcher import ToolDispatcher

    manager = ConnectionManager.from_settings(settings)
    return McpServer(ToolDispatcher(manager, settings=settings))


@app.command()
def serve(
    env_file: Optional[Path] = typer.Option(None, "--env", "-e", help="Path to .env file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """
    Serve MCP over stdin/stdout.

    Without configured connections the server starts uninitialized and
    waits for initializationOptions in the initialize request.
    """
    from sqlgate.server.stdio import serve_stdio

    settings = _load(env_file, verbose)
    try:
        server = _build_server(settings)
    except ConfigurationError as e:
        err_console.print(f"[red]Configuration error: {e.message}[/red]")
        raise typer.Exit(1)

    try:
        asyncio.run(serve_stdio(server))
    except KeyboardInterrupt:
        err_console.print("[yellow]Interrupted[/yellow]")


@app.command()
def http(
    env_file: Optional[Path] = typer.Option(None, "--env", "-e", help="Path to .env file"),
    host: Optional[str] = typer.Option(None, "--host", help="Bind host"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """
    Serve MCP over HTTP (POST /api/v1/mcp).
    """
    import uvicorn

    settings = _load(env_file, verbose)
    try:
        settings.descriptors()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e.message}[/red]")
        raise typer.Exit(1)

    from sqlgate_api.app import create_app

    uvicorn.run(
        create_app(settings),
        host=host or settings.http_host,
        port=port or settings.http_port,
        log_level=settings.log_level.lower(),
    )


@app.command()
def check(
    sql: str = typer.Argument(..., help="SQL statement to validate"),
    max_rows: int = typer.Option(1000, "--max-rows", "-n", help="Row cap to apply"),
    dialect: str = typer.Option("postgres", "--dialect", "-d", help="postgres or mssql"),
):
    """
    Validate a SQL statement offline and show the row-capped rewrite.
    """
    from sqlgate.models.schema import DatabaseType
    from sqlgate.security.validator import QueryValidator

    try:
        db_type = DatabaseType(dialect.lower())
    except ValueError:
        console.print(f"[red]Unknown dialect: {dialect}[/red]")
        raise typer.Exit(2)

    settings = get_settings()
    validator = QueryValidator(
        max_query_length=settings.max_query_length, max_rows=settings.default_max_rows
    )
    cap = min(max_rows, settings.max_rows_cap)
    result = validator.validate(sql, max_rows=cap)

    table = Table(title="Validation")
    table.add_column("Kind", style="cyan")
    table.add_column("Message")
    for error in result.errors:
        table.add_row("[red]error[/red]", error)
    for warning in result.warnings:
        table.add_row("[yellow]warning[/yellow]", warning)
    if result.errors or result.warnings:
        console.print(table)

    if not result.is_valid:
        console.print("[red]Rejected[/red]")
        raise typer.Exit(1)

    limited = validator.enforce_row_limit(sql, cap, db_type)
    console.print("[green]Accepted[/green]")
    console.print(f"  Executed as: {limited.sql}")
    console.print(f"  Limit applied: {limited.limit_applied}")


@app.command()
def config(
    env_file: Optional[Path] = typer.Option(None, "--env", "-e", help="Path to .env file"),
):
    """
    Show current configuration (passwords are never shown).
    """
    settings = load_settings(env_file) if env_file else get_settings()

    console.print("\n[bold blue]SqlGate Configuration[/bold blue]")
    console.print("-" * 40)

    console.print("\n[cyan]Limits:[/cyan]")
    console.print(f"  Max query length: {settings.max_query_length}")
    console.print(f"  Default max rows: {settings.default_max_rows}")
    console.print(f"  Max rows cap: {settings.max_rows_cap}")

    console.print("\n[cyan]HTTP:[/cyan]")
    console.print(f"  Bind: {settings.http_host}:{settings.http_port}")

    console.print("\n[cyan]Connections:[/cyan]")
    try:
        descriptors = settings.descriptors()
    except ConfigurationError as e:
        console.print(f"  [red]{e.message}[/red]")
        raise typer.Exit(1)

    if not descriptors:
        console.print("  [yellow]No connections configured[/yellow]")
        return

    table = Table()
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Host", style="yellow")
    table.add_column("User")
    table.add_column("Database", style="magenta")
    table.add_column("Password")
    for name, descriptor in descriptors.items():
        summary = descriptor.safe_summary()
        table.add_row(
            name,
            summary["type"],
            f"{summary['host']}:{summary['port']}",
            summary["user"],
            descriptor.default_database,
            "***",
        )
    console.print(table)


@app.command()
def version():
    """
    Show version information.
    """
    from sqlgate import __version__

    console.print(f"SqlGate version: [green]{__version__}[/green]")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
