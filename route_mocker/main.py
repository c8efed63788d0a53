#!/usr/bin/env python3
"""Main entry point for the route_mocker command line tool."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .core.config import ConfigManager
from .core.events.recorder import NetworkRecorder
from .utils.logging import configure_logging, setup_logging

app = typer.Typer(
    name="routemock",
    help="Request interception and mocking layer for Playwright tests",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


@app.command()
def config(
    init: bool = typer.Option(
        False, "--init",
        help="Initialize a new configuration file"
    ),
    validate: Optional[Path] = typer.Option(
        None, "--validate",
        help="Validate an existing configuration file"
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o",
        help="Where --init writes the file (default: config/default.yaml)"
    ),
) -> None:
    """Manage configuration files."""

    if init:
        config_manager = ConfigManager(output)
        config_path = config_manager.create_default_config()
        console.print(f"[green]Default configuration created at:[/green] {config_path}")

    elif validate:
        problems = ConfigManager(validate).check_config()
        if not problems:
            console.print(f"[green]Configuration file is valid:[/green] {validate}")
        else:
            console.print(f"[red]Configuration file has errors:[/red] {validate}")
            for problem in problems:
                console.print(f"  - {problem}")
            raise typer.Exit(code=1)
    else:
        console.print("[yellow]Use --init to create a new config or --validate to check an existing one[/yellow]")


@app.command("har-summary")
def har_summary(
    har_file: Path = typer.Argument(..., help="HAR file written by a recording session"),
    failed_only: bool = typer.Option(
        False, "--failed-only",
        help="Only list aborted requests and error responses"
    ),
    limit: int = typer.Option(
        200, "--limit", "-n",
        help="Maximum number of entries to list"
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c",
        help="Configuration file whose logging section is applied"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Enable verbose logging"
    ),
) -> None:
    """Summarize the requests recorded in a HAR file."""
    level = "DEBUG" if verbose else None
    if config_file:
        config_manager = ConfigManager(config_file)
        problems = config_manager.check_config()
        if problems:
            console.print(f"[red]Configuration file has errors:[/red] {config_file}")
            for problem in problems:
                console.print(f"  - {problem}")
            raise typer.Exit(code=1)
        configure_logging(config_manager.get_config(), level=level)
    else:
        setup_logging(level or "WARNING", format_type="simple")

    try:
        recorder = NetworkRecorder.load_har(har_file)
    except FileNotFoundError:
        console.print(f"[red]HAR file not found:[/red] {har_file}")
        raise typer.Exit(code=1)
    except (ValueError, KeyError) as e:
        console.print(f"[red]Cannot read HAR file {har_file}: {e}[/red]")
        raise typer.Exit(code=1)

    exchanges = recorder.exchanges
    if failed_only:
        exchanges = [
            e for e in exchanges
            if e.failure is not None or e.response is None or e.response.status >= 400
        ]

    table = Table(title=f"{har_file.name}: {len(exchanges)} requests")
    table.add_column("Method", style="cyan", no_wrap=True)
    table.add_column("URL", overflow="fold")
    table.add_column("Result", no_wrap=True)
    table.add_column("Size", justify="right")
    table.add_column("Time (ms)", justify="right")

    for exchange in exchanges[:limit]:
        if exchange.failure is not None or exchange.response is None:
            failure = exchange.failure.value if exchange.failure else "failed"
            result, size = f"[red]{failure}[/red]", "-"
        else:
            status = exchange.response.status
            style = "green" if status < 400 else "red"
            result = f"[{style}]{status}[/{style}]"
            size = str(len(exchange.response.body))
        table.add_row(
            exchange.request.method,
            exchange.request.url,
            result,
            size,
            f"{exchange.duration_ms:.1f}",
        )

    console.print(table)
    if len(exchanges) > limit:
        console.print(f"[dim]... {len(exchanges) - limit} more not shown[/dim]")


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__, __author__

    console.print(f"route_mocker v{__version__}")
    console.print(f"Author: {__author__}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
