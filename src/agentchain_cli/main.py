"""Main CLI entry point for agentchain."""

from __future__ import annotations

import sys
from typing import Annotated

import typer
from rich.console import Console

from agentchain_cli import __version__
from agentchain_cli.commands import examples, pipeline, requests

app = typer.Typer(
    name="agentchain",
    help="agentchain CLI - run and inspect the complexity-adaptive reasoning pipeline",
    no_args_is_help=True,
    add_completion=False,
)

# Register commands
app.command("run")(pipeline.run)
app.command("resume")(pipeline.resume)
app.add_typer(requests.app, name="requests")
app.add_typer(examples.app, name="examples")

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"agentchain CLI version: {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    agentchain CLI - command-line interface for the reasoning pipeline.

    Use 'agentchain COMMAND --help' for help with specific commands.
    """
    pass


def cli_main() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    cli_main()
