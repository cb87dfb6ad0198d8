"""Main CLI entry point for the provider gateway."""

import logging

import typer
from rich.console import Console

from gateway.cli.commands import accounts, check, models, start, tokens

app = typer.Typer(
    name="gateway",
    help="Provider Gateway CLI - manage the server, models and linked accounts",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Add subcommands
app.command(name="start", help="Start the gateway server")(start.start)
app.command(name="check", help="Validate configuration")(check.check)
app.add_typer(models.app, name="models", help="Model catalog")
app.add_typer(accounts.app, name="accounts", help="Linked provider accounts")
app.add_typer(tokens.app, name="tokens", help="Token maintenance")


@app.command()
def version() -> None:
    """Show version information."""
    from gateway import __version__

    console = Console()
    console.print(f"[bold cyan]gateway[/bold cyan] version [green]{__version__}[/green]")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Provider Gateway CLI."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


if __name__ == "__main__":
    app()
