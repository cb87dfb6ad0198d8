"""Configuration check command."""

import typer
from rich.console import Console
from rich.table import Table

from gateway.core.config import validate_all


def check() -> None:
    """Validate every environment variable the gateway reads."""
    console = Console()

    console.print("[bold cyan]Checking Configuration[/bold cyan]")
    console.print()

    errors = validate_all()
    if not errors:
        console.print("✅ All settings are valid")
        return

    table = Table(title="Invalid Settings")
    table.add_column("Variable", style="cyan")
    table.add_column("Value", style="yellow")
    table.add_column("Problem", style="red")
    for error in errors:
        table.add_row(error.env_var, error.value, error.message)
    console.print(table)
    raise typer.Exit(1)
