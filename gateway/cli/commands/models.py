"""Model catalog commands."""

import typer
from rich.console import Console
from rich.table import Table

from gateway.cli.commands._runtime import run_with_container
from gateway.core.container import Container
from gateway.core.models.registry import ModelRegistry

app = typer.Typer(help="Model catalog")


@app.command("list")
def list_models(
    provider: str = typer.Option(None, "--provider", "-p", help="Only models this provider serves"),
) -> None:
    """List supported models and the providers serving them."""
    console = Console()
    registry = ModelRegistry()

    names = [
        name
        for name in registry.all_models()
        if not provider or registry.is_supported_by(name, provider)
    ]
    if not names:
        console.print(f"[yellow]No models found for provider: {provider}[/yellow]")
        raise typer.Exit(1)

    table = Table(title="Supported Models")
    table.add_column("Model", style="cyan")
    table.add_column("Providers", style="green")
    table.add_column("Context", justify="right")
    table.add_column("Reasoning")

    for name in names:
        entry = registry.get(name)
        meta = entry.meta if entry else None
        context = str(meta.context_length) if meta and meta.context_length else "-"
        reasoning = "yes" if meta and meta.reasoning else ""
        table.add_row(name, ", ".join(registry.providers_for(name)), context, reasoning)

    console.print(table)


@app.command("sync")
def sync_models() -> None:
    """Ask linked upstream accounts which catalog models they currently offer."""
    console = Console()

    async def action(container: Container) -> dict[str, list[str]]:
        return await container.sync_model_catalogs()

    synced = run_with_container(action)
    if not synced:
        console.print("[yellow]No dynamic provider catalog could be synced[/yellow]")
        return

    table = Table(title="Upstream Catalogs")
    table.add_column("Provider", style="cyan")
    table.add_column("Models", justify="right")
    table.add_column("Offered", style="green")
    for provider, names in sorted(synced.items()):
        table.add_row(provider, str(len(names)), ", ".join(names) or "-")
    console.print(table)
