"""Token maintenance commands."""

import json

import typer
from rich.console import Console
from rich.table import Table

from gateway.cli.commands._runtime import run_with_container
from gateway.core.container import Container
from gateway.core.oauth.lifecycle import RefreshReport, RefreshStatus, as_dict

app = typer.Typer(help="Token maintenance")

_STATUS_STYLES = {
    RefreshStatus.REFRESHED: "green",
    RefreshStatus.FAILED: "red",
    RefreshStatus.SKIPPED: "dim",
}


@app.command()
def refresh(
    threshold: float = typer.Option(
        None, "--threshold", "-t", help="Refresh tokens expiring within this many seconds"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the reports as JSON"),
) -> None:
    """Proactively refresh OAuth tokens that are about to expire."""
    console = Console()

    async def action(container: Container) -> list[RefreshReport]:
        value = container.config.token_refresh_threshold if threshold is None else threshold
        return await container.lifecycle.refresh_expiring(value)

    reports = run_with_container(action)
    failed = any(r.status is RefreshStatus.FAILED for r in reports)

    if as_json:
        console.print_json(json.dumps([as_dict(report) for report in reports]))
    elif not reports:
        console.print("[yellow]No active accounts[/yellow]")
    else:
        table = Table(title="Token Refresh")
        table.add_column("Account", style="cyan")
        table.add_column("Provider")
        table.add_column("Status")
        table.add_column("Detail")
        for report in reports:
            style = _STATUS_STYLES[report.status]
            table.add_row(
                report.account_id,
                report.provider,
                f"[{style}]{report.status.value}[/{style}]",
                report.message,
            )
        console.print(table)

    if failed:
        raise typer.Exit(1)
