"""Linked provider account commands.

Accounts are stored in ACCOUNTS_FILE; without it nothing survives the
command, so these commands are mostly useful against a file-backed store.
"""

import asyncio
import json

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from gateway.cli.commands._runtime import run_with_container
from gateway.core.container import Container
from gateway.core.provider.base import AuthFlow, DevicePollStatus

app = typer.Typer(help="Linked provider accounts")

USER_OPTION = typer.Option(..., "--user", "-u", help="Owning user id")


@app.command("list")
def list_accounts(
    user: str = USER_OPTION,
    show_all: bool = typer.Option(False, "--all", "-a", help="Include deactivated accounts"),
) -> None:
    """List a user's linked accounts."""
    console = Console()

    async def action(container: Container) -> list:
        return await container.store.find_accounts(user, active_only=not show_all)

    accounts = run_with_container(action)
    if not accounts:
        console.print(f"[yellow]No accounts linked for user: {user}[/yellow]")
        return

    table = Table(title=f"Accounts: {user}")
    table.add_column("ID", style="cyan")
    table.add_column("Provider", style="green")
    table.add_column("Name")
    table.add_column("Identity")
    table.add_column("Active")
    table.add_column("Health")
    table.add_column("Requests", justify="right")

    for account in accounts:
        table.add_row(
            account.id,
            account.provider,
            account.name,
            account.identity,
            "yes" if account.is_active else "no",
            account.health.value,
            str(account.request_count),
        )
    console.print(table)


@app.command()
def stats(user: str = USER_OPTION) -> None:
    """Show per-provider account statistics as JSON."""

    async def action(container: Container) -> dict:
        return await container.balancer.get_account_stats(user)

    Console().print_json(json.dumps(run_with_container(action)))


@app.command("add-key")
def add_key(
    provider: str = typer.Argument(..., help="API-key provider (e.g. 'nvidia_nim')"),
    api_key: str = typer.Option(..., "--api-key", prompt=True, hide_input=True),
    user: str = USER_OPTION,
    name: str = typer.Option(None, "--name", help="Display name"),
) -> None:
    """Register a provider API key for a user."""

    async def action(container: Container):
        return await container.linker.register_api_key(user, provider, api_key, name)

    result = run_with_container(action)
    verb = "Added" if result.is_new_account else "Updated"
    Console().print(f"[green]{verb} account {result.account.id} ({result.account.name})[/green]")


@app.command()
def login(
    provider: str = typer.Argument(..., help="OAuth provider (e.g. 'iflow', 'qwen_code')"),
    user: str = USER_OPTION,
) -> None:
    """Link an OAuth account interactively.

    Redirect providers print an authorization URL and ask for the URL the
    browser was sent back to; device-code providers print a user code and
    poll until the authorization completes.
    """
    console = Console()

    async def action(container: Container):
        client = container.providers.get(provider.lower())
        if client.auth_flow is AuthFlow.REDIRECT:
            url, _ = container.linker.begin_authorization(user, client.name)
            console.print(Panel(url, title="Open this URL to authorize", border_style="cyan"))
            callback_url = typer.prompt("Paste the URL you were redirected to")
            return await container.linker.complete_authorization(user, callback_url)

        if client.auth_flow is AuthFlow.DEVICE_CODE:
            device = await container.linker.begin_device_authorization(user, client.name)
            console.print(
                Panel(
                    f"Visit: {device.verification_url_complete or device.verification_url}\n"
                    f"Code : [bold]{device.user_code}[/bold]",
                    title="Authorize this device",
                    border_style="cyan",
                )
            )
            interval = device.interval
            while True:
                await asyncio.sleep(interval)
                result = await container.linker.poll_device_authorization(
                    user, device.device_code
                )
                if result.status is DevicePollStatus.SUCCESS:
                    return result.link
                if result.status is DevicePollStatus.ERROR:
                    console.print(f"[red]Authorization failed: {result.error}[/red]")
                    raise typer.Exit(1)
                if result.slow_down:
                    interval += 5

        console.print(f"[red]{provider} uses API keys; run 'gateway accounts add-key'[/red]")
        raise typer.Exit(1)

    link = run_with_container(action)
    console.print(
        Panel(
            f"[green]Linked {link.account.provider} account[/green]\n\n"
            f"Account ID: {link.account.id}\n"
            f"Identity  : {link.account.identity}\n"
            f"New       : {'yes' if link.is_new_account else 'no (re-linked)'}",
            title="Login Success",
            border_style="green",
        )
    )


@app.command()
def remove(
    account_id: str = typer.Argument(..., help="Account id"),
    user: str = USER_OPTION,
) -> None:
    """Delete one of a user's accounts."""
    console = Console()

    async def action(container: Container) -> bool:
        account = await container.store.get_account(account_id)
        if account is None or account.user_id != user:
            return False
        return await container.store.delete_account(account_id)

    if not run_with_container(action):
        console.print(f"[yellow]No account {account_id} for user {user}[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]Removed account {account_id}[/green]")
