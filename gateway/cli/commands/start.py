"""Start command for the gateway CLI."""

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from gateway.core.config import config


def start(
    host: str = typer.Option(None, "--host", help="Override host"),
    port: int = typer.Option(None, "--port", help="Override port"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
) -> None:
    """Start the gateway server."""
    console = Console()

    # Override config if provided
    server_host = host or config.host
    server_port = port or config.port

    # Show configuration
    table = Table(title="Provider Gateway Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Host", server_host)
    table.add_row("Port", str(server_port))
    table.add_row("Accounts File", config.accounts_file or "(in memory)")
    table.add_row("Gateway Secret", config.secret_hash)
    table.add_row("Failure Policy", config.failure_policy)
    table.add_row("Max Account Retries", str(config.max_account_retries))

    console.print(table)

    uvicorn.run(
        "gateway.main:create_app",
        factory=True,
        host=server_host,
        port=server_port,
        reload=reload,
        log_level=config.log_level.split()[0].lower(),
    )
