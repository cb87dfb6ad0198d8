"""Shared helpers for commands that need the gateway services."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from rich.console import Console
from rich.panel import Panel

from gateway.core.config import Config
from gateway.core.container import Container, build_container
from gateway.core.oauth.exceptions import OAuthError

T = TypeVar("T")


def run_with_container(action: Callable[[Container], Awaitable[T]]) -> T:
    """Build the services, run ``action`` and close them again.

    OAuth and storage failures are printed and turned into exit code 1.
    """

    async def runner() -> T:
        container = build_container(Config())
        try:
            return await action(container)
        finally:
            await container.aclose()

    try:
        return asyncio.run(runner())
    except OAuthError as e:
        Console().print(
            Panel(f"[red]{e}[/red]", title=type(e).__name__, border_style="red")
        )
        raise typer.Exit(1) from None
