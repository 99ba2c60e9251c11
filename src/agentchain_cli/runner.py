"""Bridge between synchronous typer commands and the async runtime."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import typer
from rich.console import Console

from agentchain.container import Runtime
from agentchain.exceptions import AgentChainError, ValidationError
from agentchain_cli.container import get_runtime_factory

T = TypeVar("T")

console = Console()


def run_with_runtime(action: Callable[[Runtime], Awaitable[T]]) -> T:
    """
    Open a runtime, run ``action`` against it and close it again.

    Invalid input exits with code 2, every other pipeline error with code 1.
    """
    factory = get_runtime_factory()

    async def _main() -> T:
        async with factory() as runtime:
            return await action(runtime)

    try:
        return asyncio.run(_main())
    except ValidationError as e:
        console.print(f"[red]Validation error:[/red] {e}")
        raise typer.Exit(2)
    except AgentChainError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
