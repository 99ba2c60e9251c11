"""Request inspection commands.

- list: List requests with optional status/stage filters
- show: Show one request and its latest stage outputs
- search: Search requests by ID or query text
- clear: Delete every request and stage output
"""

from __future__ import annotations

from typing import Annotated

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console

from agentchain.container import Runtime
from agentchain.exceptions import ValidationError
from agentchain.models.request import RequestContext, RequestFilter, RequestStatus
from agentchain.pipeline.controller import PipelineResult
from agentchain_cli.formatters import context_table, format_json, format_success, result_panels
from agentchain_cli.runner import run_with_runtime

app = typer.Typer(
    name="requests",
    help="Inspect and manage stored requests",
    no_args_is_help=True,
)

console = Console()


@app.command("list")
def list_requests(
    status: Annotated[
        str | None,
        typer.Option("--status", "-s", help="Filter by status (pending, in_progress, completed, failed)"),
    ] = None,
    agent: Annotated[
        str | None,
        typer.Option("--agent", "-a", help="Only requests whose chain contains this stage"),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", help="Maximum number of requests")] = 50,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output in JSON format")] = False,
) -> None:
    """List requests, newest first.

    Examples:
        agentchain requests list --status failed
        agentchain requests list --agent meta-agent --json
    """
    try:
        filters = RequestFilter(
            status=RequestStatus(status) if status else None,
            agent_name=agent,
            limit=limit,
        )
    except (ValueError, PydanticValidationError) as e:
        console.print(f"[red]Validation error:[/red] {e}")
        raise typer.Exit(2)

    async def action(runtime: Runtime) -> list[RequestContext]:
        return await runtime.request_store.get_all(filters)

    contexts = run_with_runtime(action)
    if json_output:
        print(format_json(contexts))
    elif not contexts:
        console.print("[yellow]No requests found[/yellow]")
    else:
        console.print(context_table(contexts))


@app.command()
def show(
    request_id: Annotated[str, typer.Argument(help="Request ID")],
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output in JSON format")] = False,
) -> None:
    """Show a request and its latest stage outputs."""

    async def action(runtime: Runtime) -> PipelineResult:
        result = await runtime.controller.load(request_id)
        if result.context is None:
            raise ValidationError(f"Unknown request {request_id}")
        return result

    result = run_with_runtime(action)
    if json_output:
        print(format_json(result))
        return
    for panel in result_panels(result):
        console.print(panel)


@app.command()
def search(
    text: Annotated[str, typer.Argument(help="Substring of the request ID or query")],
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output in JSON format")] = False,
) -> None:
    """Search requests by ID or query text (case-insensitive)."""

    async def action(runtime: Runtime) -> list[RequestContext]:
        return await runtime.request_store.search(text)

    contexts = run_with_runtime(action)
    if json_output:
        print(format_json(contexts))
    elif not contexts:
        console.print(f"[yellow]No requests match '{text}'[/yellow]")
    else:
        console.print(context_table(contexts, title="Matches"))


@app.command()
def clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete every request and every stage output."""
    if not yes:
        typer.confirm("Delete all requests and stage outputs?", abort=True)

    async def action(runtime: Runtime) -> tuple[int, int]:
        outputs = 0
        for store in runtime.stores.all():
            outputs += await store.clear()
        requests = await runtime.request_store.clear()
        return requests, outputs

    requests, outputs = run_with_runtime(action)
    console.print(format_success(f"Deleted {requests} request(s) and {outputs} stage output(s)"))
