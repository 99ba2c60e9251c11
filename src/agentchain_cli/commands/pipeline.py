"""Pipeline commands.

- run: Run a query through the full reasoning chain
- resume: Continue a request from its first missing stage
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from agentchain.container import Runtime
from agentchain.pipeline.controller import PipelineResult
from agentchain_cli.formatters import format_json, format_warning, result_panels
from agentchain_cli.runner import run_with_runtime

console = Console()


def _show(result: PipelineResult, json_output: bool) -> None:
    if json_output:
        print(format_json(result))
        return
    for panel in result_panels(result):
        console.print(panel)
    if result.halted_after:
        console.print(format_warning(f"Stopped after {result.halted_after}"))
    if result.replans or result.deepenings:
        console.print(f"[dim]Replans: {result.replans}  Deepenings: {result.deepenings}[/dim]")


def run(
    query: Annotated[str, typer.Argument(help="Query to answer")],
    request_id: Annotated[
        str | None,
        typer.Option("--request-id", "-r", help="Request ID to use (generated when omitted)"),
    ] = None,
    stop_after: Annotated[
        str | None,
        typer.Option("--stop-after", "-s", help="Stop after this stage (e.g. planner-agent)"),
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output in JSON format")] = False,
) -> None:
    """Run a query through the reasoning pipeline.

    Examples:
        # Answer a query
        agentchain run "Show me all facilities"

        # Stop once the plan has been critiqued
        agentchain run "Compare shipment risk across facilities" --stop-after critic-agent

        # Get JSON output
        agentchain run "Show me all facilities" --json
    """

    async def action(runtime: Runtime) -> PipelineResult:
        return await runtime.controller.run(query, request_id=request_id, stop_after=stop_after)

    _show(run_with_runtime(action), json_output)


def resume(
    request_id: Annotated[str, typer.Argument(help="Request ID to resume")],
    stop_after: Annotated[
        str | None,
        typer.Option("--stop-after", "-s", help="Stop after this stage"),
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output in JSON format")] = False,
) -> None:
    """Resume a request from the first stage without a usable output."""

    async def action(runtime: Runtime) -> PipelineResult:
        return await runtime.controller.resume(request_id, stop_after=stop_after)

    _show(run_with_runtime(action), json_output)
