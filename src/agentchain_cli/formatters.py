"""Output formatters for the agentchain CLI.

Provides two output formats:
- JSON: Machine-readable format for scripting
- Rich: Human-readable panels and tables (default)
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from rich.panel import Panel
from rich.table import Table

from agentchain.models.examples import ComplexityExample, Example, PlanExample, ThoughtExample
from agentchain.models.outputs import StepStatus
from agentchain.models.request import RequestContext
from agentchain.pipeline.controller import PipelineResult


def format_json(data: Any, pretty: bool = True) -> str:
    """Format data as JSON. Pydantic models are dumped in JSON mode first."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    elif isinstance(data, list):
        data = [d.model_dump(mode="json") if isinstance(d, BaseModel) else d for d in data]
    if pretty:
        return json.dumps(data, indent=2, sort_keys=False, ensure_ascii=False, default=str)
    return json.dumps(data, ensure_ascii=False, default=str)


def _format_timestamp(timestamp: datetime | None) -> str:
    if timestamp is None:
        return "N/A"
    return timestamp.strftime("%Y-%m-%d %H:%M:%S")


def _format_status(status: str) -> str:
    """Format status with color."""
    if status == "completed":
        return f"[green]{status}[/green]"
    if status in ("pending", "in_progress"):
        return f"[yellow]{status}[/yellow]"
    if status == "failed":
        return f"[red]{status}[/red]"
    return status


def _truncate(text: str, width: int = 50) -> str:
    return text if len(text) <= width else text[: width - 3] + "..."


def format_success(message: str) -> str:
    return f"[green]✓[/green] {message}"


def format_warning(message: str) -> str:
    return f"[yellow]⚠[/yellow] {message}"


def context_table(contexts: list[RequestContext], title: str = "Requests") -> Table:
    """Table of request contexts."""
    table = Table(title=f"{title} ({len(contexts)})", show_header=True, header_style="bold magenta")
    table.add_column("Request ID", style="cyan", overflow="fold")
    table.add_column("Status")
    table.add_column("Query", style="green")
    table.add_column("Passes", justify="right")
    table.add_column("Stages", justify="right")
    table.add_column("Created")
    for ctx in contexts:
        table.add_row(
            ctx.request_id,
            _format_status(ctx.status.value),
            _truncate(ctx.user_query or ""),
            str(ctx.complexity.reasoning_passes) if ctx.complexity else "-",
            str(len(ctx.agent_chain)),
            _format_timestamp(ctx.created_at),
        )
    return table


def context_panel(context: RequestContext) -> Panel:
    """Detailed view of one request context."""
    lines = [
        f"[bold]Request ID:[/bold] {context.request_id}",
        f"[bold]Status:[/bold] {_format_status(context.status.value)}",
        f"[bold]Query:[/bold] {context.user_query or 'N/A'}",
        f"[bold]Agent chain:[/bold] {' → '.join(context.agent_chain) or 'N/A'}",
        f"[bold]Created:[/bold] {_format_timestamp(context.created_at)}",
        f"[bold]Updated:[/bold] {_format_timestamp(context.updated_at)}",
    ]
    if context.complexity is not None:
        lines.append(
            f"[bold]Complexity:[/bold] {context.complexity.score:.2f} "
            f"({context.complexity.reasoning_passes} pass(es), "
            f"{context.complexity.confidence:.0%} confidence)"
        )
    return Panel("\n".join(lines), title="Request", border_style="cyan")


def result_panels(result: PipelineResult) -> list[Panel]:
    """Panels describing a pipeline run, one per produced artifact."""
    panels: list[Panel] = []
    if result.context is not None:
        panels.append(context_panel(result.context))

    if result.complexity is not None:
        c = result.complexity
        panels.append(
            Panel(
                f"[bold]Method:[/bold] {c.detection_method.value}\n"
                f"[bold]Passes:[/bold] {c.complexity.reasoning_passes}\n"
                f"{c.explanation}",
                title="Complexity",
                border_style="blue",
            )
        )

    if result.plan is not None:
        steps = "\n".join(
            f"{s.order}. {s.description or s.action} [dim]({s.action})[/dim]"
            for s in result.plan.plan.steps
        )
        panels.append(
            Panel(
                f"[bold]Goal:[/bold] {result.plan.plan.goal}\n{steps}",
                title=f"Plan v{result.plan.version}",
                border_style="blue",
            )
        )

    if result.critique is not None:
        cr = result.critique
        issues = "\n".join(f"- [{i.severity.value}] {i.description}" for i in cr.issues)
        panels.append(
            Panel(
                f"[bold]Score:[/bold] {cr.overall_score:.2f}  "
                f"[bold]Recommendation:[/bold] {cr.recommendation.value}\n{issues}",
                title=f"Critique v{cr.version}",
                border_style="magenta",
            )
        )

    if result.execution is not None:
        rows = []
        for r in result.execution.step_results:
            mark = {
                StepStatus.COMPLETED: "[green]✓[/green]",
                StepStatus.FAILED: "[red]✗[/red]",
                StepStatus.SKIPPED: "[yellow]-[/yellow]",
            }[r.status]
            rows.append(f"{mark} Step {r.order} {r.action}" + (f": {r.error}" if r.error else ""))
        panels.append(Panel("\n".join(rows) or "No steps", title="Execution", border_style="yellow"))

    if result.summary is not None:
        body = result.summary.summary
        if result.summary.key_takeaways:
            body += "\n\n[bold]Key takeaways:[/bold]\n" + "\n".join(
                f"{i}. {t}" for i, t in enumerate(result.summary.key_takeaways, start=1)
            )
        panels.append(Panel(body, title="Answer", border_style="green"))
    return panels


def example_table(kind: str, examples: list[Example]) -> Table:
    """Table of stored examples."""
    table = Table(title=f"{kind.title()} examples ({len(examples)})", header_style="bold magenta")
    table.add_column("ID", style="cyan", overflow="fold")
    table.add_column("Query", style="green")
    table.add_column("Detail")
    table.add_column("Uses", justify="right")
    for example in examples:
        if isinstance(example, ComplexityExample):
            detail = f"{example.reasoning_passes} pass(es), score {example.complexity_score:.2f}"
        elif isinstance(example, ThoughtExample):
            detail = _truncate(example.reasoning, 40)
        elif isinstance(example, PlanExample):
            detail = f"{len(example.steps)} step(s)"
        else:
            detail = ""
        table.add_row(example.id, _truncate(example.query), detail, str(example.usage_count))
    return table
