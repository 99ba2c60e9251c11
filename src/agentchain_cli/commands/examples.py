"""Example memory commands.

- add: Store a labelled complexity, thought or plan example
- list: List stored examples of one kind
- delete: Delete an example by ID
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console

from agentchain.container import Runtime
from agentchain.models.examples import ComplexityExample, Example, PlanExample, ThoughtExample
from agentchain_cli.formatters import example_table, format_json, format_success
from agentchain_cli.runner import run_with_runtime

app = typer.Typer(
    name="examples",
    help="Manage the labelled example memories",
    no_args_is_help=True,
)

console = Console()


class ExampleKind(str, Enum):
    COMPLEXITY = "complexity"
    THOUGHT = "thought"
    PLAN = "plan"


EXAMPLE_TYPES: dict[ExampleKind, type[Example]] = {
    ExampleKind.COMPLEXITY: ComplexityExample,
    ExampleKind.THOUGHT: ThoughtExample,
    ExampleKind.PLAN: PlanExample,
}

# Complexity score assumed for a pass count when none is given
DEFAULT_SCORES = {1: 0.2, 2: 0.55, 3: 0.85}


def build_example(kind: ExampleKind, query: str, passes: int | None, score: float | None,
                  payload: dict[str, Any]) -> Example:
    """
    Build an unsaved example from command options.

    Raises:
        typer.Exit: With code 2 when the fields do not validate
    """
    data: dict[str, Any] = {**payload, "query": query}
    if kind == ExampleKind.COMPLEXITY:
        if passes is not None:
            data["reasoning_passes"] = passes
        if score is not None:
            data["complexity_score"] = score
    try:
        if kind == ExampleKind.COMPLEXITY:
            data.setdefault("reasoning_passes", 1)
            data.setdefault("complexity_score", DEFAULT_SCORES[int(data["reasoning_passes"])])
        return EXAMPLE_TYPES[kind].model_validate(data)
    except (PydanticValidationError, KeyError, TypeError, ValueError) as e:
        console.print(f"[red]Validation error:[/red] {e}")
        raise typer.Exit(2)


@app.command()
def add(
    kind: Annotated[ExampleKind, typer.Argument(help="Example kind")],
    query: Annotated[str, typer.Argument(help="Example query")],
    passes: Annotated[
        int | None,
        typer.Option("--passes", "-p", min=1, max=3, help="Reasoning passes (complexity)"),
    ] = None,
    score: Annotated[
        float | None,
        typer.Option("--score", min=0.0, max=1.0, help="Complexity score (complexity)"),
    ] = None,
    payload: Annotated[
        str | None,
        typer.Option("--payload", "-m", help="Kind-specific fields as a JSON object"),
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output in JSON format")] = False,
) -> None:
    """Store a labelled example.

    Examples:
        agentchain examples add complexity "Show me all facilities" --passes 1
        agentchain examples add plan "List facilities" -m '{"goal": "List", "steps": []}'
    """
    fields: dict[str, Any] = {}
    if payload:
        try:
            fields = json.loads(payload)
        except json.JSONDecodeError as e:
            console.print(f"[red]Invalid JSON in payload:[/red] {e}")
            raise typer.Exit(2)
        if not isinstance(fields, dict):
            console.print("[red]Payload must be a JSON object[/red]")
            raise typer.Exit(2)

    example = build_example(kind, query, passes, score, fields)

    async def action(runtime: Runtime) -> Example:
        return await runtime.memory(kind.value).store(example)

    stored = run_with_runtime(action)
    if json_output:
        print(format_json(stored.model_dump(mode="json", exclude={"embedding"})))
    else:
        console.print(format_success(f"Stored {kind.value} example {stored.id}"))


@app.command("list")
def list_examples(
    kind: Annotated[ExampleKind, typer.Argument(help="Example kind")],
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output in JSON format")] = False,
) -> None:
    """List stored examples of one kind."""

    async def action(runtime: Runtime) -> list[Example]:
        return await runtime.memory(kind.value).get_all()

    examples = run_with_runtime(action)
    if json_output:
        print(format_json([e.model_dump(mode="json", exclude={"embedding"}) for e in examples]))
    elif not examples:
        console.print(f"[yellow]No {kind.value} examples stored[/yellow]")
    else:
        console.print(example_table(kind.value, examples))


@app.command()
def delete(
    kind: Annotated[ExampleKind, typer.Argument(help="Example kind")],
    example_id: Annotated[str, typer.Argument(help="Example ID")],
) -> None:
    """Delete an example."""

    async def action(runtime: Runtime) -> bool:
        return await runtime.memory(kind.value).delete(example_id)

    if run_with_runtime(action):
        console.print(format_success(f"Deleted {kind.value} example {example_id}"))
    else:
        console.print(f"[yellow]No {kind.value} example {example_id}[/yellow]")
        raise typer.Exit(1)
