"""
Executor Stage

Runs the latest plan against the tool registry. Deterministic: no LLM is
involved. Steps run in dependency order, ties broken by step order. A step
is skipped when its action is not registered or when one of its
dependencies did not complete; a failing tool call fails only that step.

A parameter whose value is ``EXTRACT_FROM_STEP_N`` (or ``step-N``) is
filled from step N's result before the call, and step N becomes an
implicit dependency. Tool calls that fail are retried with doubling
delays up to ``EXECUTOR_MAX_ATTEMPTS`` calls.
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import Any

from pydantic import Field

from agentchain.config import settings
from agentchain.exceptions import MissingDependency, ToolRegistryUnavailable
from agentchain.models.outputs import ExecutionOutput, PlanStep, StepResult, StepStatus
from agentchain.models.request import RequestContext, StageName
from agentchain.services.output_store import OutputStores
from agentchain.services.request_store import RequestContextStore
from agentchain.services.tool_registry import ToolRegistry
from agentchain.stages.base import BaseStage, StageInput

_STEP_REFERENCE = re.compile(r"^\s*(?:EXTRACT_FROM_STEP_|step-)(\d+)\s*$", re.I)


class ExecutorInput(StageInput):
    """Executor stage input."""

    plan_version: int | None = Field(default=None, ge=1, description="Plan version (latest when omitted)")


def _result(step: PlanStep, status: StepStatus, *, result: Any = None, error: str | None = None,
            duration_ms: float = 0.0, arguments: dict[str, Any] | None = None,
            attempts: int = 0) -> StepResult:
    return StepResult(
        step_id=step.id,
        order=step.order,
        action=step.action,
        status=status,
        result=result,
        error=error,
        duration_ms=duration_ms,
        arguments=arguments or {},
        attempts=attempts,
    )


def step_references(step: PlanStep, steps: list[PlanStep]) -> dict[str, str]:
    """Map each parameter holding a step reference to the referenced step ID."""
    by_number = {f"step-{s.order}": s.id for s in steps}
    references: dict[str, str] = {}
    for name, value in step.parameters.items():
        if not isinstance(value, str):
            continue
        match = _STEP_REFERENCE.match(value)
        if match:
            key = f"step-{match.group(1)}"
            references[name] = by_number.get(key, key)
    return references


def _key_variants(name: str) -> list[str]:
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()
    head, *tail = snake.split("_")
    keys = [name, snake, head + "".join(part.title() for part in tail)]
    if snake == "id" or snake.endswith("_id"):
        keys += ["id", "_id"]
    return list(dict.fromkeys(keys))


def extract_value(result: Any, parameter: str) -> Any:
    """
    Pull a parameter value out of an earlier step's result.

    Lists yield their first item. From a mapping the parameter's own key
    is preferred (snake or camel case), then ``id``/``_id`` for ID-like
    parameters. Scalars are used as-is. Returns None when nothing fits.
    """
    item = result[0] if isinstance(result, list) and result else result
    if isinstance(item, dict):
        for key in _key_variants(parameter):
            if item.get(key) is not None:
                return item[key]
        return None
    if item in ("", []):
        return None
    return item


class ExecutorStage(BaseStage[ExecutorInput, ExecutionOutput]):
    """Plan execution."""

    stage_name = StageName.EXECUTOR
    input_model = ExecutorInput
    output_key = "execution"
    required_outputs = ("plan",)

    def __init__(
        self,
        request_store: RequestContextStore,
        stores: OutputStores,
        tool_registry: ToolRegistry,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        super().__init__(request_store, stores)
        self.tool_registry = tool_registry
        self.max_attempts = max_attempts if max_attempts is not None else settings.EXECUTOR_MAX_ATTEMPTS
        self.retry_delay = retry_delay if retry_delay is not None else settings.EXECUTOR_RETRY_DELAY

    async def _call(self, step: PlanStep, arguments: dict[str, Any]) -> StepResult:
        started = time.perf_counter()
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self.tool_registry.call_tool(step.action, dict(arguments))
            except ToolRegistryUnavailable as e:
                if attempt < self.max_attempts:
                    delay = self.retry_delay * 2 ** (attempt - 1)
                    self.logger.info("plan_step_retrying", step_id=step.id, attempt=attempt, delay=delay)
                    await asyncio.sleep(delay)
                    continue
                self.logger.warning(
                    "plan_step_failed", step_id=step.id, action=step.action, attempts=attempt, error=str(e)
                )
                return _result(
                    step,
                    StepStatus.FAILED,
                    error=f"Step {step.order}: {e}",
                    duration_ms=(time.perf_counter() - started) * 1000,
                    arguments=arguments,
                    attempts=attempt,
                )
            return _result(
                step,
                StepStatus.COMPLETED,
                result=result,
                duration_ms=(time.perf_counter() - started) * 1000,
                arguments=arguments,
                attempts=attempt,
            )

    @staticmethod
    def _resolve(
        step: PlanStep, references: dict[str, str], done: dict[str, StepResult]
    ) -> tuple[dict[str, Any], str | None]:
        arguments = dict(step.parameters)
        for name, source in references.items():
            value = extract_value(done[source].result, name)
            if value is None:
                return arguments, f"Step {step.order}: parameter '{name}' could not be extracted from {source}"
            arguments[name] = value
        return arguments, None

    async def execute_steps(self, steps: list[PlanStep], registered: list[str]) -> list[StepResult]:
        """
        Run steps in dependency order.

        Steps whose dependencies never resolve (unknown IDs or cycles) are
        skipped with a dependency error once nothing else can run.
        """
        references = {s.id: step_references(s, steps) for s in steps}
        dependencies = {
            s.id: list(dict.fromkeys([*s.dependencies, *references[s.id].values()])) for s in steps
        }
        pending = sorted(steps, key=lambda s: s.order)
        done: dict[str, StepResult] = {}
        results: list[StepResult] = []

        while pending:
            ready = next(
                (s for s in pending if all(d in done for d in dependencies[s.id])),
                None,
            )
            if ready is None:
                break
            pending.remove(ready)

            blocked = [d for d in dependencies[ready.id] if done[d].status != StepStatus.COMPLETED]
            if blocked:
                result = _result(
                    ready,
                    StepStatus.SKIPPED,
                    error=f"Step {ready.order}: dependency {', '.join(blocked)} did not complete",
                )
            elif ready.action not in registered:
                result = _result(
                    ready,
                    StepStatus.SKIPPED,
                    error=f"Step {ready.order}: action '{ready.action}' is not a registered tool",
                )
            else:
                arguments, error = self._resolve(ready, references[ready.id], done)
                if error:
                    result = _result(ready, StepStatus.SKIPPED, error=error, arguments=arguments)
                else:
                    result = await self._call(ready, arguments)

            done[ready.id] = result
            results.append(result)

        for step in pending:
            unresolved = [d for d in dependencies[step.id] if d not in done]
            results.append(
                _result(
                    step,
                    StepStatus.SKIPPED,
                    error=(
                        f"Step {step.order}: unresolved or cyclic dependencies "
                        f"({', '.join(unresolved)})"
                    ),
                )
            )
        return results

    async def run(self, data: ExecutorInput, context: RequestContext) -> ExecutionOutput:
        if data.plan_version is None:
            plan_output = await self.stores.plan.get_by_request_id(context.request_id)
        else:
            versions = await self.stores.plan.get_all_versions_by_request_id(context.request_id)
            plan_output = next((p for p in versions if p.version == data.plan_version), None)
        if plan_output is None:
            raise MissingDependency(self.stage_name.value, context.request_id, ["plan"])

        registered = await self.tool_registry.list_tools()
        results = await self.execute_steps(plan_output.plan.steps, registered)

        errors = [r.error for r in results if r.error]
        overall_success = not errors and all(r.status == StepStatus.COMPLETED for r in results)

        self.logger.info(
            "plan_executed",
            request_id=context.request_id,
            plan_version=plan_output.version,
            steps=len(results),
            completed=sum(1 for r in results if r.status == StepStatus.COMPLETED),
            errors=len(errors),
        )
        return ExecutionOutput(
            request_id=context.request_id,
            request_context=context,
            plan_version=plan_output.version or 1,
            step_results=results,
            partial_results={
                r.step_id: r.result for r in results if r.status == StepStatus.COMPLETED
            },
            errors=errors,
            overall_success=overall_success,
        )
