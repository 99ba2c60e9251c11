"""Tests for the summary stage."""

from __future__ import annotations

import pytest

from agentchain.exceptions import MissingDependency
from agentchain.models.outputs import ExecutionOutput, StepResult, StepStatus
from agentchain.stages.summary import SummaryStage, execution_digest, split_summary, thoughts_digest
from tests.fakes import FACILITIES, SUMMARY_RESPONSE, ScriptedLLM, make_context, seed_thought


async def seed_execution(stores, context, success: bool = True) -> ExecutionOutput:
    status = StepStatus.COMPLETED if success else StepStatus.FAILED
    return await stores.execution.save(
        ExecutionOutput(
            request_id=context.request_id,
            request_context=context,
            plan_version=1,
            step_results=[
                StepResult(
                    step_id="step-1",
                    order=1,
                    action="list_facilities",
                    status=status,
                    result=FACILITIES if success else None,
                    error=None if success else "Step 1: MCP server unreachable",
                )
            ],
            partial_results={"step-1": FACILITIES} if success else {},
            errors=[] if success else ["Step 1: MCP server unreachable"],
            overall_success=success,
        )
    )


class TestDigests:
    def test_split_summary(self) -> None:
        prose, takeaways = split_summary(SUMMARY_RESPONSE)

        assert prose.startswith("There are two facilities")
        assert "KEY TAKEAWAYS" not in prose
        assert takeaways == ["Two facilities are registered", "Both are available for shipments"]

    def test_split_summary_without_takeaways(self) -> None:
        assert split_summary("Just prose.") == ("Just prose.", [])

    def test_takeaways_capped(self) -> None:
        items = "\n".join(f"{i}. item {i}" for i in range(1, 15))
        _, takeaways = split_summary(f"Prose\n\nKEY TAKEAWAYS:\n{items}")
        assert len(takeaways) == 10

    def test_execution_digest(self) -> None:
        execution = ExecutionOutput(
            request_id="r",
            request_context=make_context(),
            plan_version=1,
            errors=["Step 1: boom"],
            step_results=[
                StepResult(step_id="step-1", order=1, action="a", status=StepStatus.FAILED, error="Step 1: boom")
            ],
        )
        assert execution_digest(execution) == (
            "Execution encountered issues.\nSuccessful steps: 0/1\nErrors encountered: 1\nStep 1: boom"
        )


class TestSummaryStage:
    async def test_summary(self, request_store, stores) -> None:
        context = make_context()
        thought = await seed_thought(stores, context)
        await seed_execution(stores, context)
        llm = ScriptedLLM()
        stage = SummaryStage(request_store, stores, llm)

        output, _ = await stage.process({}, context)

        assert output.summary.startswith("There are two facilities")
        assert len(output.key_takeaways) == 2
        assert output.thoughts_summary == thoughts_digest(thought)
        assert output.thoughts_summary.startswith("The query was analyzed in 1 reasoning pass.")
        assert output.execution_summary == "Execution completed successfully.\nSuccessful steps: 1/1"
        prompt = llm.calls_for("summary")[0]
        assert "Hannover Sorting Plant" in prompt
        assert "Step 1 (list_facilities): completed" in prompt

    async def test_empty_response_falls_back_to_digest(self, request_store, stores) -> None:
        context = make_context()
        await seed_thought(stores, context)
        await seed_execution(stores, context)
        stage = SummaryStage(request_store, stores, ScriptedLLM({"summary": "KEY TAKEAWAYS:\n1. Done"}))

        output, _ = await stage.process({}, context)

        assert output.summary == "Execution completed successfully.\nSuccessful steps: 1/1"
        assert output.key_takeaways == ["Done"]

    async def test_failed_execution_in_prompt(self, request_store, stores) -> None:
        context = make_context()
        await seed_thought(stores, context)
        await seed_execution(stores, context, success=False)
        llm = ScriptedLLM()
        stage = SummaryStage(request_store, stores, llm)

        output, _ = await stage.process({}, context)

        assert "Error: Step 1: MCP server unreachable" in llm.calls_for("summary")[0]
        assert output.execution_summary.startswith("Execution encountered issues.")

    async def test_requires_execution(self, request_store, stores) -> None:
        context = make_context()
        await seed_thought(stores, context)
        stage = SummaryStage(request_store, stores, ScriptedLLM())

        with pytest.raises(MissingDependency) as exc_info:
            await stage.process({}, context)

        assert exc_info.value.missing == ["execution"]
