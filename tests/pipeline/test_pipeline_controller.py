"""End-to-end tests for the pipeline controller."""

from __future__ import annotations

import json

import pytest

from agentchain.exceptions import LLMUnavailable, ReplanLimitExceeded, ValidationError
from agentchain.models.outputs import Recommendation
from agentchain.models.request import RequestStatus
from tests.fakes import CRITIQUE_APPROVE, CRITIQUE_REJECT, ScriptedLLM

QUERY = "Show me all facilities"

CRITIQUE_REVISE = json.dumps({"overall_score": 0.7, "issues": [], "rationale": "Could be sharper"})

META_DEEPEN = json.dumps(
    {
        "reasoning_quality": 0.6,
        "should_replan": False,
        "should_deepen_reasoning": True,
        "reasoning_depth_recommendation": 2,
        "focus_areas": ["inactive sites"],
        "recommended_actions": ["Consider inactive facilities"],
        "assessment": "Reasoning is shallow",
    }
)

META_CONTINUE = json.dumps(
    {"reasoning_quality": 0.8, "should_replan": False, "should_deepen_reasoning": False}
)


class TestApprovedRun:
    """The critic approves the first plan."""

    async def test_full_chain(self, build_controller, request_store, tool_registry) -> None:
        llm = ScriptedLLM()
        controller = build_controller(llm)

        result = await controller.run(QUERY)

        assert result.completed is True
        assert result.context is not None
        assert result.context.agent_chain == [
            "complexity-detector",
            "thought-agent",
            "planner-agent",
            "critic-agent",
            "executor-agent",
            "summary-agent",
        ]
        assert result.context.status == RequestStatus.COMPLETED
        assert result.meta is None
        assert result.replans == 0
        assert result.confidence is not None
        assert result.confidence.weighted_confidence == pytest.approx(0.8)
        assert result.execution.overall_success is True
        assert result.summary.summary.startswith("There are two facilities")
        assert tool_registry.calls == [("list_facilities", {})]
        assert llm.calls_for("meta") == []

        stored = await request_store.get(result.request_id)
        assert stored is not None
        assert stored.status == RequestStatus.COMPLETED
        assert stored.agent_chain == result.context.agent_chain

    async def test_caller_request_id(self, build_controller) -> None:
        result = await build_controller(ScriptedLLM()).run(QUERY, request_id="req-42")
        assert result.request_id == "req-42"
        assert result.summary.request_id == "req-42"

    async def test_confidence_at_trigger_skips_meta(self, build_controller) -> None:
        llm = ScriptedLLM()
        controller = build_controller(llm, meta_confidence_trigger=0.8)

        result = await controller.run(QUERY)

        assert result.confidence.weighted_confidence == pytest.approx(0.8)
        assert result.meta is None
        assert llm.calls_for("meta") == []

    async def test_low_confidence_approval_consults_meta(self, build_controller) -> None:
        llm = ScriptedLLM({"meta": META_CONTINUE})
        controller = build_controller(llm, meta_confidence_trigger=0.9)

        result = await controller.run(QUERY)

        assert result.completed is True
        assert result.meta is not None
        assert "meta-agent" in result.context.agent_chain
        assert result.replans == 0


class TestReviewLoop:
    """Replanning and deepening driven by the meta stage."""

    async def test_reject_then_replan(self, build_controller, stores) -> None:
        llm = ScriptedLLM({"critic": [CRITIQUE_REJECT, CRITIQUE_APPROVE]})
        controller = build_controller(llm)

        result = await controller.run(QUERY)

        assert result.completed is True
        assert result.replans == 1
        assert result.plan.version == 2
        assert result.plan.refined_from_version == 1
        assert result.critique.recommendation == Recommendation.APPROVE
        assert result.critique.plan_version == 2
        assert result.execution.plan_version == 2
        assert result.context.agent_chain == [
            "complexity-detector",
            "thought-agent",
            "planner-agent",
            "critic-agent",
            "meta-agent",
            "executor-agent",
            "summary-agent",
        ]

        refine_prompt = llm.calls_for("planner")[1]
        assert refine_prompt.startswith("Original Plan:")
        assert "The plan does not answer the question" in refine_prompt
        assert "Use list_facilities directly" in refine_prompt

        versions = await stores.plan.get_all_versions_by_request_id(result.request_id)
        assert [v.version for v in versions] == [1, 2]

    async def test_replan_cap(self, build_controller, stores, request_store) -> None:
        llm = ScriptedLLM({"critic": CRITIQUE_REJECT})
        controller = build_controller(llm, max_replans=2)

        with pytest.raises(ReplanLimitExceeded) as exc_info:
            await controller.run(QUERY, request_id="req-cap")

        assert exc_info.value.replans == 2
        versions = await stores.plan.get_all_versions_by_request_id("req-cap")
        assert [v.version for v in versions] == [1, 2, 3]
        assert await stores.execution.count() == 0

        stored = await request_store.get("req-cap")
        assert stored is not None
        assert stored.status == RequestStatus.FAILED

    async def test_replan_cap_survives_resume(self, build_controller, stores) -> None:
        llm = ScriptedLLM({"critic": CRITIQUE_REJECT})
        controller = build_controller(llm, max_replans=2)
        with pytest.raises(ReplanLimitExceeded):
            await controller.run(QUERY, request_id="req-cap")

        loaded = await controller.load("req-cap")
        assert loaded.replans == 2
        assert loaded.deepenings == 0

        for _ in range(3):
            with pytest.raises(ReplanLimitExceeded) as exc_info:
                await controller.resume("req-cap")
            assert exc_info.value.replans == 2

        versions = await stores.plan.get_all_versions_by_request_id("req-cap")
        assert [v.version for v in versions] == [1, 2, 3]
        assert len(llm.calls_for("planner")) == 3

    async def test_execute_rejected_plan_when_configured(self, build_controller) -> None:
        llm = ScriptedLLM({"critic": CRITIQUE_REJECT})
        controller = build_controller(llm, max_replans=0, execute_rejected_plans=True)

        result = await controller.run(QUERY)

        assert result.completed is True
        assert result.critique.recommendation == Recommendation.REJECT
        assert result.execution is not None

    async def test_deepen_reasoning(self, build_controller, stores) -> None:
        llm = ScriptedLLM({"critic": [CRITIQUE_REVISE, CRITIQUE_APPROVE], "meta": META_DEEPEN})
        controller = build_controller(llm)

        result = await controller.run(QUERY)

        assert result.completed is True
        assert result.deepenings == 1
        assert result.replans == 0
        assert result.thought.version == 2
        assert result.thought.total_passes >= 2
        assert result.plan.version == 2
        assert any("- inactive sites" in p for p in llm.calls_for("thought"))

        thoughts = await stores.thought.get_all_versions_by_request_id(result.request_id)
        assert len(thoughts) == 2

    async def test_deepen_cap(self, build_controller) -> None:
        llm = ScriptedLLM({"critic": CRITIQUE_REVISE, "meta": META_DEEPEN})
        controller = build_controller(llm, max_deepenings=1)

        result = await controller.run(QUERY)

        assert result.completed is True
        assert result.deepenings == 1
        assert result.critique.recommendation == Recommendation.REVISE


class TestHaltAndResume:
    async def test_stop_after(self, build_controller, request_store) -> None:
        controller = build_controller(ScriptedLLM())

        result = await controller.run(QUERY, request_id="req-halt", stop_after="planner-agent")

        assert result.halted_after == "planner-agent"
        assert result.completed is False
        assert result.plan is not None
        assert result.critique is None
        stored = await request_store.get("req-halt")
        assert stored.agent_chain == ["complexity-detector", "thought-agent", "planner-agent"]

    async def test_resume_continues_to_done(self, build_controller) -> None:
        controller = build_controller(ScriptedLLM())
        await controller.run(QUERY, request_id="req-halt", stop_after="critic-agent")

        llm = ScriptedLLM()
        result = await build_controller(llm).resume("req-halt")

        assert result.completed is True
        assert result.plan.version == 1
        assert result.context.agent_chain[-2:] == ["executor-agent", "summary-agent"]
        assert llm.calls_for("thought") == []
        assert llm.calls_for("planner") == []

    async def test_resume_finished_request_is_noop(self, build_controller) -> None:
        await build_controller(ScriptedLLM()).run(QUERY, request_id="req-done")

        llm = ScriptedLLM()
        result = await build_controller(llm).resume("req-done")

        assert result.summary is not None
        assert llm.calls == []

    async def test_resume_unknown_request(self, build_controller) -> None:
        with pytest.raises(ValidationError):
            await build_controller(ScriptedLLM()).resume("nope")

    async def test_unknown_stop_stage(self, build_controller, request_store) -> None:
        with pytest.raises(ValidationError):
            await build_controller(ScriptedLLM()).run(QUERY, stop_after="lunch")
        assert await request_store.count() == 0


class TestFailures:
    async def test_stage_failure_marks_request_failed(self, build_controller, request_store, stores) -> None:
        llm = ScriptedLLM({"planner": LLMUnavailable("model offline")})

        with pytest.raises(LLMUnavailable):
            await build_controller(llm).run(QUERY, request_id="req-fail")

        stored = await request_store.get("req-fail")
        assert stored.status == RequestStatus.FAILED
        assert stored.agent_chain[-1] == "planner-agent"
        assert await stores.thought.exists("req-fail")
        assert not await stores.plan.exists("req-fail")

    async def test_resume_after_failure(self, build_controller) -> None:
        with pytest.raises(LLMUnavailable):
            await build_controller(ScriptedLLM({"planner": LLMUnavailable("x")})).run(
                QUERY, request_id="req-retry"
            )

        result = await build_controller(ScriptedLLM()).resume("req-retry")

        assert result.completed is True
        assert result.context.status == RequestStatus.COMPLETED
