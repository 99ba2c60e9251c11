"""Tests for the planner stage."""

from __future__ import annotations

import json

import pytest

from agentchain.models.examples import PlanExample
from agentchain.models.outputs import PlanStep
from agentchain.stages.planner import PlannerStage, normalize_action, parse_plan, steps_from_text
from tests.fakes import PLAN_RESPONSE, ScriptedLLM, make_context, seed_plan, seed_thought

TEXT_PLAN = """GOAL: List the facilities

STEPS:
1. Fetch every facility
Action: list_facilities
Parameters: {"limit": 5}
Expected: A facility list
2. Look up Hannover
Action: functions.get_facility
Parameters: facility_id: HAN
Depends on: 1

RATIONALE: Two calls are enough"""


class TestParsePlan:
    def test_json_plan(self) -> None:
        plan, from_json = parse_plan(PLAN_RESPONSE, "fallback", 0.5)

        assert from_json is True
        assert plan.goal == "List all facilities"
        assert [s.action for s in plan.steps] == ["list_facilities"]
        assert plan.steps[0].id == "step-1"
        assert plan.confidence == 0.85

    def test_json_without_goal_falls_back_to_text(self) -> None:
        plan, from_json = parse_plan('{"steps": []}', "fallback goal", 0.5)
        assert from_json is False
        assert plan.goal == "fallback goal"
        assert plan.confidence == 0.5

    def test_text_plan(self) -> None:
        plan, from_json = parse_plan(TEXT_PLAN, "fallback", 0.54)

        assert from_json is False
        assert plan.goal == "List the facilities"
        assert plan.rationale == "Two calls are enough"
        assert plan.confidence == 0.54
        first, second = plan.steps
        assert first.action == "list_facilities"
        assert first.parameters == {"limit": 5}
        assert first.expected_outcome == "A facility list"
        assert second.action == "get_facility"
        assert second.parameters == {"facility_id": "HAN"}
        assert second.dependencies == ["step-1"]

    def test_json_dependencies_and_prefixes(self) -> None:
        response = json.dumps(
            {
                "goal": "g",
                "steps": [
                    {"order": 1, "action": "tool.list_facilities"},
                    {"order": 2, "action": "get_facility", "dependencies": [1, "step-1", True]},
                    "not a step",
                ],
            }
        )
        plan, _ = parse_plan(response, "fallback", 0.5)

        assert [s.action for s in plan.steps] == ["list_facilities", "get_facility"]
        assert plan.steps[1].dependencies == ["step-1", "step-1"]
        assert plan.estimated_complexity == pytest.approx(0.2)

    @pytest.mark.parametrize(
        "raw,expected",
        [("functions.list_facilities", "list_facilities"), ("", "unknown"), (None, "unknown"), ("functions.", "functions.")],
    )
    def test_normalize_action(self, raw, expected: str) -> None:
        assert normalize_action(raw) == expected

    def test_steps_from_text_without_action(self) -> None:
        steps = steps_from_text("1. Do something sensible")
        assert steps == [
            PlanStep(
                id="step-1",
                order=1,
                description="Do something sensible",
                action="unknown",
                expected_outcome="Success",
            )
        ]


class TestPlannerStage:
    async def test_plan_from_thought(self, request_store, stores, tool_registry) -> None:
        context = make_context()
        await seed_thought(stores, context)
        llm = ScriptedLLM()
        stage = PlannerStage(request_store, stores, llm, tool_registry=tool_registry)

        output, _ = await stage.process({}, context)

        assert output.version == 1
        assert output.plan.goal == "List all facilities"
        assert output.refined_from_version is None
        prompt = llm.calls_for("planner")[0]
        assert "Available tool names: list_facilities, get_facility, analyze_shipment_risk" in prompt
        assert "Call list_facilities" in prompt
        assert llm.calls[0][2] == 0.5

    async def test_text_fallback_confidence_from_thought(self, request_store, stores) -> None:
        context = make_context()
        await seed_thought(stores, context, confidence=0.6)
        stage = PlannerStage(request_store, stores, ScriptedLLM({"planner": TEXT_PLAN}))

        output, _ = await stage.process({}, context)

        assert output.plan.confidence == pytest.approx(0.54)
        assert len(output.plan.steps) == 2

    async def test_refinement(self, request_store, stores) -> None:
        context = make_context()
        await seed_thought(stores, context)
        await seed_plan(stores, context)
        llm = ScriptedLLM()
        stage = PlannerStage(request_store, stores, llm)

        output, _ = await stage.process({"feedback": ["[high] Wrong tool. Suggestion: use list_facilities"]}, context)

        assert output.version == 2
        assert output.refined_from_version == 1
        assert output.feedback == ["[high] Wrong tool. Suggestion: use list_facilities"]
        prompt = llm.calls_for("planner")[0]
        assert prompt.startswith("Original Plan:")
        assert "- [high] Wrong tool" in prompt
        assert llm.calls[0][2] == 0.4

        versions = await stores.plan.get_all_versions_by_request_id(context.request_id)
        assert [v.version for v in versions] == [1, 2]

    async def test_feedback_without_previous_plan_plans_fresh(self, request_store, stores) -> None:
        context = make_context()
        await seed_thought(stores, context)
        llm = ScriptedLLM()
        stage = PlannerStage(request_store, stores, llm)

        output, _ = await stage.process({"feedback": ["be careful"]}, context)

        assert output.refined_from_version is None
        assert output.feedback == []

    async def test_few_shot_plans_in_prompt(self, request_store, stores, plan_memory) -> None:
        await plan_memory.store(
            PlanExample(
                query="Show me all facilities",
                goal="List",
                steps=[PlanStep(id="step-1", order=1, action="list_facilities")],
            )
        )
        context = make_context()
        await seed_thought(stores, context)
        llm = ScriptedLLM()
        stage = PlannerStage(request_store, stores, llm, memory=plan_memory)

        await stage.process({}, context)

        assert "Similar Successful Plans" in llm.calls_for("planner")[0]

    async def test_few_shot_match_counts_usage(self, request_store, stores, plan_memory) -> None:
        example = await plan_memory.store(
            PlanExample(
                query="Show me all facilities",
                goal="List",
                steps=[PlanStep(id="step-1", order=1, action="list_facilities")],
            )
        )
        context = make_context()
        await seed_thought(stores, context)
        stage = PlannerStage(request_store, stores, ScriptedLLM(), memory=plan_memory)

        await stage.process({}, context)

        stored = await plan_memory.get(example.id)
        assert stored is not None
        assert stored.usage_count == 1
