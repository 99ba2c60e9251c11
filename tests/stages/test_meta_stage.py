"""Tests for the meta stage."""

from __future__ import annotations

import json

import pytest

from agentchain.exceptions import ValidationError
from agentchain.models.outputs import CritiqueIssue, CritiqueOutput, IssueCategory, Recommendation, Severity
from agentchain.stages.meta import MetaStage
from tests.fakes import META_REPLAN, ScriptedLLM, make_context, seed_plan, seed_thought

NO_CHANGE = json.dumps(
    {
        "reasoning_quality": 0.75,
        "should_replan": False,
        "should_deepen_reasoning": False,
        "reasoning_depth_recommendation": 1,
        "assessment": "Reasoning is adequate",
    }
)


async def seed_critique(stores, context, score: float, recommendation: Recommendation) -> CritiqueOutput:
    issues = []
    if recommendation == Recommendation.REJECT:
        issues.append(
            CritiqueIssue(category=IssueCategory.LOGIC, severity=Severity.HIGH, description="Wrong tool")
        )
    return await stores.critique.save(
        CritiqueOutput(
            request_id=context.request_id,
            request_context=context,
            plan_version=1,
            overall_score=score,
            recommendation=recommendation,
            issues=issues,
        )
    )


@pytest.fixture
def reviewed(stores):
    """Context with a thought, a plan and a critique on file."""

    async def _seed(score: float = 0.9, recommendation: Recommendation = Recommendation.APPROVE):
        context = make_context()
        await seed_thought(stores, context)
        await seed_plan(stores, context)
        await seed_critique(stores, context, score, recommendation)
        return context

    return _seed


class TestMetaStage:
    """Replan and deepen decisions."""

    async def test_rejected_plan_triggers_replan(self, request_store, stores, reviewed) -> None:
        context = await reviewed(0.2, Recommendation.REJECT)
        stage = MetaStage(request_store, stores, ScriptedLLM({"meta": NO_CHANGE}))

        output, _ = await stage.process({}, context)

        assert output.should_replan is True
        assert output.recommended_actions[0] == "Replan: the critic rejected the plan"
        assert output.reasoning_quality == 0.75

    async def test_low_critique_score_triggers_replan(self, request_store, stores, reviewed) -> None:
        context = await reviewed(0.45, Recommendation.REVISE)
        stage = MetaStage(request_store, stores, ScriptedLLM({"meta": NO_CHANGE}))

        output, _ = await stage.process({}, context)

        assert output.should_replan is True
        assert output.recommended_actions[0].startswith("Replan: critique score 0.45")

    async def test_llm_may_add_replan(self, request_store, stores, reviewed) -> None:
        context = await reviewed()
        stage = MetaStage(request_store, stores, ScriptedLLM({"meta": META_REPLAN}))

        output, _ = await stage.process({}, context)

        assert output.should_replan is True
        assert output.replan_strategy == "Use list_facilities directly"
        assert output.recommended_actions == ["Address the critic's logic issue"]

    async def test_llm_cannot_veto_rules(self, request_store, stores, reviewed) -> None:
        context = await reviewed(0.2, Recommendation.REJECT)
        stage = MetaStage(request_store, stores, ScriptedLLM({"meta": NO_CHANGE}))

        output, _ = await stage.process({"confidence_score": 0.2}, context)

        assert output.should_replan is True
        assert output.should_deepen_reasoning is True

    async def test_low_confidence_deepens(self, request_store, stores, reviewed) -> None:
        context = await reviewed()
        stage = MetaStage(request_store, stores, ScriptedLLM({"meta": NO_CHANGE}))

        output, _ = await stage.process({"confidence_score": 0.3}, context)

        assert output.should_deepen_reasoning is True
        assert output.should_replan is False
        assert output.reasoning_depth_recommendation == 2
        assert output.confidence_score == 0.3
        assert any(a.startswith("Deepen reasoning") for a in output.recommended_actions)

    async def test_camel_case_flags(self, request_store, stores, reviewed) -> None:
        context = await reviewed()
        response = json.dumps({"reasoningQuality": 0.5, "shouldDeepenReasoning": "yes"})
        stage = MetaStage(request_store, stores, ScriptedLLM({"meta": response}))

        output, _ = await stage.process({}, context)

        assert output.should_deepen_reasoning is True
        assert output.reasoning_quality == 0.5

    async def test_unparseable_response_applies_rules(self, request_store, stores, reviewed) -> None:
        context = await reviewed(0.2, Recommendation.REJECT)
        stage = MetaStage(request_store, stores, ScriptedLLM({"meta": "I think it is fine."}))

        output, _ = await stage.process({}, context)

        assert output.should_replan is True
        assert output.should_deepen_reasoning is False
        assert output.reasoning_quality == 0.2
        assert output.assessment == "Meta assessment could not be parsed; deterministic rules applied."

    async def test_loads_outputs_into_prompt(self, request_store, stores, reviewed) -> None:
        context = await reviewed(0.2, Recommendation.REJECT)
        llm = ScriptedLLM({"meta": NO_CHANGE})
        stage = MetaStage(request_store, stores, llm)

        await stage.process({"confidence_score": 0.5}, context)

        prompt = llm.calls_for("meta")[0]
        assert "Thought Agent Output:" in prompt
        assert "Planner Agent Output (v1):" in prompt
        assert "- Recommendation: reject" in prompt
        assert "- [high] logic: Wrong tool" in prompt
        assert "Overall Confidence: 0.50" in prompt

    async def test_without_upstream_outputs(self, request_store, stores) -> None:
        stage = MetaStage(request_store, stores, ScriptedLLM({"meta": "???"}))

        output, _ = await stage.process({}, make_context())

        assert output.should_replan is False
        assert output.reasoning_quality == 0.5
        assert output.reasoning_depth_recommendation == 1

    async def test_confidence_out_of_range_rejected(self, request_store, stores) -> None:
        stage = MetaStage(request_store, stores, ScriptedLLM())
        with pytest.raises(ValidationError):
            await stage.process({"confidence_score": 1.5}, make_context())
