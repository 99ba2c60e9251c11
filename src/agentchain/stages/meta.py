"""
Meta Stage

Self-review layer. Assesses the reasoning so far and decides whether the
pipeline should go back to the planner (replan) or to the thought stage
(deepen). Deterministic rules always apply; the LLM assessment can only add
to them.

    should_replan  = critique rejects
                     or critique score < replan floor
                     or the LLM asks for a replan
    should_deepen  = confidence < deepen floor
                     or the LLM asks for deeper reasoning
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from agentchain.config import settings
from agentchain.exceptions import MalformedUpstreamOutput
from agentchain.models.outputs import (
    CritiqueOutput,
    MetaOutput,
    PlanOutput,
    Recommendation,
    ThoughtOutput,
)
from agentchain.models.request import RequestContext, StageName
from agentchain.services.llm_client import LanguageModel
from agentchain.services.output_store import OutputStores
from agentchain.services.request_store import RequestContextStore
from agentchain.stages.base import BaseStage, StageInput
from agentchain.stages.parsing import as_str_list, clamp, extract_json_object, pick
from agentchain.stages.planner import format_plan

META_TEMPERATURE = 0.4

META_SYSTEM_PROMPT = """You are a Meta Agent, a self-awareness layer that evaluates reasoning quality and tells the orchestrator what to do next.

Assess:
- Logic quality: is the thought process sound?
- Completeness: are all aspects of the problem considered?
- Confidence alignment: does the stated confidence match the actual quality?
- Plan soundness: is the plan feasible and properly sequenced?
- Tool alignment: do the tools in the plan match the tools the reasoning recommended?

You MUST respond with ONLY a valid JSON object in this format:
{
  "reasoning_quality": 0.0-1.0,
  "should_replan": true|false,
  "should_deepen_reasoning": true|false,
  "replan_strategy": "What to change in the plan",
  "reasoning_depth_recommendation": 1-3,
  "focus_areas": ["area1"],
  "recommended_actions": ["action1"],
  "assessment": "Human-readable assessment"
}"""


class MetaInput(StageInput):
    """Meta stage input. Absent outputs are loaded from the stores."""

    thoughts: ThoughtOutput | None = Field(default=None)
    plan: PlanOutput | None = Field(default=None)
    critique: CritiqueOutput | None = Field(default=None)
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return False


def _depth(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return max(1, min(3, int(value)))
    except (TypeError, ValueError):
        return default


class MetaStage(BaseStage[MetaInput, MetaOutput]):
    """Reasoning review and loop decision."""

    stage_name = StageName.META
    input_model = MetaInput
    output_key = "meta"

    def __init__(
        self,
        request_store: RequestContextStore,
        stores: OutputStores,
        llm: LanguageModel,
        replan_score_floor: float | None = None,
        deepen_confidence_floor: float | None = None,
    ) -> None:
        super().__init__(request_store, stores)
        self.llm = llm
        self.replan_score_floor = (
            replan_score_floor if replan_score_floor is not None else settings.META_REPLAN_SCORE_FLOOR
        )
        self.deepen_confidence_floor = (
            deepen_confidence_floor
            if deepen_confidence_floor is not None
            else settings.META_DEEPEN_CONFIDENCE_FLOOR
        )

    async def _load(self, data: MetaInput, request_id: str) -> MetaInput:
        updates: dict[str, Any] = {}
        if data.thoughts is None:
            updates["thoughts"] = await self.stores.thought.get_by_request_id(request_id)
        if data.plan is None:
            updates["plan"] = await self.stores.plan.get_by_request_id(request_id)
        if data.critique is None:
            updates["critique"] = await self.stores.critique.get_by_request_id(request_id)
        return data.model_copy(update=updates) if updates else data

    @staticmethod
    def _build_prompt(query: str, data: MetaInput) -> str:
        prompt = f"User Query: {query}\n\n"
        if data.thoughts is not None:
            prompt += "Thought Agent Output:\n"
            prompt += f"- Confidence: {data.thoughts.confidence:.2f}\n"
            prompt += f"- Passes: {data.thoughts.reasoning_pass}/{data.thoughts.total_passes}\n"
            if data.thoughts.primary_approach:
                prompt += f"- Primary Approach: {data.thoughts.primary_approach}\n"
            if data.thoughts.key_insights:
                prompt += f"- Key Insights: {'; '.join(data.thoughts.key_insights)}\n"
            if data.thoughts.recommended_tools:
                prompt += f"- Recommended Tools: {', '.join(data.thoughts.recommended_tools)}\n"
            prompt += "\n"
        if data.plan is not None:
            prompt += f"Planner Agent Output (v{data.plan.version}):\n{format_plan(data.plan.plan)}\n\n"
        if data.critique is not None:
            prompt += "Critic Agent Output:\n"
            prompt += f"- Score: {data.critique.overall_score:.2f}\n"
            prompt += f"- Recommendation: {data.critique.recommendation.value}\n"
            for issue in data.critique.issues:
                prompt += f"- [{issue.severity.value}] {issue.category.value}: {issue.description}\n"
            prompt += "\n"
        if data.confidence_score is not None:
            prompt += f"Overall Confidence: {data.confidence_score:.2f}\n\n"
        prompt += "Assess the reasoning quality and decide the next step. Respond with JSON only."
        return prompt

    async def run(self, data: MetaInput, context: RequestContext) -> MetaOutput:
        data = await self._load(data, context.request_id)
        query = self.resolve_query(data, context)
        critique = data.critique
        current_passes = data.thoughts.total_passes if data.thoughts else 1

        response = await self.llm.invoke(
            self._build_prompt(query, data),
            max_tokens=settings.LLM_MAX_TOKENS,
            temperature=META_TEMPERATURE,
            system_prompt=META_SYSTEM_PROMPT,
        )
        try:
            assessment: dict[str, Any] | None = extract_json_object(response)
        except MalformedUpstreamOutput as e:
            self.recovered("meta_response_unparseable", error=str(e))
            assessment = None

        fallback_quality = critique.overall_score if critique is not None else 0.5
        actions: list[str] = []

        rejected = critique is not None and critique.recommendation == Recommendation.REJECT
        low_score = critique is not None and critique.overall_score < self.replan_score_floor
        low_confidence = (
            data.confidence_score is not None
            and data.confidence_score < self.deepen_confidence_floor
        )
        if rejected:
            actions.append("Replan: the critic rejected the plan")
        elif low_score:
            actions.append(
                f"Replan: critique score {critique.overall_score:.2f} is below {self.replan_score_floor:.2f}"
            )
        if low_confidence:
            actions.append(
                f"Deepen reasoning: confidence {data.confidence_score:.2f} is below "
                f"{self.deepen_confidence_floor:.2f}"
            )

        if assessment is None:
            should_replan = rejected or low_score
            should_deepen = low_confidence
            quality = fallback_quality
            text = "Meta assessment could not be parsed; deterministic rules applied."
            strategy = None
            focus_areas: list[str] = []
            depth = current_passes
        else:
            should_replan = rejected or low_score or _as_bool(
                pick(assessment, "should_replan", "shouldReplan")
            )
            should_deepen = low_confidence or _as_bool(
                pick(assessment, "should_deepen_reasoning", "shouldDeepenReasoning")
            )
            quality = clamp(
                pick(assessment, "reasoning_quality", "reasoningQuality"), default=fallback_quality
            )
            text = str(pick(assessment, "assessment", default="") or "")
            strategy = pick(assessment, "replan_strategy", "replanStrategy")
            focus_areas = as_str_list(pick(assessment, "focus_areas", "focusAreas"))
            actions.extend(as_str_list(pick(assessment, "recommended_actions", "recommendedActions")))
            depth = _depth(
                pick(assessment, "reasoning_depth_recommendation", "reasoningDepthRecommendation"),
                current_passes,
            )

        if should_deepen:
            depth = max(depth, min(3, current_passes + 1))

        self.logger.info(
            "meta_assessed",
            request_id=context.request_id,
            reasoning_quality=round(quality, 3),
            should_replan=should_replan,
            should_deepen_reasoning=should_deepen,
        )
        return MetaOutput(
            request_id=context.request_id,
            request_context=context,
            reasoning_quality=quality,
            should_replan=should_replan,
            should_deepen_reasoning=should_deepen,
            recommended_actions=actions,
            reasoning_depth_recommendation=depth,
            replan_strategy=str(strategy) if strategy else None,
            focus_areas=focus_areas,
            assessment=text,
            confidence_score=data.confidence_score,
        )
