"""
Planner Stage

Turns the latest thought into an executable plan of tool calls. Asks for a
JSON plan and falls back to numbered-step text parsing when the response
holds no usable JSON. With feedback and a previous plan, it refines that
plan instead of planning from scratch.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import Field, ValidationError as PydanticValidationError

from agentchain.config import settings
from agentchain.exceptions import (
    AgentChainError,
    MalformedUpstreamOutput,
    MissingDependency,
    ToolRegistryUnavailable,
)
from agentchain.models.examples import PlanExample, SimilarExample
from agentchain.models.outputs import Plan, PlanOutput, PlanStep, ThoughtOutput
from agentchain.models.request import RequestContext, StageName
from agentchain.services.example_memory import ExampleMemory
from agentchain.services.llm_client import LanguageModel
from agentchain.services.output_store import OutputStores
from agentchain.services.request_store import RequestContextStore
from agentchain.services.tool_registry import ToolRegistry
from agentchain.stages.base import BaseStage, StageInput
from agentchain.stages.parsing import as_str_list, clamp, extract_json_object, extract_section, pick

PLAN_TEMPERATURE = 0.5
REFINE_TEMPERATURE = 0.4

TOOL_PREFIXES = ("functions.", "tool.")

PLANNER_SYSTEM_PROMPT = """You are a Planner Agent. You convert reasoning into a concrete, executable plan of tool calls.

Rules:
- Every step's "action" must be the EXACT name of an available tool
- Do not invent tools and do not use patterns like "multi_tool_use.*" or "functions.*"
- Parameters must be valid JSON objects with exact parameter names
- Use "dependencies" to reference earlier steps as "step-N"
- When a parameter value comes from an earlier step's result, set it to "EXTRACT_FROM_STEP_N"

You MUST respond with ONLY a valid JSON object in this format:
{
  "goal": "Clear statement of the objective",
  "steps": [
    {
      "order": 1,
      "description": "Clear step description",
      "action": "exact_tool_name",
      "parameters": {"parameter_name": "value"},
      "expected_outcome": "What should happen",
      "dependencies": []
    }
  ],
  "rationale": "Why this plan will work",
  "confidence": 0.85,
  "estimated_complexity": 0.6
}"""

_TEXT_STEP = re.compile(
    r"^[ \t]*(\d+)\.\s*([^\n]+)"
    r"(?:\n\s*Action:\s*([^\n]+))?"
    r"(?:\n\s*Parameters:\s*([^\n]+))?"
    r"(?:\n\s*Expected:\s*([^\n]+))?"
    r"(?:\n\s*Depends on:\s*([^\n]+))?",
    re.I | re.M,
)
_KV_PAIR = re.compile(r"(\w+):\s*([^\n,]+)")


class PlannerInput(StageInput):
    """Planner stage input."""

    feedback: list[str] = Field(
        default_factory=list, description="Critique/meta feedback; triggers refinement"
    )


def normalize_action(action: Any) -> str:
    """Strip ``functions.``/``tool.`` prefixes models like to add."""
    name = str(action or "").strip() or "unknown"
    for prefix in TOOL_PREFIXES:
        if name.startswith(prefix) and len(name) > len(prefix):
            return name[len(prefix):]
    return name


def _normalize_dependency(dep: Any) -> str | None:
    if isinstance(dep, bool):
        return None
    if isinstance(dep, int):
        return f"step-{dep}"
    if isinstance(dep, str):
        dep = dep.strip()
        if dep.isdigit():
            return f"step-{dep}"
        return dep or None
    return None


def estimate_complexity(steps: list[PlanStep]) -> float:
    """More steps means more complex, saturating at ten."""
    return min(1.0, len(steps) / 10)


def _order(value: Any, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return number if number >= 1 else fallback


def steps_from_json(raw_steps: list[Any]) -> list[PlanStep]:
    steps: list[PlanStep] = []
    for idx, raw in enumerate(raw_steps, start=1):
        if not isinstance(raw, dict):
            continue
        parameters = raw.get("parameters")
        raw_deps = raw.get("dependencies")
        dependencies = [
            d for d in (_normalize_dependency(x) for x in raw_deps) if d
        ] if isinstance(raw_deps, list) else []
        try:
            steps.append(
                PlanStep(
                    id=f"step-{idx}",
                    order=_order(raw.get("order"), idx),
                    description=str(raw.get("description") or ""),
                    action=normalize_action(raw.get("action")),
                    parameters=parameters if isinstance(parameters, dict) else {},
                    expected_outcome=str(
                        pick(raw, "expected_outcome", "expectedOutcome", default="Success")
                    ),
                    dependencies=dependencies,
                )
            )
        except PydanticValidationError:
            continue
    return steps


def _parse_parameters(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        decoded = json.loads(text)
    except ValueError:
        decoded = None
    if isinstance(decoded, dict):
        inner = decoded.get("value")
        if isinstance(inner, str):
            try:
                nested = json.loads(inner)
            except ValueError:
                nested = None
            if isinstance(nested, dict):
                return nested
        return decoded

    parameters: dict[str, Any] = {}
    for key, value in _KV_PAIR.findall(text):
        value = value.strip()
        try:
            parameters[key] = json.loads(value)
        except ValueError:
            parameters[key] = value.strip("\"'")
    return parameters


def steps_from_text(text: str) -> list[PlanStep]:
    """Parse ``N. description`` lines with optional Action/Parameters/Expected/Depends on."""
    steps: list[PlanStep] = []
    for idx, match in enumerate(_TEXT_STEP.finditer(text or ""), start=1):
        order = _order(match.group(1), idx)
        depends = (match.group(6) or "").strip()
        dependencies: list[str] = []
        if depends and depends.lower() not in ("none", "n/a"):
            dependencies = [
                d for d in (_normalize_dependency(x) for x in depends.split(",")) if d
            ]
        steps.append(
            PlanStep(
                id=f"step-{order}",
                order=order,
                description=match.group(2).strip(),
                action=normalize_action(match.group(3)),
                parameters=_parse_parameters((match.group(4) or "").strip()),
                expected_outcome=(match.group(5) or "Success").strip(),
                dependencies=dependencies,
            )
        )
    return steps


def parse_plan(response: str, fallback_goal: str, base_confidence: float) -> tuple[Plan, bool]:
    """
    Decode a plan response.

    Returns:
        The plan and whether the JSON path succeeded
    """
    try:
        data = extract_json_object(response)
        raw_steps = data.get("steps")
        if not isinstance(raw_steps, list) or not data.get("goal"):
            raise MalformedUpstreamOutput("Plan JSON is missing goal or steps")
        steps = steps_from_json(raw_steps)
        confidence = pick(data, "confidence")
        complexity = pick(data, "estimated_complexity", "estimatedComplexity")
        plan = Plan(
            goal=str(data["goal"]),
            steps=steps,
            estimated_complexity=clamp(complexity, default=estimate_complexity(steps)),
            confidence=clamp(confidence, default=base_confidence),
            rationale=str(data.get("rationale") or "") or None,
        )
        return plan, True
    except MalformedUpstreamOutput:
        pass

    steps_text = extract_section(response, "STEPS") or response
    steps = steps_from_text(steps_text)
    plan = Plan(
        goal=extract_section(response, "GOAL") or fallback_goal,
        steps=steps,
        estimated_complexity=estimate_complexity(steps),
        confidence=base_confidence,
        rationale=extract_section(response, "RATIONALE") or None,
    )
    return plan, False


def format_plan(plan: Plan) -> str:
    lines = [f"Goal: {plan.goal}", "Steps:"]
    for step in sorted(plan.steps, key=lambda s: s.order):
        lines.append(f"{step.order}. {step.description}")
        lines.append(f"- Action: {step.action}")
        if step.parameters:
            lines.append(f"- Parameters: {json.dumps(step.parameters)}")
        if step.dependencies:
            lines.append(f"- Depends on: {', '.join(step.dependencies)}")
    return "\n".join(lines)


class PlannerStage(BaseStage[PlannerInput, PlanOutput]):
    """Plan generation and refinement."""

    stage_name = StageName.PLANNER
    input_model = PlannerInput
    output_key = "plan"
    required_outputs = ("thought",)

    def __init__(
        self,
        request_store: RequestContextStore,
        stores: OutputStores,
        llm: LanguageModel,
        memory: ExampleMemory[PlanExample] | None = None,
        tool_registry: ToolRegistry | None = None,
    ) -> None:
        super().__init__(request_store, stores)
        self.llm = llm
        self.memory = memory
        self.tool_registry = tool_registry

    async def _few_shot(self, query: str) -> list[SimilarExample[PlanExample]]:
        if self.memory is None or not query or settings.FEW_SHOT_TOP_K <= 0:
            return []
        try:
            matches = await self.memory.find_similar(
                query, top_k=settings.FEW_SHOT_TOP_K, min_score=settings.FEW_SHOT_MIN_SCORE
            )
        except AgentChainError as e:
            self.recovered("few_shot_lookup_failed", error_type=type(e).__name__, error=str(e))
            return []

        for match in matches:
            try:
                await self.memory.increment_usage(match.example.id)
            except AgentChainError as e:
                self.recovered("example_usage_increment_failed", example_id=match.example.id, error=str(e))
        return matches

    async def _tool_names(self) -> list[str]:
        if self.tool_registry is None:
            return []
        try:
            return await self.tool_registry.list_tools()
        except ToolRegistryUnavailable as e:
            self.logger.warning("tool_catalog_unavailable", error=str(e))
            return []

    @staticmethod
    def _build_prompt(
        query: str,
        thought: ThoughtOutput,
        tools: list[str],
        examples: list[SimilarExample[PlanExample]],
    ) -> str:
        final = thought.thoughts[-1] if thought.thoughts else None
        prompt = f"User Query: {query}\n\n"
        if tools:
            prompt += "Available Tools:\n" + "\n".join(f"- {t}" for t in tools) + "\n\n"
        if examples:
            prompt += "Similar Successful Plans:\n\n"
            for match in examples:
                prompt += f'Example ({match.similarity:.0%} similar): "{match.example.query}"\n'
                for step in match.example.steps:
                    prompt += f"  {step.order}. {step.action}: {json.dumps(step.parameters)}\n"
                prompt += "\n"
        prompt += "Reasoning:\n"
        if final is not None:
            prompt += f"{final.reasoning}\n\n"
            if final.approaches:
                prompt += "Approaches:\n" + "\n".join(f"- {a}" for a in final.approaches) + "\n\n"
            if final.constraints:
                prompt += "Constraints:\n" + "\n".join(f"- {c}" for c in final.constraints) + "\n\n"
        if thought.recommended_tools:
            prompt += f"Recommended Tools: {', '.join(thought.recommended_tools)}\n\n"
        prompt += "Create a step-by-step plan. Respond with JSON only."
        return prompt

    @staticmethod
    def _build_refine_prompt(previous: Plan, feedback: list[str]) -> str:
        return (
            f"Original Plan:\n{format_plan(previous)}\n\n"
            "Feedback/Issues:\n" + ("\n".join(f"- {f}" for f in feedback) or "None") + "\n\n"
            "Refine this plan. Fix the issues. Respond with JSON only."
        )

    async def run(self, data: PlannerInput, context: RequestContext) -> PlanOutput:
        query = self.resolve_query(data, context)
        thought = await self.stores.thought.get_by_request_id(context.request_id)
        if thought is None:
            raise MissingDependency(self.stage_name.value, context.request_id, ["thought"])

        thought_confidences = [t.confidence for t in thought.thoughts] or [thought.confidence]
        base_confidence = clamp(sum(thought_confidences) / len(thought_confidences) * 0.9)

        tools = await self._tool_names()
        previous = await self.stores.plan.get_by_request_id(context.request_id)
        refining = bool(data.feedback) and previous is not None

        if refining:
            prompt = self._build_refine_prompt(previous.plan, data.feedback)
            temperature = REFINE_TEMPERATURE
            fallback_goal = previous.plan.goal
        else:
            examples = await self._few_shot(query)
            prompt = self._build_prompt(query, thought, tools, examples)
            temperature = PLAN_TEMPERATURE
            fallback_goal = query

        if tools:
            prompt += "\n\nAvailable tool names: " + ", ".join(tools)

        response = await self.llm.invoke(
            prompt,
            max_tokens=settings.LLM_MAX_TOKENS,
            temperature=temperature,
            system_prompt=PLANNER_SYSTEM_PROMPT,
        )
        plan, from_json = parse_plan(response, fallback_goal, base_confidence)
        if not from_json:
            self.recovered("plan_json_unparseable", steps=len(plan.steps))
        if refining and plan.rationale is None:
            plan = plan.model_copy(update={"rationale": "Plan refined based on feedback."})

        self.logger.info(
            "plan_generated",
            request_id=context.request_id,
            steps=len(plan.steps),
            refined=refining,
            confidence=round(plan.confidence, 3),
        )
        return PlanOutput(
            request_id=context.request_id,
            request_context=context,
            plan=plan,
            refined_from_version=previous.version if refining else None,
            feedback=as_str_list(data.feedback) if refining else [],
        )
