"""
Thought Stage

Reasons about the query before any planning happens. Runs one LLM call per
reasoning pass (the pass count comes from the router's verdict); each pass
after the first refines the previous one with a lower temperature.
"""

from __future__ import annotations

import re

from pydantic import Field

from agentchain.config import settings
from agentchain.exceptions import AgentChainError, ToolRegistryUnavailable
from agentchain.models.examples import SimilarExample, ThoughtExample
from agentchain.models.outputs import Thought, ThoughtOutput
from agentchain.models.request import RequestContext, StageName
from agentchain.services.example_memory import ExampleMemory
from agentchain.services.llm_client import LanguageModel
from agentchain.services.output_store import OutputStores
from agentchain.services.request_store import RequestContextStore
from agentchain.services.tool_registry import ToolRegistry
from agentchain.stages.base import BaseStage, StageInput
from agentchain.stages.parsing import extract_list, extract_section

PASS_TEMPERATURES = {1: 0.7, 2: 0.6, 3: 0.5}

INSIGHT_KEYWORDS = ("important", "key", "critical", "note", "must", "should", "requires")
MAX_KEY_INSIGHTS = 5

THOUGHT_SYSTEM_PROMPT = """You are a Thought Agent. Your job is to think through problems deeply before any action is taken.

Your thinking should be thorough, practical and tool-aware. Think like a senior engineer planning a solution: thorough but concise.

Provide your reasoning in this structured format:

REASONING: [Your detailed reasoning about the problem]

APPROACHES:
1. [First possible approach]
2. [Second possible approach]

CONSTRAINTS: [Key constraints, requirements, limitations]

ASSUMPTIONS: [Assumptions you are making]

UNCERTAINTIES: [What you are uncertain about]

TOOLS: [Which specific tools might help, with example arguments]"""


class ThoughtInput(StageInput):
    """Thought stage input."""

    reasoning_passes: int | None = Field(
        default=None, description="Pass count override (defaults to the router's verdict)"
    )
    focus_areas: list[str] = Field(default_factory=list, description="Areas to reason about more deeply")
    feedback: list[str] = Field(default_factory=list, description="Review feedback from the meta stage")


def thought_confidence(uncertainties: list[str]) -> float:
    """More uncertainties mean lower confidence, never below 0.3."""
    return max(0.3, 0.7 - min(0.3, 0.1 * len(uncertainties)))


def extract_key_insights(reasoning: str) -> list[str]:
    sentences = [s.strip() for s in re.split(r"[.!?]+", reasoning) if s.strip()]
    insights = [s for s in sentences if any(k in s.lower() for k in INSIGHT_KEYWORDS)]
    return insights[:MAX_KEY_INSIGHTS]


def parse_thought(response: str, reasoning_pass: int) -> Thought:
    """Split a sectioned response into a Thought. Missing sections become empty."""
    uncertainties = extract_list(extract_section(response, "UNCERTAINTIES"))
    return Thought(
        reasoning=extract_section(response, "REASONING") or response.strip(),
        approaches=extract_list(extract_section(response, "APPROACHES")),
        constraints=extract_list(extract_section(response, "CONSTRAINTS")),
        assumptions=extract_list(extract_section(response, "ASSUMPTIONS")),
        uncertainties=uncertainties,
        confidence=thought_confidence(uncertainties),
        reasoning_pass=reasoning_pass,
    )


class ThoughtStage(BaseStage[ThoughtInput, ThoughtOutput]):
    """Multi-pass reasoning about the query."""

    stage_name = StageName.THOUGHT
    input_model = ThoughtInput
    output_key = "thought"

    def __init__(
        self,
        request_store: RequestContextStore,
        stores: OutputStores,
        llm: LanguageModel,
        memory: ExampleMemory[ThoughtExample] | None = None,
        tool_registry: ToolRegistry | None = None,
    ) -> None:
        super().__init__(request_store, stores)
        self.llm = llm
        self.memory = memory
        self.tool_registry = tool_registry

    async def _few_shot(self, query: str) -> list[SimilarExample[ThoughtExample]]:
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
                self.recovered(
                    "example_usage_increment_failed",
                    example_id=match.example.id,
                    error=str(e),
                )
        return matches

    async def _tool_names(self) -> list[str]:
        if self.tool_registry is None:
            return []
        try:
            return await self.tool_registry.list_tools()
        except ToolRegistryUnavailable as e:
            self.logger.warning("tool_catalog_unavailable", error=str(e))
            return []

    def _build_prompt(
        self,
        query: str,
        data: ThoughtInput,
        context: RequestContext,
        examples: list[SimilarExample[ThoughtExample]],
        tools: list[str],
    ) -> str:
        prompt = f"User Query: {query}\n\n"
        if context.complexity is not None:
            prompt += f"Complexity Score: {context.complexity.score:.0%}\n\n"
        if tools:
            prompt += "Available Tools:\n" + "\n".join(f"- {name}" for name in tools) + "\n\n"
        if examples:
            prompt += "Similar Successful Examples:\n\n"
            for match in examples:
                example = match.example
                prompt += f'Example ({match.similarity:.0%} similar): "{example.query}"\n'
                if example.reasoning:
                    prompt += f"Reasoning: {example.reasoning[:200]}\n"
                if example.approaches:
                    prompt += f"Approach: {example.approaches[0]}\n"
                if example.recommended_tools:
                    prompt += f"Tools: {', '.join(example.recommended_tools)}\n"
                prompt += "\n"
        if data.focus_areas:
            prompt += "Focus Areas:\n" + "\n".join(f"- {a}" for a in data.focus_areas) + "\n\n"
        if data.feedback:
            prompt += "Review Feedback:\n" + "\n".join(f"- {f}" for f in data.feedback) + "\n\n"
        prompt += "Think through this problem deeply. Provide your reasoning in the structured format."
        return prompt

    @staticmethod
    def _build_refine_prompt(query: str, previous: Thought, pass_number: int, total: int) -> str:
        return (
            f"Previous thought (pass {pass_number - 1}/{total}):\n{previous.reasoning}\n\n"
            f"Approaches considered:\n" + "\n".join(previous.approaches) + "\n\n"
            f"Uncertainties identified:\n" + "\n".join(previous.uncertainties) + "\n\n"
            f"Original user query: {query}\n\n"
            "Think deeper. Refine your reasoning. Address the uncertainties. "
            "Challenge your assumptions and explore edge cases. "
            "Keep the structured format."
        )

    def _passes(self, data: ThoughtInput, context: RequestContext) -> int:
        requested = data.reasoning_passes
        if requested is None:
            requested = context.complexity.reasoning_passes if context.complexity else 1
        return max(1, min(3, requested))

    async def run(self, data: ThoughtInput, context: RequestContext) -> ThoughtOutput:
        query = self.resolve_query(data, context)
        total = self._passes(data, context)
        examples = await self._few_shot(query)
        tools = await self._tool_names()

        thoughts: list[Thought] = []
        responses: list[str] = []
        for pass_number in range(1, total + 1):
            if thoughts:
                prompt = self._build_refine_prompt(query, thoughts[-1], pass_number, total)
            else:
                prompt = self._build_prompt(query, data, context, examples, tools)

            response = await self.llm.invoke(
                prompt,
                max_tokens=settings.LLM_MAX_TOKENS,
                temperature=PASS_TEMPERATURES[pass_number],
                system_prompt=THOUGHT_SYSTEM_PROMPT,
            )
            if not response.strip():
                self.recovered("thought_response_empty", reasoning_pass=pass_number)
            thought = parse_thought(response, pass_number)
            thoughts.append(thought)
            responses.append(response)
            self.logger.debug(
                "thought_pass_completed",
                request_id=context.request_id,
                reasoning_pass=pass_number,
                approaches=len(thought.approaches),
                confidence=thought.confidence,
            )

        final = thoughts[-1]
        mentioned = [name for name in tools if any(name in r for r in responses)]

        return ThoughtOutput(
            request_id=context.request_id,
            request_context=context,
            thoughts=thoughts,
            primary_approach=final.approaches[0] if final.approaches else "Unknown approach",
            key_insights=extract_key_insights(final.reasoning),
            recommended_tools=mentioned,
            reasoning_pass=total,
            total_passes=total,
            confidence=final.confidence,
            few_shot_example_ids=[m.example.id for m in examples],
        )
