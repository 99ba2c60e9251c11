"""
Summary Stage

Final user-facing answer. One LLM call over the query, the latest thought
and the latest execution; the reasoning and execution digests are built
deterministically.
"""

from __future__ import annotations

import json
import re

from agentchain.config import settings
from agentchain.exceptions import MissingDependency
from agentchain.models.outputs import ExecutionOutput, StepStatus, SummaryOutput, ThoughtOutput
from agentchain.models.request import RequestContext, StageName
from agentchain.services.llm_client import LanguageModel
from agentchain.services.output_store import OutputStores
from agentchain.services.request_store import RequestContextStore
from agentchain.stages.base import BaseStage, StageInput
from agentchain.stages.parsing import extract_list, extract_section

SUMMARY_TEMPERATURE = 0.7
MAX_RESULT_CHARS = 1500
MAX_TAKEAWAYS = 10

SUMMARY_SYSTEM_PROMPT = """You are a Summary Agent. You write the final answer the user sees.

Write directly to the user:
- Answer their question; do not describe what "the user requested" or what "the system analyzed"
- Present findings and insights clearly
- Use natural, professional prose

After the prose, add a section:

KEY TAKEAWAYS:
1. [First takeaway]
2. [Second takeaway]"""

_TAKEAWAYS_HEADER = re.compile(r"^[ \t]*KEY TAKEAWAYS:", re.M)


class SummaryInput(StageInput):
    """Summary stage input."""


def split_summary(response: str) -> tuple[str, list[str]]:
    """Separate prose from the ``KEY TAKEAWAYS:`` list."""
    takeaways = extract_list(extract_section(response, "KEY TAKEAWAYS"))[:MAX_TAKEAWAYS]
    match = _TAKEAWAYS_HEADER.search(response)
    prose = response[: match.start()] if match else response
    return prose.strip(), takeaways


def thoughts_digest(thought: ThoughtOutput) -> str:
    count = len(thought.thoughts)
    lines = [
        f"The query was analyzed in {count} reasoning {'pass' if count == 1 else 'passes'}.",
    ]
    if thought.primary_approach:
        lines.append(f"Primary approach: {thought.primary_approach}")
    if thought.key_insights:
        lines.append("Key insights:")
        lines.extend(f"- {insight}" for insight in thought.key_insights)
    if thought.recommended_tools:
        lines.append(f"Recommended tools: {', '.join(thought.recommended_tools)}")
    return "\n".join(lines)


def execution_digest(execution: ExecutionOutput) -> str:
    total = len(execution.step_results)
    completed = sum(1 for r in execution.step_results if r.status == StepStatus.COMPLETED)
    lines = [
        f"Execution {'completed successfully' if execution.overall_success else 'encountered issues'}.",
        f"Successful steps: {completed}/{total}",
    ]
    if execution.errors:
        lines.append(f"Errors encountered: {len(execution.errors)}")
        lines.extend(execution.errors[:3])
    return "\n".join(lines)


class SummaryStage(BaseStage[SummaryInput, SummaryOutput]):
    """Final answer generation."""

    stage_name = StageName.SUMMARY
    input_model = SummaryInput
    output_key = "summary"
    required_outputs = ("thought", "execution")

    def __init__(
        self,
        request_store: RequestContextStore,
        stores: OutputStores,
        llm: LanguageModel,
    ) -> None:
        super().__init__(request_store, stores)
        self.llm = llm

    @staticmethod
    def _build_prompt(query: str, thought: ThoughtOutput, execution: ExecutionOutput) -> str:
        prompt = f"Original User Query:\n{query or 'N/A'}\n\nReasoning:\n"
        for t in thought.thoughts:
            prompt += f"- Pass {t.reasoning_pass} ({t.confidence:.0%} confidence): {t.reasoning}\n"
        prompt += "\nExecution Results:\n"
        for r in execution.step_results:
            prompt += f"Step {r.order} ({r.action}): {r.status.value}\n"
            if r.result is not None:
                prompt += json.dumps(r.result, default=str)[:MAX_RESULT_CHARS] + "\n"
            if r.error:
                prompt += f"Error: {r.error}\n"
        prompt += "\nWrite the answer for the user, then list the key takeaways."
        return prompt

    async def run(self, data: SummaryInput, context: RequestContext) -> SummaryOutput:
        thought = await self.stores.thought.get_by_request_id(context.request_id)
        execution = await self.stores.execution.get_by_request_id(context.request_id)
        if thought is None or execution is None:
            missing = [name for name, out in (("thought", thought), ("execution", execution)) if out is None]
            raise MissingDependency(self.stage_name.value, context.request_id, missing)

        query = self.resolve_query(data, context)
        response = await self.llm.invoke(
            self._build_prompt(query, thought, execution),
            max_tokens=settings.LLM_MAX_TOKENS,
            temperature=SUMMARY_TEMPERATURE,
            system_prompt=SUMMARY_SYSTEM_PROMPT,
        )
        prose, takeaways = split_summary(response)
        if not prose:
            self.recovered("summary_response_empty")
            prose = execution_digest(execution)

        self.logger.info(
            "summary_generated",
            request_id=context.request_id,
            summary_length=len(prose),
            takeaways=len(takeaways),
        )
        return SummaryOutput(
            request_id=context.request_id,
            request_context=context,
            summary=prose,
            thoughts_summary=thoughts_digest(thought),
            execution_summary=execution_digest(execution),
            key_takeaways=takeaways,
        )
