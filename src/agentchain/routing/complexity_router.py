"""
Complexity Router

First stage of the chain. Creates (or reuses) the request context, decides
how many reasoning passes the query needs and attaches that verdict to the
context for downstream stages.

Strategies run in a fixed priority order, first success wins:
semantic example match, keyword heuristic, LLM judgment. The LLM therefore
only runs when semantic and keyword are both unavailable or disabled. If
every enabled strategy fails, the keyword heuristic answers anyway.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from agentchain.config import settings
from agentchain.exceptions import AgentChainError, ValidationError
from agentchain.models.examples import ComplexityExample
from agentchain.models.outputs import ComplexityDetection
from agentchain.models.request import (
    ComplexityScore,
    DetectionMethod,
    RequestContext,
    StageName,
)
from agentchain.routing.keyword_detector import KEYWORD_CONFIDENCE
from agentchain.routing.strategies import (
    StrategyVerdict,
    keyword_strategy,
    llm_strategy,
    semantic_strategy,
)
from agentchain.services import metrics
from agentchain.services.example_memory import ExampleMemory
from agentchain.services.llm_client import LanguageModel
from agentchain.services.output_store import OutputStores
from agentchain.services.request_store import RequestContextStore
from agentchain.stages.base import BaseStage, StageInput

STRATEGY_ORDER = (DetectionMethod.SEMANTIC, DetectionMethod.KEYWORD, DetectionMethod.LLM)

PASS_EXPLANATIONS = {
    1: (
        "This is a simple query that requires basic data retrieval. "
        "The system can answer it with a single reasoning pass."
    ),
    2: (
        "This query requires moderate complexity analysis involving data processing "
        "and comparison. The system uses 2 reasoning passes to ensure accurate results."
    ),
    3: (
        "This is a complex query that requires comprehensive analysis across multiple "
        "entities, data aggregation, and advanced reasoning. The system uses 3 reasoning "
        "passes to handle all aspects thoroughly."
    ),
}


def build_explanation(verdict: StrategyVerdict) -> str:
    """Deterministic explanation for a verdict."""
    text = PASS_EXPLANATIONS[verdict.complexity.reasoning_passes]
    if verdict.method == DetectionMethod.SEMANTIC and verdict.similarity is not None:
        return f"{text} Matched a labelled example at {verdict.similarity:.0%} similarity."
    if verdict.method == DetectionMethod.LLM:
        return f"{text} Classified by the language model."
    return f"{text} Estimated from query keywords."


class RouterInput(StageInput):
    """Router input. An existing ``request_id`` is reused."""

    query: str | None = Field(default="", description="User query")
    request_id: str | None = Field(default=None, description="Request to attach to")


class ComplexityRouter(BaseStage[RouterInput, ComplexityDetection]):
    """
    Complexity detection stage.

    Args:
        request_store: Request context store
        stores: Output stores
        memory: Complexity example memory (semantic strategy)
        llm: Language model (LLM strategy)
        strategies: Enabled strategy names
        similarity_threshold: Minimum similarity for a semantic match
    """

    stage_name = StageName.COMPLEXITY
    input_model = RouterInput
    output_key = "complexity"

    def __init__(
        self,
        request_store: RequestContextStore,
        stores: OutputStores,
        memory: ExampleMemory[ComplexityExample] | None = None,
        llm: LanguageModel | None = None,
        strategies: list[str] | None = None,
        similarity_threshold: float | None = None,
    ) -> None:
        super().__init__(request_store, stores)
        self.memory = memory
        self.llm = llm
        self.strategies = list(strategies if strategies is not None else settings.COMPLEXITY_STRATEGIES)
        self.similarity_threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else settings.COMPLEXITY_SIMILARITY_THRESHOLD
        )

    async def process(
        self,
        input_data: RouterInput | dict[str, Any] | None,
        request_context: RequestContext | None = None,
    ) -> tuple[ComplexityDetection, RequestContext]:
        """
        Classify a query, creating the request context when needed.

        Args:
            input_data: Query and optional request ID
            request_context: Existing context (loaded or created when omitted)

        Returns:
            Persisted detection and the completed context
        """
        if request_context is not None and not isinstance(request_context, RequestContext):
            raise ValidationError("request_context must be a RequestContext")
        data = self.validate_input(input_data)
        query = (data.query or "").strip()

        context = request_context
        if context is None and data.request_id:
            context = await self.request_store.get(data.request_id)
        if context is None:
            context = RequestContext.create(user_query=query or None, request_id=data.request_id)
            await self.request_store.save(context)
            self.logger.info("request_created", request_id=context.request_id)
        elif query and not context.user_query:
            context = context.model_copy(update={"user_query": query})

        return await self._execute(data, context)

    def _enabled(self, method: DetectionMethod) -> bool:
        if method == DetectionMethod.SEMANTIC:
            return method.value in self.strategies and self.memory is not None
        if method == DetectionMethod.LLM:
            return method.value in self.strategies and self.llm is not None
        return method.value in self.strategies

    async def _try(self, method: DetectionMethod, query: str) -> StrategyVerdict | None:
        if method == DetectionMethod.SEMANTIC:
            return await semantic_strategy(query, self.memory, self.similarity_threshold)
        if method == DetectionMethod.KEYWORD:
            return keyword_strategy(query)
        return await llm_strategy(query, self.llm)

    async def detect(self, query: str) -> tuple[StrategyVerdict, bool]:
        """
        Run the strategies for a non-empty query.

        Returns:
            The winning verdict and whether the LLM strategy ran
        """
        llm_used = False
        for method in STRATEGY_ORDER:
            if not self._enabled(method):
                continue
            llm_used = llm_used or method == DetectionMethod.LLM
            try:
                verdict = await self._try(method, query)
            except AgentChainError as e:
                self.logger.warning(
                    "complexity_strategy_failed",
                    strategy=method.value,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue
            if verdict is not None:
                return verdict, llm_used

        self.logger.warning("complexity_strategies_exhausted", enabled=self.strategies)
        return keyword_strategy(query), llm_used

    async def run(self, data: RouterInput, context: RequestContext) -> ComplexityDetection:
        query = self.resolve_query(data, context)

        if not query:
            verdict = StrategyVerdict(
                method=DetectionMethod.KEYWORD,
                complexity=ComplexityScore(
                    score=0.0, reasoning_passes=1, confidence=KEYWORD_CONFIDENCE
                ),
            )
            llm_used = False
        else:
            verdict, llm_used = await self.detect(query)

        self.logger.info(
            "complexity_detected",
            request_id=context.request_id,
            method=verdict.method.value,
            score=round(verdict.complexity.score, 3),
            passes=verdict.complexity.reasoning_passes,
        )
        metrics.record_complexity(verdict.method.value, verdict.complexity.reasoning_passes)

        return ComplexityDetection(
            request_id=context.request_id,
            request_context=context,
            user_query=query,
            complexity=verdict.complexity,
            detection_method=verdict.method,
            similarity=verdict.similarity,
            matched_example_id=verdict.matched_example_id,
            detected_keywords=verdict.detected_keywords,
            llm_used=llm_used,
            llm_explanation=verdict.llm_explanation,
            llm_confidence=verdict.llm_confidence,
            explanation=build_explanation(verdict),
        )

    def finalize_context(
        self, context: RequestContext, output: ComplexityDetection
    ) -> RequestContext:
        return context.with_complexity(output.complexity)
