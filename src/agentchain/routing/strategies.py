"""
Complexity detection strategies.

Each strategy either returns a verdict, returns None when it has no answer
(no semantic match), or raises an AgentChainError the router treats as a
strategy failure.
"""

from __future__ import annotations

import math
from typing import Any

import structlog
from pydantic import BaseModel, Field

from agentchain.exceptions import AgentChainError, MalformedUpstreamOutput
from agentchain.models.examples import ComplexityExample
from agentchain.models.request import ComplexityScore, DetectionMethod
from agentchain.routing.keyword_detector import detect_keyword_complexity, passes_for_score
from agentchain.services.example_memory import ExampleMemory
from agentchain.services.llm_client import LanguageModel
from agentchain.stages.parsing import clamp, extract_json_object, pick

logger = structlog.get_logger()

LLM_DEFAULT_CONFIDENCE = 0.8
LLM_CLASSIFICATION_TEMPERATURE = 0.3
LLM_CLASSIFICATION_MAX_TOKENS = 512

COMPLEXITY_SYSTEM_PROMPT = """You are a query complexity classifier. You decide how many reasoning passes (1, 2, or 3) are needed to answer a user query.

Determine:
1. Complexity score (0.0 = simple, 1.0 = very complex)
2. Reasoning passes needed (1, 2, or 3)
   - 1 pass: simple lookups such as "list facilities" or "show me facility X"
   - 2 passes: moderate analysis such as "analyze facility performance" or "compare two facilities"
   - 3 passes: broad analysis such as "analyze all facilities and generate reports comparing performance"
3. Confidence in your classification (0.0 to 1.0)
4. Brief reasoning (1-2 sentences)

Respond with ONLY valid JSON in this exact format:
{"score": 0.75, "reasoning_passes": 3, "confidence": 0.8, "reasoning": "..."}"""


class StrategyVerdict(BaseModel):
    """Verdict from one detection strategy."""

    method: DetectionMethod
    complexity: ComplexityScore
    similarity: float | None = None
    matched_example_id: str | None = None
    detected_keywords: list[str] = Field(default_factory=list)
    llm_explanation: str | None = None
    llm_confidence: float | None = None


def keyword_strategy(query: str) -> StrategyVerdict:
    """Lexicon heuristic. Always answers."""
    result = detect_keyword_complexity(query)
    return StrategyVerdict(
        method=DetectionMethod.KEYWORD,
        complexity=ComplexityScore(
            score=result.score,
            reasoning_passes=result.reasoning_passes,
            confidence=result.confidence,
            factors=result.factors,
        ),
        detected_keywords=result.detected_keywords,
    )


async def semantic_strategy(
    query: str,
    memory: ExampleMemory[ComplexityExample],
    threshold: float,
) -> StrategyVerdict | None:
    """
    Adopt the verdict of the closest labelled example above the threshold.

    Returns:
        Verdict, or None when no example is similar enough

    Raises:
        EmbeddingUnavailable, StorageUnavailable: From the memory
    """
    matches = await memory.find_similar(query, top_k=1, min_score=threshold)
    if not matches:
        logger.debug("semantic_no_match", threshold=threshold)
        return None

    best = matches[0]
    example = best.example
    similarity = max(0.0, min(1.0, best.similarity))

    try:
        await memory.increment_usage(example.id)
    except AgentChainError as e:
        logger.warning(
            "complexity_example_usage_increment_failed",
            example_id=example.id,
            error=str(e),
        )

    return StrategyVerdict(
        method=DetectionMethod.SEMANTIC,
        complexity=ComplexityScore(
            score=example.complexity_score,
            reasoning_passes=example.reasoning_passes,
            confidence=example.confidence if example.confidence is not None else similarity,
        ),
        similarity=similarity,
        matched_example_id=example.id,
    )


def _coerce_passes(value: Any, score: float) -> int:
    if isinstance(value, bool):
        return passes_for_score(score)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return passes_for_score(score)
    if math.isnan(number):
        return passes_for_score(score)
    return max(1, min(3, round(number)))


def parse_llm_classification(text: str) -> tuple[ComplexityScore, str]:
    """
    Decode a classification response, clamping partial values.

    Raises:
        MalformedUpstreamOutput: If the response holds no JSON object
    """
    data = extract_json_object(text)
    score = clamp(pick(data, "score", "complexity_score", "complexityScore"), default=0.5)
    passes = _coerce_passes(pick(data, "reasoning_passes", "reasoningPasses", "passes"), score)
    confidence = clamp(pick(data, "confidence"), default=LLM_DEFAULT_CONFIDENCE)
    reasoning = str(pick(data, "reasoning", "explanation", default="") or "").strip()
    return (
        ComplexityScore(score=score, reasoning_passes=passes, confidence=confidence),
        reasoning or "LLM analyzed query complexity",
    )


async def llm_strategy(query: str, llm: LanguageModel) -> StrategyVerdict:
    """
    Ask the language model to classify the query.

    Raises:
        LLMUnavailable: From the model boundary
        MalformedUpstreamOutput: If the response holds no JSON object
    """
    prompt = (
        f'Query: "{query}"\n\n'
        "This query needs a complexity classification.\n\n"
        "Analyze this query and provide your response as JSON only."
    )
    response = await llm.invoke(
        prompt,
        max_tokens=LLM_CLASSIFICATION_MAX_TOKENS,
        temperature=LLM_CLASSIFICATION_TEMPERATURE,
        system_prompt=COMPLEXITY_SYSTEM_PROMPT,
    )
    try:
        complexity, reasoning = parse_llm_classification(response)
    except MalformedUpstreamOutput:
        logger.warning("llm_classification_unparseable", response_preview=response[:120])
        raise

    return StrategyVerdict(
        method=DetectionMethod.LLM,
        complexity=complexity,
        llm_explanation=reasoning,
        llm_confidence=complexity.confidence,
    )
