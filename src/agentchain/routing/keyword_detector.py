"""
Keyword complexity detection.

Scores a query against fixed lexicons of complexity-indicating terms and a
length factor, then maps the weighted score onto 1-3 reasoning passes.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

MULTI_STEP_KEYWORDS = (
    "then", "after", "next", "follow", "sequence", "step",
    "first", "second", "finally", "then do", "after that",
)

ANALYSIS_KEYWORDS = (
    "analyze", "compare", "evaluate", "assess", "examine", "review", "study",
    "investigate", "break down", "analysis", "performance", "trends",
    "patterns", "correlation",
)

AGGREGATION_KEYWORDS = (
    "all", "every", "total", "summarize", "overview", "summary", "across",
    "combined", "aggregate", "consolidate", "comprehensive", "entire", "complete",
)

DOMAIN_KEYWORDS = (
    "facility", "facilities", "contaminant", "contaminants", "inspection",
    "inspections", "shipment", "shipments", "contract", "contracts", "report",
    "reports", "generate", "intelligent", "risk", "analysis", "suggest",
    "recommend", "recommendation", "improve", "improvement",
)

FACTOR_WEIGHTS: dict[str, float] = {
    "query_length": 0.15,
    "multiple_questions": 0.10,
    "multi_step": 0.20,
    "analysis": 0.25,
    "aggregation": 0.15,
    "domain_complexity": 0.15,
}

MAX_QUERY_LENGTH = 500
MAX_DOMAIN_TERMS = 5

THREE_PASS_THRESHOLD = 0.7
TWO_PASS_THRESHOLD = 0.4

KEYWORD_CONFIDENCE = 0.6


class KeywordResult(BaseModel):
    """Outcome of keyword scoring."""

    score: float = Field(..., ge=0.0, le=1.0)
    reasoning_passes: int = Field(..., ge=1, le=3)
    confidence: float = Field(default=KEYWORD_CONFIDENCE, ge=0.0, le=1.0)
    factors: dict[str, float] = Field(default_factory=dict, description="Weighted contributions")
    detected_keywords: list[str] = Field(default_factory=list)


def _normalize(value: float, low: float, high: float) -> float:
    if high <= low:
        return 0.0
    return max(0.0, min(1.0, (value - low) / (high - low)))


def passes_for_score(score: float) -> int:
    """Map a complexity score onto a pass count."""
    if score > THREE_PASS_THRESHOLD:
        return 3
    if score > TWO_PASS_THRESHOLD:
        return 2
    return 1


def _hits(text: str, lexicon: tuple[str, ...]) -> list[str]:
    return [term for term in lexicon if term in text]


def detect_keyword_complexity(query: str) -> KeywordResult:
    """
    Score a query with the keyword lexicons.

    Matching is substring-based on the lowercased query, so "all" also hits
    inside "overall"; the lexicon weights were tuned with that behavior.
    """
    text = (query or "").strip().lower()
    if not text:
        return KeywordResult(score=0.0, reasoning_passes=1)

    multi_step = _hits(text, MULTI_STEP_KEYWORDS)
    analysis = _hits(text, ANALYSIS_KEYWORDS)
    aggregation = _hits(text, AGGREGATION_KEYWORDS)
    domain = _hits(text, DOMAIN_KEYWORDS)

    raw = {
        "query_length": _normalize(len(text), 0, MAX_QUERY_LENGTH),
        "multiple_questions": 1.0 if text.count("?") > 1 else 0.0,
        "multi_step": 1.0 if multi_step else 0.0,
        "analysis": 1.0 if analysis else 0.0,
        "aggregation": 1.0 if aggregation else 0.0,
        "domain_complexity": _normalize(len(domain), 0, MAX_DOMAIN_TERMS),
    }
    factors = {name: raw[name] * weight for name, weight in FACTOR_WEIGHTS.items()}
    score = max(0.0, min(1.0, sum(factors.values())))

    detected: list[str] = []
    for term in (*multi_step, *analysis, *aggregation, *domain):
        if term not in detected:
            detected.append(term)

    return KeywordResult(
        score=score,
        reasoning_passes=passes_for_score(score),
        factors=factors,
        detected_keywords=detected,
    )
