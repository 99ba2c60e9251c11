"""
Confidence Scorer

Aggregates per-stage confidence into one weighted score and a routing
decision. The critic carries the most weight since it is the quality gate.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from agentchain.models.request import StageName

AGENT_WEIGHTS: dict[str, float] = {
    StageName.THOUGHT.value: 0.25,
    StageName.PLANNER.value: 0.30,
    StageName.CRITIC.value: 0.35,
    StageName.META.value: 0.10,
}

DEFAULT_WEIGHT = 0.10


class ConfidenceDecision(str, Enum):
    """Routing decision derived from weighted confidence."""

    EXECUTE = "execute"
    REVIEW = "review"
    RETHINK = "rethink"
    ESCALATE = "escalate"


class ScorePattern(str, Enum):
    """Shape of the component scores."""

    CONSISTENT = "consistent"
    ALL_HIGH = "all_high"
    ALL_LOW = "all_low"
    MIXED = "mixed"


class AgentScore(BaseModel):
    """Confidence reported by one stage."""

    agent_name: str
    score: float = Field(..., ge=0.0, le=1.0)


class ConfidenceAssessment(BaseModel):
    """Aggregated confidence."""

    weighted_confidence: float = Field(..., ge=0.0, le=1.0)
    average_confidence: float = Field(..., ge=0.0, le=1.0)
    variance: float = Field(..., ge=0.0)
    pattern: ScorePattern
    decision: ConfidenceDecision
    concerns: list[str] = Field(default_factory=list, description="Heavily weighted low scorers")
    scores: list[AgentScore] = Field(default_factory=list)


class ConfidenceScorer:
    """Weighted confidence aggregation with fixed routing thresholds."""

    EXECUTE_THRESHOLD = 0.8
    REVIEW_THRESHOLD = 0.6
    RETHINK_THRESHOLD = 0.4

    def __init__(self, weights: dict[str, float] | None = None, default_weight: float = DEFAULT_WEIGHT) -> None:
        self.weights = weights or AGENT_WEIGHTS
        self.default_weight = default_weight

    def _weight(self, agent_name: str) -> float:
        return self.weights.get(agent_name, self.default_weight)

    def weighted_confidence(self, scores: list[AgentScore]) -> float:
        """Weighted mean normalized by the weights present (0.5 when empty)."""
        total_weight = sum(self._weight(s.agent_name) for s in scores)
        if not scores or total_weight <= 0:
            return 0.5
        weighted = sum(s.score * self._weight(s.agent_name) for s in scores) / total_weight
        return round(weighted, 6)

    def decide(self, confidence: float) -> ConfidenceDecision:
        if confidence >= self.EXECUTE_THRESHOLD:
            return ConfidenceDecision.EXECUTE
        if confidence >= self.REVIEW_THRESHOLD:
            return ConfidenceDecision.REVIEW
        if confidence >= self.RETHINK_THRESHOLD:
            return ConfidenceDecision.RETHINK
        return ConfidenceDecision.ESCALATE

    def score(self, scores: list[AgentScore]) -> ConfidenceAssessment:
        """Aggregate stage confidences into an assessment."""
        average = sum(s.score for s in scores) / len(scores) if scores else 0.5
        variance = (
            sum((s.score - average) ** 2 for s in scores) / len(scores) if scores else 0.0
        )

        if not scores or variance < 0.01:
            pattern = ScorePattern.CONSISTENT
        elif all(s.score >= 0.7 for s in scores):
            pattern = ScorePattern.ALL_HIGH
        elif all(s.score <= 0.4 for s in scores):
            pattern = ScorePattern.ALL_LOW
        else:
            pattern = ScorePattern.MIXED

        weighted = self.weighted_confidence(scores)
        concerns = [
            f"{s.agent_name} ({s.score:.0%})"
            for s in scores
            if s.score < 0.5 and self._weight(s.agent_name) >= 0.25
        ]

        return ConfidenceAssessment(
            weighted_confidence=max(0.0, min(1.0, weighted)),
            average_confidence=average,
            variance=variance,
            pattern=pattern,
            decision=self.decide(weighted),
            concerns=concerns,
            scores=scores,
        )
