"""Tests for weighted confidence aggregation."""

from __future__ import annotations

import pytest

from agentchain.services.confidence_scorer import (
    AgentScore,
    ConfidenceDecision,
    ConfidenceScorer,
    ScorePattern,
)


@pytest.fixture
def scorer() -> ConfidenceScorer:
    return ConfidenceScorer()


def _scores(thought: float, planner: float, critic: float) -> list[AgentScore]:
    return [
        AgentScore(agent_name="thought-agent", score=thought),
        AgentScore(agent_name="planner-agent", score=planner),
        AgentScore(agent_name="critic-agent", score=critic),
    ]


class TestConfidenceScorer:
    def test_weighted_mean_is_normalized(self, scorer: ConfidenceScorer) -> None:
        """Weights present are normalized: (.6*.25 + .85*.30 + .9*.35) / .9."""
        assessment = scorer.score(_scores(0.6, 0.85, 0.9))

        assert assessment.weighted_confidence == pytest.approx(0.8)
        assert assessment.decision == ConfidenceDecision.EXECUTE

    def test_threshold_boundary_is_exact(self, scorer: ConfidenceScorer) -> None:
        weighted = scorer.weighted_confidence(_scores(0.6, 0.85, 0.9))

        assert weighted == 0.8
        assert scorer.decide(weighted) == ConfidenceDecision.EXECUTE

    def test_critic_dominates(self, scorer: ConfidenceScorer) -> None:
        high_critic = scorer.weighted_confidence(_scores(0.5, 0.5, 0.9))
        high_thought = scorer.weighted_confidence(_scores(0.9, 0.5, 0.5))
        assert high_critic > high_thought

    def test_empty_scores(self, scorer: ConfidenceScorer) -> None:
        assessment = scorer.score([])
        assert assessment.weighted_confidence == 0.5
        assert assessment.pattern == ScorePattern.CONSISTENT

    @pytest.mark.parametrize(
        "confidence,decision",
        [
            (0.85, ConfidenceDecision.EXECUTE),
            (0.65, ConfidenceDecision.REVIEW),
            (0.45, ConfidenceDecision.RETHINK),
            (0.2, ConfidenceDecision.ESCALATE),
        ],
    )
    def test_decisions(self, scorer: ConfidenceScorer, confidence: float, decision: ConfidenceDecision) -> None:
        assert scorer.decide(confidence) == decision

    def test_patterns_and_concerns(self, scorer: ConfidenceScorer) -> None:
        mixed = scorer.score(_scores(0.9, 0.3, 0.9))
        assert mixed.pattern == ScorePattern.MIXED
        assert mixed.concerns == ["planner-agent (30%)"]

        assert scorer.score(_scores(0.1, 0.2, 0.4)).pattern == ScorePattern.ALL_LOW
        assert scorer.score(_scores(0.7, 0.9, 1.0)).pattern == ScorePattern.ALL_HIGH
        assert scorer.score(_scores(0.5, 0.5, 0.5)).pattern == ScorePattern.CONSISTENT

    def test_unknown_agent_uses_default_weight(self) -> None:
        scorer = ConfidenceScorer(weights={"critic-agent": 0.9}, default_weight=0.1)
        weighted = scorer.weighted_confidence(
            [AgentScore(agent_name="critic-agent", score=1.0), AgentScore(agent_name="other", score=0.0)]
        )
        assert weighted == pytest.approx(0.9)
