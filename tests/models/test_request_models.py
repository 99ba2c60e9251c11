"""Tests for request context models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from agentchain.models.request import (
    ComplexityScore,
    RequestContext,
    RequestFilter,
    RequestStatus,
    StageName,
)


class TestRequestContext:
    """RequestContext creation and mutation."""

    def test_create_defaults(self) -> None:
        """A new context is pending with an empty chain and a generated ID."""
        ctx = RequestContext.create(user_query="Show me all facilities")

        assert ctx.status == RequestStatus.PENDING
        assert ctx.agent_chain == []
        assert ctx.user_query == "Show me all facilities"
        assert ctx.request_id
        assert ctx.complexity is None

    def test_create_with_request_id(self) -> None:
        ctx = RequestContext.create(user_query="q", request_id="req-1")
        assert ctx.request_id == "req-1"

    def test_generated_ids_are_unique(self) -> None:
        ids = {RequestContext.create().request_id for _ in range(20)}
        assert len(ids) == 20

    def test_add_agent_to_chain_appends_in_order(self) -> None:
        ctx = RequestContext.create()
        ctx = ctx.add_agent_to_chain(StageName.COMPLEXITY.value)
        ctx = ctx.add_agent_to_chain(StageName.THOUGHT.value)

        assert ctx.agent_chain == ["complexity-detector", "thought-agent"]

    def test_add_agent_to_chain_is_idempotent(self) -> None:
        """Re-adding a stage keeps its first position and the chain length."""
        ctx = RequestContext.create()
        ctx = ctx.add_agent_to_chain("thought-agent").add_agent_to_chain("planner-agent")
        again = ctx.add_agent_to_chain("thought-agent")

        assert again.agent_chain == ["thought-agent", "planner-agent"]

    def test_mutators_return_copies(self) -> None:
        """Snapshots held elsewhere never change."""
        ctx = RequestContext.create()
        updated = ctx.add_agent_to_chain("thought-agent").with_status(RequestStatus.IN_PROGRESS)

        assert ctx.agent_chain == []
        assert ctx.status == RequestStatus.PENDING
        assert updated.status == RequestStatus.IN_PROGRESS
        assert updated.updated_at >= ctx.updated_at

    def test_with_complexity(self) -> None:
        ctx = RequestContext.create().with_complexity(
            ComplexityScore(score=0.8, reasoning_passes=3, confidence=0.9)
        )
        assert ctx.complexity is not None
        assert ctx.complexity.reasoning_passes == 3

    def test_extra_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RequestContext(request_id="r", unknown="x")


class TestComplexityScore:
    """ComplexityScore bounds."""

    @pytest.mark.parametrize("passes", [0, 4])
    def test_passes_out_of_range(self, passes: int) -> None:
        with pytest.raises(ValidationError):
            ComplexityScore(score=0.5, reasoning_passes=passes, confidence=0.5)

    def test_score_out_of_range(self) -> None:
        with pytest.raises(ValidationError):
            ComplexityScore(score=1.5, reasoning_passes=1, confidence=0.5)


def test_request_filter_limit_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        RequestFilter(limit=0)
