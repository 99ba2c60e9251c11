"""Tests for the versioned output stores."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import update

from agentchain.database.models import PlanOutputDB
from agentchain.exceptions import MalformedUpstreamOutput, ValidationError
from agentchain.models.outputs import Plan, PlanOutput, SummaryOutput
from agentchain.models.request import RequestContext
from agentchain.services.output_store import OutputFilter


def _plan(request_id: str, goal: str, confidence: float = 0.5, version: int | None = None) -> PlanOutput:
    return PlanOutput(
        request_id=request_id,
        request_context=RequestContext.create(user_query="q", request_id=request_id),
        plan=Plan(goal=goal, confidence=confidence),
        version=version,
    )


class TestVersionedOutputStore:
    """Append-only versioning."""

    async def test_versions_are_sequential(self, stores) -> None:
        first = await stores.plan.save(_plan("req-1", "first"))
        second = await stores.plan.save(_plan("req-1", "second"))

        assert first.version == 1
        assert second.version == 2

        latest = await stores.plan.get_by_request_id("req-1")
        assert latest is not None
        assert latest.version == 2
        assert latest.plan.goal == "second"

        versions = await stores.plan.get_all_versions_by_request_id("req-1")
        assert [v.version for v in versions] == [1, 2]
        assert [v.plan.goal for v in versions] == ["first", "second"]

    async def test_versions_are_per_request(self, stores) -> None:
        await stores.plan.save(_plan("req-1", "a"))
        other = await stores.plan.save(_plan("req-2", "b"))
        assert other.version == 1

    async def test_explicit_next_version_accepted(self, stores) -> None:
        saved = await stores.plan.save(_plan("req-1", "a", version=1))
        assert saved.version == 1

    async def test_out_of_sequence_version_rejected(self, stores) -> None:
        """A gap or an overwrite is refused and nothing is written."""
        await stores.plan.save(_plan("req-1", "a"))

        with pytest.raises(ValidationError):
            await stores.plan.save(_plan("req-1", "gap", version=3))
        with pytest.raises(ValidationError):
            await stores.plan.save(_plan("req-1", "overwrite", version=1))

        assert await stores.plan.count() == 1

    async def test_wrong_output_type_rejected(self, stores) -> None:
        summary = SummaryOutput(
            request_id="req-1",
            request_context=RequestContext.create(request_id="req-1"),
            summary="s",
        )
        with pytest.raises(ValidationError):
            await stores.plan.save(summary)  # type: ignore[arg-type]

    async def test_missing_request_returns_none(self, stores) -> None:
        assert await stores.plan.get_by_request_id("nope") is None
        assert await stores.plan.get_all_versions_by_request_id("nope") == []
        assert await stores.plan.exists("nope") is False

    async def test_filters_on_indexed_confidence(self, stores) -> None:
        await stores.plan.save(_plan("req-1", "low", confidence=0.2))
        await stores.plan.save(_plan("req-2", "high", confidence=0.9))

        high = await stores.plan.get_all(OutputFilter(min_confidence=0.5))
        assert [p.plan.goal for p in high] == ["high"]

        limited = await stores.plan.get_all(OutputFilter(limit=1))
        assert len(limited) == 1

    async def test_filters_on_timestamp_range(self, stores) -> None:
        for request_id, day in (("req-1", 1), ("req-2", 10), ("req-3", 20)):
            output = _plan(request_id, request_id)
            await stores.plan.save(output.model_copy(update={"timestamp": datetime(2026, 3, day, tzinfo=UTC)}))

        window = OutputFilter(start=datetime(2026, 3, 5, tzinfo=UTC), end=datetime(2026, 3, 15, tzinfo=UTC))
        assert [p.request_id for p in await stores.plan.get_all(window)] == ["req-2"]

        before = await stores.plan.get_all(OutputFilter(end=datetime(2026, 3, 10, tzinfo=UTC)))
        assert [p.request_id for p in before] == ["req-2", "req-1"]

    async def test_corrupt_payload_raises(self, stores, session_factory) -> None:
        """A stored payload outside the output union is rejected on read."""
        await stores.plan.save(_plan("req-1", "a"))
        async with session_factory() as session:
            await session.execute(update(PlanOutputDB).values(payload={"kind": "poem"}))
            await session.commit()

        with pytest.raises(MalformedUpstreamOutput):
            await stores.plan.get_by_request_id("req-1")

    async def test_clear(self, stores) -> None:
        await stores.plan.save(_plan("req-1", "a"))
        await stores.plan.save(_plan("req-1", "b"))

        assert await stores.plan.clear() == 2
        assert await stores.plan.count() == 0


def test_all_returns_stores_in_chain_order(stores) -> None:
    assert [s.name for s in stores.all()] == [
        "complexity_detections",
        "thought_outputs",
        "plan_outputs",
        "critique_outputs",
        "meta_outputs",
        "execution_outputs",
        "summary_outputs",
    ]
