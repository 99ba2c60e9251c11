"""Tests for the request context store."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import text

from agentchain.database.connection import create_engine_for_url, create_session_factory
from agentchain.exceptions import StorageUnavailable
from agentchain.models.request import ComplexityScore, RequestContext, RequestFilter, RequestStatus
from agentchain.services.request_store import RequestContextStore


class TestRequestContextStore:
    async def test_save_and_get(self, request_store) -> None:
        ctx = RequestContext.create(user_query="Show me all facilities", request_id="req-1")
        ctx = ctx.add_agent_to_chain("complexity-detector").with_complexity(
            ComplexityScore(score=0.2, reasoning_passes=1, confidence=0.6)
        )
        await request_store.save(ctx)

        loaded = await request_store.get("req-1")
        assert loaded is not None
        assert loaded.user_query == "Show me all facilities"
        assert loaded.agent_chain == ["complexity-detector"]
        assert loaded.complexity is not None
        assert loaded.complexity.reasoning_passes == 1

    async def test_save_is_upsert(self, request_store) -> None:
        ctx = RequestContext.create(request_id="req-1")
        await request_store.save(ctx)
        await request_store.save(ctx.with_status(RequestStatus.COMPLETED))

        assert await request_store.count() == 1
        loaded = await request_store.get("req-1")
        assert loaded is not None
        assert loaded.status == RequestStatus.COMPLETED

    async def test_get_missing(self, request_store) -> None:
        assert await request_store.get("missing") is None

    async def test_filter_by_status_and_agent(self, request_store) -> None:
        await request_store.save(
            RequestContext.create(request_id="a").add_agent_to_chain("thought-agent")
        )
        await request_store.save(
            RequestContext.create(request_id="b").with_status(RequestStatus.FAILED)
        )

        failed = await request_store.get_all(RequestFilter(status=RequestStatus.FAILED))
        assert [c.request_id for c in failed] == ["b"]

        with_thought = await request_store.get_all(RequestFilter(agent_name="thought-agent"))
        assert [c.request_id for c in with_thought] == ["a"]

    async def test_limit(self, request_store) -> None:
        for i in range(3):
            await request_store.save(RequestContext.create(request_id=f"r{i}"))
        assert len(await request_store.get_all(RequestFilter(limit=2))) == 2

    async def test_search_is_case_insensitive(self, request_store) -> None:
        await request_store.save(RequestContext.create(user_query="Show me all Facilities", request_id="a"))
        await request_store.save(RequestContext.create(user_query="Contract totals", request_id="b"))

        found = await request_store.search("facilities")
        assert [c.request_id for c in found] == ["a"]

    async def test_delete_and_clear(self, request_store) -> None:
        await request_store.save(RequestContext.create(request_id="a"))
        await request_store.save(RequestContext.create(request_id="b"))

        assert await request_store.delete("a") is True
        assert await request_store.delete("a") is False
        assert await request_store.clear() == 1
        assert await request_store.count() == 0

    async def test_filter_by_date_range(self, request_store) -> None:
        for request_id, day in (("old", 1), ("mid", 10), ("new", 20)):
            ctx = RequestContext.create(request_id=request_id)
            await request_store.save(ctx.model_copy(update={"created_at": datetime(2026, 3, day, tzinfo=UTC)}))

        window = RequestFilter(start=datetime(2026, 3, 5, tzinfo=UTC), end=datetime(2026, 3, 15, tzinfo=UTC))
        assert [c.request_id for c in await request_store.get_all(window)] == ["mid"]

        since = await request_store.get_all(RequestFilter(start=datetime(2026, 3, 10, tzinfo=UTC)))
        assert [c.request_id for c in since] == ["new", "mid"]


class TestStorageFailures:
    async def test_unreachable_database_raises_storage_unavailable(self, tmp_path) -> None:
        engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/agentchain.db")
        store = RequestContextStore(create_session_factory(engine))

        with pytest.raises(StorageUnavailable):
            await store.save(RequestContext.create(request_id="a"))
        with pytest.raises(StorageUnavailable):
            await store.get("a")

        await engine.dispose()

    async def test_missing_table_raises_storage_unavailable(self, session_factory, request_store) -> None:
        async with session_factory() as session:
            await session.execute(text("DROP TABLE request_contexts"))
            await session.commit()

        with pytest.raises(StorageUnavailable, match="Database operation failed"):
            await request_store.count()
