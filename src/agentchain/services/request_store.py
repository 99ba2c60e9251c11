"""
Request Context Store

Persists the per-request state machine record. Saves are upserts with
last-writer-wins semantics; callers treat read-modify-write as best-effort
since each request has a single writer at a time.
"""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentchain.database.connection import session_scope
from agentchain.database.models import RequestContextDB
from agentchain.database.repositories import RequestContextRepository
from agentchain.models.request import (
    ComplexityScore,
    RequestContext,
    RequestFilter,
    RequestStatus,
)

logger = structlog.get_logger()


class RequestContextStore:
    """
    Store for RequestContext records.

    All methods raise StorageUnavailable when the database fails.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _to_row_values(context: RequestContext) -> dict:
        return {
            "request_id": context.request_id,
            "status": context.status.value,
            "user_query": context.user_query,
            "agent_chain": list(context.agent_chain),
            "complexity": context.complexity.model_dump(mode="json") if context.complexity else None,
            "created_at": context.created_at,
            "updated_at": context.updated_at,
        }

    @staticmethod
    def _from_row(row: RequestContextDB) -> RequestContext:
        return RequestContext(
            request_id=row.request_id,
            status=RequestStatus(row.status),
            user_query=row.user_query,
            agent_chain=list(row.agent_chain or []),
            complexity=ComplexityScore.model_validate(row.complexity) if row.complexity else None,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    async def save(self, context: RequestContext) -> RequestContext:
        """Upsert a context by request ID."""
        async with session_scope(self._session_factory) as session:
            await RequestContextRepository.upsert(session, self._to_row_values(context))
        logger.debug(
            "request_context_saved",
            request_id=context.request_id,
            status=context.status.value,
            agent_chain=context.agent_chain,
        )
        return context

    async def get(self, request_id: str) -> RequestContext | None:
        """Get a context, or None when it does not exist."""
        async with session_scope(self._session_factory) as session:
            row = await RequestContextRepository.get_by_id(session, request_id)
            return self._from_row(row) if row else None

    async def get_all(self, filters: RequestFilter | None = None) -> list[RequestContext]:
        """
        List contexts, newest first.

        Agent-name membership is evaluated after the SQL filters since the
        chain is stored as a JSON array.
        """
        filters = filters or RequestFilter()
        async with session_scope(self._session_factory) as session:
            rows = await RequestContextRepository.list(
                session,
                status=filters.status.value if filters.status else None,
                start=filters.start,
                end=filters.end,
            )
            contexts = [self._from_row(row) for row in rows]

        if filters.agent_name:
            contexts = [c for c in contexts if filters.agent_name in c.agent_chain]
        if filters.limit:
            contexts = contexts[: filters.limit]
        return contexts

    async def search(self, text: str) -> list[RequestContext]:
        """Case-insensitive substring search over request IDs and queries."""
        if not text:
            return await self.get_all()
        async with session_scope(self._session_factory) as session:
            rows = await RequestContextRepository.search(session, text)
            return [self._from_row(row) for row in rows]

    async def delete(self, request_id: str) -> bool:
        """Delete one context. Returns False when it did not exist."""
        async with session_scope(self._session_factory) as session:
            deleted = await RequestContextRepository.delete(session, request_id)
        logger.info("request_context_deleted", request_id=request_id, deleted=deleted)
        return deleted

    async def clear(self) -> int:
        """Delete every context."""
        async with session_scope(self._session_factory) as session:
            deleted = await RequestContextRepository.delete_all(session)
        logger.warning("request_contexts_cleared", deleted=deleted)
        return deleted

    async def count(self) -> int:
        """Number of stored contexts."""
        async with session_scope(self._session_factory) as session:
            return await RequestContextRepository.count(session)
