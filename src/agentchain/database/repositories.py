"""
Database Repositories

Data access layer for request contexts and versioned stage outputs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from agentchain.database.models import RequestContextDB, StageOutputMixin


class RequestContextRepository:
    """Repository for request context operations."""

    @staticmethod
    async def upsert(session: AsyncSession, values: dict[str, Any]) -> RequestContextDB:
        """Insert or overwrite a request context (last writer wins)."""
        row = await session.get(RequestContextDB, values["request_id"])
        if row is None:
            row = RequestContextDB(**values)
            session.add(row)
        else:
            for key, value in values.items():
                setattr(row, key, value)
        await session.flush()
        return row

    @staticmethod
    async def get_by_id(session: AsyncSession, request_id: str) -> RequestContextDB | None:
        """Get request context by ID."""
        result = await session.execute(
            select(RequestContextDB).where(RequestContextDB.request_id == request_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list(
        session: AsyncSession,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[RequestContextDB]:
        """List request contexts, newest first."""
        query = select(RequestContextDB)
        if status:
            query = query.where(RequestContextDB.status == status)
        if start:
            query = query.where(RequestContextDB.created_at >= start)
        if end:
            query = query.where(RequestContextDB.created_at <= end)
        query = query.order_by(RequestContextDB.created_at.desc())
        result = await session.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def search(session: AsyncSession, text: str) -> list[RequestContextDB]:
        """Case-insensitive substring match over request IDs and queries."""
        query = (
            select(RequestContextDB)
            .where(
                or_(
                    RequestContextDB.request_id.icontains(text, autoescape=True),
                    RequestContextDB.user_query.icontains(text, autoescape=True),
                )
            )
            .order_by(RequestContextDB.created_at.desc())
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def delete(session: AsyncSession, request_id: str) -> bool:
        """Delete one request context."""
        result = await session.execute(
            delete(RequestContextDB).where(RequestContextDB.request_id == request_id)
        )
        return result.rowcount > 0

    @staticmethod
    async def delete_all(session: AsyncSession) -> int:
        """Delete all request contexts."""
        result = await session.execute(delete(RequestContextDB))
        return result.rowcount

    @staticmethod
    async def count(session: AsyncSession) -> int:
        """Count request contexts."""
        result = await session.execute(select(func.count()).select_from(RequestContextDB))
        return result.scalar_one()


class StageOutputRepository:
    """Repository for versioned stage output tables."""

    @staticmethod
    async def max_version(session: AsyncSession, model: type[StageOutputMixin], request_id: str) -> int:
        """Highest stored version for a request (0 when none)."""
        result = await session.execute(
            select(func.max(model.version)).where(model.request_id == request_id)
        )
        return result.scalar_one_or_none() or 0

    @staticmethod
    async def create(session: AsyncSession, model: type[StageOutputMixin], values: dict[str, Any]) -> StageOutputMixin:
        """Append one output version."""
        row = model(**values)
        session.add(row)
        await session.flush()
        return row

    @staticmethod
    async def get_latest(session: AsyncSession, model: type[StageOutputMixin], request_id: str) -> StageOutputMixin | None:
        """Latest version for a request."""
        result = await session.execute(
            select(model)
            .where(model.request_id == request_id)
            .order_by(model.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_versions(session: AsyncSession, model: type[StageOutputMixin], request_id: str) -> list[StageOutputMixin]:
        """All versions for a request, ascending."""
        result = await session.execute(
            select(model).where(model.request_id == request_id).order_by(model.version.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def list(
        session: AsyncSession,
        model: type[StageOutputMixin],
        request_id: str | None = None,
        min_score: float | None = None,
        max_score: float | None = None,
        min_confidence: float | None = None,
        max_confidence: float | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[StageOutputMixin]:
        """List outputs with numeric and date range filters, newest first."""
        query = select(model)
        if request_id:
            query = query.where(model.request_id == request_id)
        if min_score is not None:
            query = query.where(model.score >= min_score)
        if max_score is not None:
            query = query.where(model.score <= max_score)
        if min_confidence is not None:
            query = query.where(model.confidence >= min_confidence)
        if max_confidence is not None:
            query = query.where(model.confidence <= max_confidence)
        if start:
            query = query.where(model.timestamp >= start)
        if end:
            query = query.where(model.timestamp <= end)
        query = query.order_by(model.timestamp.desc(), model.version.desc())
        if limit:
            query = query.limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def delete_all(session: AsyncSession, model: type[StageOutputMixin]) -> int:
        """Delete every output in the table."""
        result = await session.execute(delete(model))
        return result.rowcount

    @staticmethod
    async def count(session: AsyncSession, model: type[StageOutputMixin]) -> int:
        """Count stored outputs."""
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()
