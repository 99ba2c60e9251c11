"""
Versioned Output Store

Append-only persistence for stage outputs. Every save appends the next
version for the request, so re-plans and re-summaries keep every prior
version and "latest" is simply the highest version number.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentchain.database.connection import session_scope
from agentchain.database.models import (
    ComplexityDetectionDB,
    CritiqueOutputDB,
    ExecutionOutputDB,
    MetaOutputDB,
    PlanOutputDB,
    StageOutputMixin,
    SummaryOutputDB,
    ThoughtOutputDB,
)
from agentchain.database.repositories import StageOutputRepository
from agentchain.exceptions import MalformedUpstreamOutput, ValidationError
from agentchain.models.outputs import (
    ComplexityDetection,
    CritiqueOutput,
    ExecutionOutput,
    MetaOutput,
    PlanOutput,
    StageOutputBase,
    SummaryOutput,
    ThoughtOutput,
    stage_output_adapter,
)

logger = structlog.get_logger()

O = TypeVar("O", bound=StageOutputBase)


class OutputFilter(BaseModel):
    """Filters for listing stage outputs."""

    request_id: str | None = Field(default=None, description="Restrict to one request")
    min_score: float | None = Field(default=None, description="Indexed score lower bound")
    max_score: float | None = Field(default=None, description="Indexed score upper bound")
    min_confidence: float | None = Field(default=None, description="Indexed confidence lower bound")
    max_confidence: float | None = Field(default=None, description="Indexed confidence upper bound")
    start: datetime | None = Field(default=None, description="Timestamp lower bound")
    end: datetime | None = Field(default=None, description="Timestamp upper bound")
    limit: int | None = Field(default=None, ge=1, description="Maximum records returned")


class VersionedOutputStore(Generic[O]):
    """
    Versioned store for one stage's outputs.

    Args:
        session_factory: Async session factory
        output_type: Output model stored here
        table: ORM table backing the store
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        output_type: type[O],
        table: type[StageOutputMixin],
    ) -> None:
        self._session_factory = session_factory
        self.output_type = output_type
        self.table = table

    @property
    def name(self) -> str:
        return self.table.__tablename__

    def _decode(self, row: StageOutputMixin) -> O:
        """Decode a stored payload, rejecting shapes outside the output union."""
        payload = dict(row.payload)
        payload["version"] = payload.get("version") or row.version or 1
        try:
            output = stage_output_adapter.validate_python(payload)
        except PydanticValidationError as e:
            raise MalformedUpstreamOutput(
                f"Stored {self.name} payload for {row.request_id} v{row.version} is invalid: {e}"
            ) from e
        if not isinstance(output, self.output_type):
            raise MalformedUpstreamOutput(
                f"Stored payload in {self.name} has kind {payload.get('kind')!r}"
            )
        return output

    async def save(self, output: O) -> O:
        """
        Append an output as the next version for its request.

        Args:
            output: Output to store; ``version`` is assigned when unset

        Returns:
            The output with its version

        Raises:
            ValidationError: If an explicit version would leave a gap or overwrite
            StorageUnavailable: If the database fails
        """
        if not isinstance(output, self.output_type):
            raise ValidationError(
                f"{self.name} stores {self.output_type.__name__}, got {type(output).__name__}"
            )

        async with session_scope(self._session_factory) as session:
            current = await StageOutputRepository.max_version(session, self.table, output.request_id)
            next_version = current + 1
            if output.version is not None and output.version != next_version:
                raise ValidationError(
                    f"Version {output.version} for {output.request_id} in {self.name} "
                    f"must be {next_version}"
                )
            stored = output.model_copy(update={"version": next_version})
            await StageOutputRepository.create(
                session,
                self.table,
                {
                    "request_id": stored.request_id,
                    "version": next_version,
                    "agent_name": stored.agent_name,
                    "timestamp": stored.timestamp,
                    "score": stored.index_score(),
                    "confidence": stored.index_confidence(),
                    "payload": stored.model_dump(mode="json"),
                },
            )

        logger.info(
            "stage_output_saved",
            store=self.name,
            request_id=stored.request_id,
            version=next_version,
        )
        return stored

    async def get_by_request_id(self, request_id: str) -> O | None:
        """Latest version for a request, or None."""
        async with session_scope(self._session_factory) as session:
            row = await StageOutputRepository.get_latest(session, self.table, request_id)
            return self._decode(row) if row else None

    async def get_all_versions_by_request_id(self, request_id: str) -> list[O]:
        """Every version for a request, ascending."""
        async with session_scope(self._session_factory) as session:
            rows = await StageOutputRepository.get_versions(session, self.table, request_id)
            return [self._decode(row) for row in rows]

    async def get_all(self, filters: OutputFilter | None = None) -> list[O]:
        """List outputs matching the filters, newest first."""
        filters = filters or OutputFilter()
        async with session_scope(self._session_factory) as session:
            rows = await StageOutputRepository.list(
                session,
                self.table,
                **filters.model_dump(),
            )
            return [self._decode(row) for row in rows]

    async def exists(self, request_id: str) -> bool:
        """Whether any version exists for the request."""
        async with session_scope(self._session_factory) as session:
            return await StageOutputRepository.max_version(session, self.table, request_id) > 0

    async def clear(self) -> int:
        """Delete every stored output."""
        async with session_scope(self._session_factory) as session:
            deleted = await StageOutputRepository.delete_all(session, self.table)
        logger.warning("stage_outputs_cleared", store=self.name, deleted=deleted)
        return deleted

    async def count(self) -> int:
        """Number of stored output versions."""
        async with session_scope(self._session_factory) as session:
            return await StageOutputRepository.count(session, self.table)


@dataclass
class OutputStores:
    """One versioned store per stage output type."""

    complexity: VersionedOutputStore[ComplexityDetection]
    thought: VersionedOutputStore[ThoughtOutput]
    plan: VersionedOutputStore[PlanOutput]
    critique: VersionedOutputStore[CritiqueOutput]
    meta: VersionedOutputStore[MetaOutput]
    execution: VersionedOutputStore[ExecutionOutput]
    summary: VersionedOutputStore[SummaryOutput]

    @classmethod
    def create(cls, session_factory: async_sessionmaker[AsyncSession]) -> OutputStores:
        """Build every store on one session factory."""
        return cls(
            complexity=VersionedOutputStore(session_factory, ComplexityDetection, ComplexityDetectionDB),
            thought=VersionedOutputStore(session_factory, ThoughtOutput, ThoughtOutputDB),
            plan=VersionedOutputStore(session_factory, PlanOutput, PlanOutputDB),
            critique=VersionedOutputStore(session_factory, CritiqueOutput, CritiqueOutputDB),
            meta=VersionedOutputStore(session_factory, MetaOutput, MetaOutputDB),
            execution=VersionedOutputStore(session_factory, ExecutionOutput, ExecutionOutputDB),
            summary=VersionedOutputStore(session_factory, SummaryOutput, SummaryOutputDB),
        )

    def all(self) -> list[VersionedOutputStore[Any]]:
        """Every store in chain order."""
        return [getattr(self, f.name) for f in fields(self)]
