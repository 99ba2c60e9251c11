"""
Database Models

SQLAlchemy ORM models for request contexts and versioned stage outputs.
Each stage output type lives in its own table keyed by (request_id, version).
"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declared_attr

from agentchain.database.connection import Base


class RequestContextDB(Base):
    """Request context database model."""

    __tablename__ = "request_contexts"

    request_id = Column(String(64), primary_key=True, index=True)
    status = Column(String(16), nullable=False, index=True)
    user_query = Column(Text, nullable=True)

    # Stage names in execution order
    agent_chain = Column(JSON, nullable=False, default=list)
    complexity = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (Index("idx_request_status_created", "status", "created_at"),)

    def __repr__(self) -> str:
        return f"<RequestContextDB(request_id='{self.request_id}', status='{self.status}')>"


class StageOutputMixin:
    """Columns shared by every versioned stage output table."""

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(String(64), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    agent_name = Column(String(64), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    # Numeric fields used by filtered queries
    score = Column(Float, nullable=True, index=True)
    confidence = Column(Float, nullable=True, index=True)

    # Full output document
    payload = Column(JSON, nullable=False)

    @declared_attr
    def __table_args__(cls):
        return (
            UniqueConstraint(
                "request_id", "version", name=f"uq_{cls.__tablename__}_request_version"
            ),
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(request_id='{self.request_id}', version={self.version})>"


class ComplexityDetectionDB(StageOutputMixin, Base):
    """Complexity router verdicts."""

    __tablename__ = "complexity_detections"


class ThoughtOutputDB(StageOutputMixin, Base):
    """Thought stage outputs."""

    __tablename__ = "thought_outputs"


class PlanOutputDB(StageOutputMixin, Base):
    """Planner stage outputs."""

    __tablename__ = "plan_outputs"


class CritiqueOutputDB(StageOutputMixin, Base):
    """Critic stage outputs."""

    __tablename__ = "critique_outputs"


class MetaOutputDB(StageOutputMixin, Base):
    """Meta stage outputs."""

    __tablename__ = "meta_outputs"


class ExecutionOutputDB(StageOutputMixin, Base):
    """Executor stage outputs."""

    __tablename__ = "execution_outputs"


class SummaryOutputDB(StageOutputMixin, Base):
    """Summary stage outputs."""

    __tablename__ = "summary_outputs"
