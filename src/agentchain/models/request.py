"""
Request Context Models

The per-request state machine record shared by every stage of the chain,
plus the complexity verdict the router attaches to it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enumerations
# ============================================================================


class RequestStatus(str, Enum):
    """Lifecycle status of a request."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class StageName(str, Enum):
    """Names recorded in the agent chain, one per stage."""

    COMPLEXITY = "complexity-detector"
    THOUGHT = "thought-agent"
    PLANNER = "planner-agent"
    CRITIC = "critic-agent"
    META = "meta-agent"
    EXECUTOR = "executor-agent"
    SUMMARY = "summary-agent"


class DetectionMethod(str, Enum):
    """Strategy that produced a complexity verdict."""

    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    LLM = "llm"


# ============================================================================
# Complexity
# ============================================================================


class ComplexityScore(BaseModel):
    """Reasoning-depth directive derived from a query."""

    model_config = ConfigDict(extra="forbid")

    score: float = Field(..., ge=0.0, le=1.0, description="Complexity score")
    reasoning_passes: int = Field(..., ge=1, le=3, description="Reasoning passes to run")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence in the verdict")
    factors: dict[str, float] = Field(
        default_factory=dict, description="Per-factor contributions (keyword strategy)"
    )


# ============================================================================
# Request Context
# ============================================================================


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestContext(BaseModel):
    """
    State machine record for one request.

    The agent chain is append-only and idempotent: each stage name appears at
    most once, in first-invocation order. Mutators return updated copies so a
    snapshot held by a stage output never changes afterwards.
    """

    model_config = ConfigDict(extra="forbid")

    request_id: str = Field(
        default_factory=lambda: str(uuid4()), description="Opaque unique request ID"
    )
    created_at: datetime = Field(default_factory=_utcnow, description="Creation time")
    updated_at: datetime = Field(default_factory=_utcnow, description="Last status change")
    agent_chain: list[str] = Field(
        default_factory=list, description="Stage names in execution order"
    )
    status: RequestStatus = Field(default=RequestStatus.PENDING, description="Lifecycle status")
    user_query: str | None = Field(default=None, description="Original query text")
    complexity: ComplexityScore | None = Field(
        default=None, description="Complexity verdict attached by the router"
    )

    @classmethod
    def create(cls, user_query: str | None = None, request_id: str | None = None) -> RequestContext:
        """
        Start a new chain.

        Args:
            user_query: Original query text
            request_id: Caller-chosen ID (generated when omitted)

        Returns:
            Context with status pending and an empty chain
        """
        data: dict[str, Any] = {"user_query": user_query}
        if request_id:
            data["request_id"] = request_id
        return cls(**data)

    def add_agent_to_chain(self, agent_name: str) -> RequestContext:
        """Return a copy with ``agent_name`` appended unless already present."""
        if agent_name in self.agent_chain:
            return self
        return self.model_copy(update={"agent_chain": [*self.agent_chain, agent_name]})

    def with_status(self, status: RequestStatus) -> RequestContext:
        """Return a copy with the given status."""
        return self.model_copy(update={"status": status, "updated_at": _utcnow()})

    def with_complexity(self, complexity: ComplexityScore) -> RequestContext:
        """Return a copy carrying the router's verdict."""
        return self.model_copy(update={"complexity": complexity})


class RequestFilter(BaseModel):
    """Filters for listing request contexts."""

    status: RequestStatus | None = Field(default=None, description="Exact status")
    agent_name: str | None = Field(default=None, description="Stage name present in the chain")
    start: datetime | None = Field(default=None, description="Created at or after")
    end: datetime | None = Field(default=None, description="Created at or before")
    limit: int | None = Field(default=None, ge=1, description="Maximum records returned")
