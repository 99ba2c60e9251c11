"""
Example Models

Labelled query → configuration pairs used for semantic routing and few-shot
guidance. Vector index metadata is a flat string-keyed map, so list and
structured fields are JSON-encoded on write and decoded defensively on read:
a malformed field degrades to its empty/default value while the remaining
fields are preserved.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, ClassVar, Generic, TypeVar

import structlog
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from agentchain.models.outputs import PlanStep

logger = structlog.get_logger()

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Metadata Codecs
# ============================================================================


def encode_json_list(values: list[Any]) -> str:
    """Serialize a list field into a metadata string."""
    return json.dumps(values)


def decode_json_list(value: Any, field: str = "") -> list[Any]:
    """
    Decode a JSON-encoded list field.

    Native lists pass through. Anything that is not a JSON array decodes to
    an empty list.
    """
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        logger.warning("example_metadata_field_malformed", field=field)
        return []
    if not isinstance(decoded, list):
        logger.warning("example_metadata_field_not_list", field=field)
        return []
    return decoded


def _decode_float(value: Any, default: float | None, low: float = 0.0, high: float = 1.0) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def _decode_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _decode_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return _EPOCH


def _str_list(values: list[Any]) -> list[str]:
    return [str(v) for v in values if v is not None]


# ============================================================================
# Base Example
# ============================================================================


class Example(BaseModel):
    """Fields common to every example kind."""

    kind: ClassVar[str] = "example"

    id: str = Field(default="", description="Generated ID (assigned on store)")
    query: str = Field(..., min_length=1, description="Source query text")
    embedding: list[float] = Field(default_factory=list, description="Query embedding")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    usage_count: int = Field(default=0, ge=0, description="Successful matches")

    def payload_metadata(self) -> dict[str, Any]:
        """Stage-specific metadata entries."""
        raise NotImplementedError

    @classmethod
    def payload_from_metadata(cls, metadata: dict[str, Any]) -> dict[str, Any]:
        """Decode stage-specific fields from metadata."""
        raise NotImplementedError

    def to_metadata(self) -> dict[str, Any]:
        """Flatten into vector index metadata."""
        return {
            "kind": self.kind,
            "query": self.query,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "usage_count": self.usage_count,
            **self.payload_metadata(),
        }

    @classmethod
    def from_metadata(
        cls,
        example_id: str,
        metadata: dict[str, Any],
        embedding: list[float] | None = None,
    ):
        """Rebuild an example from vector index metadata."""
        data: dict[str, Any] = {
            "id": example_id,
            "query": str(metadata.get("query") or "(missing query)"),
            "embedding": embedding or [],
            "created_at": _decode_datetime(metadata.get("created_at")),
            "updated_at": _decode_datetime(metadata.get("updated_at")),
            "usage_count": max(0, _decode_int(metadata.get("usage_count"), 0)),
        }
        data.update(cls.payload_from_metadata(metadata))
        return cls.model_validate(data)


# ============================================================================
# Example Kinds
# ============================================================================


class ComplexityExample(Example):
    """Query labelled with a complexity verdict."""

    kind: ClassVar[str] = "complexity"

    complexity_score: float = Field(..., ge=0.0, le=1.0)
    reasoning_passes: int = Field(..., ge=1, le=3)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    tags: list[str] = Field(default_factory=list)
    agent_hints: list[str] = Field(default_factory=list)

    def payload_metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "complexity_score": self.complexity_score,
            "reasoning_passes": self.reasoning_passes,
            "tags": encode_json_list(self.tags),
            "agent_hints": encode_json_list(self.agent_hints),
        }
        if self.confidence is not None:
            metadata["confidence"] = self.confidence
        return metadata

    @classmethod
    def payload_from_metadata(cls, metadata: dict[str, Any]) -> dict[str, Any]:
        return {
            "complexity_score": _decode_float(metadata.get("complexity_score"), 0.5),
            "reasoning_passes": max(1, min(3, _decode_int(metadata.get("reasoning_passes"), 1))),
            "confidence": _decode_float(metadata.get("confidence"), None),
            "tags": _str_list(decode_json_list(metadata.get("tags"), "tags")),
            "agent_hints": _str_list(decode_json_list(metadata.get("agent_hints"), "agent_hints")),
        }


class ThoughtExample(Example):
    """Query paired with exemplary reasoning."""

    kind: ClassVar[str] = "thought"

    reasoning: str = ""
    approaches: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    uncertainties: list[str] = Field(default_factory=list)
    recommended_tools: list[str] = Field(default_factory=list)
    success_rating: float | None = Field(default=None, ge=0.0, le=1.0)
    tags: list[str] = Field(default_factory=list)

    LIST_FIELDS: ClassVar[tuple[str, ...]] = (
        "approaches",
        "constraints",
        "assumptions",
        "uncertainties",
        "recommended_tools",
        "tags",
    )

    def payload_metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"reasoning": self.reasoning}
        for name in self.LIST_FIELDS:
            metadata[name] = encode_json_list(getattr(self, name))
        if self.success_rating is not None:
            metadata["success_rating"] = self.success_rating
        return metadata

    @classmethod
    def payload_from_metadata(cls, metadata: dict[str, Any]) -> dict[str, Any]:
        data: dict[str, Any] = {
            "reasoning": str(metadata.get("reasoning") or ""),
            "success_rating": _decode_float(metadata.get("success_rating"), None),
        }
        for name in cls.LIST_FIELDS:
            data[name] = _str_list(decode_json_list(metadata.get(name), name))
        return data


class PlanExample(Example):
    """Query paired with an exemplary plan."""

    kind: ClassVar[str] = "plan"

    goal: str = ""
    steps: list[PlanStep] = Field(default_factory=list)
    rationale: str = ""
    success_rating: float | None = Field(default=None, ge=0.0, le=1.0)
    tags: list[str] = Field(default_factory=list)

    def payload_metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "goal": self.goal,
            "steps": encode_json_list([s.model_dump(mode="json") for s in self.steps]),
            "rationale": self.rationale,
            "tags": encode_json_list(self.tags),
        }
        if self.success_rating is not None:
            metadata["success_rating"] = self.success_rating
        return metadata

    @classmethod
    def payload_from_metadata(cls, metadata: dict[str, Any]) -> dict[str, Any]:
        steps: list[PlanStep] = []
        for raw in decode_json_list(metadata.get("steps"), "steps"):
            try:
                steps.append(PlanStep.model_validate(raw))
            except PydanticValidationError:
                logger.warning("plan_example_step_malformed")
        return {
            "goal": str(metadata.get("goal") or ""),
            "steps": steps,
            "rationale": str(metadata.get("rationale") or ""),
            "success_rating": _decode_float(metadata.get("success_rating"), None),
            "tags": _str_list(decode_json_list(metadata.get("tags"), "tags")),
        }


E = TypeVar("E", bound=Example)


class SimilarExample(BaseModel, Generic[E]):
    """An example together with its similarity to a query."""

    example: E
    similarity: float = Field(..., ge=-1.0, le=1.0)
