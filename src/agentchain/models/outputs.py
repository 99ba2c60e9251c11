"""
Stage Output Models

Every stage produces one variant of a closed, tagged union. Each variant
carries the request identity, a version, a timestamp and a snapshot of the
request context, plus its own structured content. Stored payloads are decoded
through the discriminated union so unknown shapes are rejected at the boundary
instead of flowing downstream.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from agentchain.models.request import (
    ComplexityScore,
    DetectionMethod,
    RequestContext,
    StageName,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Enumerations
# ============================================================================


class Severity(str, Enum):
    """Severity of a critique issue."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def is_blocking(self) -> bool:
        """High or critical issues block approval."""
        return self in (Severity.HIGH, Severity.CRITICAL)


class IssueCategory(str, Enum):
    """Category of a critique issue."""

    LOGIC = "logic"
    FEASIBILITY = "feasibility"
    EFFICIENCY = "efficiency"
    SAFETY = "safety"
    COMPLETENESS = "completeness"


class Recommendation(str, Enum):
    """Critic verdict on a plan."""

    APPROVE = "approve"
    REVISE = "revise"
    REJECT = "reject"


class StepStatus(str, Enum):
    """Outcome of executing one plan step."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# ============================================================================
# Base Output
# ============================================================================


class StageOutputBase(BaseModel):
    """Fields shared by every stage output."""

    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1] = Field(default=1, description="Payload schema version")
    request_id: str = Field(..., description="Request this output belongs to")
    version: int | None = Field(
        default=None, ge=1, description="Version within the request (assigned on save)"
    )
    agent_name: str = Field(..., description="Stage that produced the output")
    timestamp: datetime = Field(default_factory=_utcnow, description="Creation time")
    request_context: RequestContext = Field(..., description="Context snapshot")

    def index_score(self) -> float | None:
        """Numeric value stored in the indexed score column."""
        return None

    def index_confidence(self) -> float | None:
        """Numeric value stored in the indexed confidence column."""
        return None


# ============================================================================
# Complexity
# ============================================================================


class ComplexityDetection(StageOutputBase):
    """Verdict produced by the complexity router."""

    kind: Literal["complexity"] = "complexity"
    agent_name: str = StageName.COMPLEXITY.value
    user_query: str = Field(default="", description="Query that was classified")
    complexity: ComplexityScore = Field(..., description="Reasoning-depth directive")
    detection_method: DetectionMethod = Field(..., description="Strategy that produced the verdict")
    similarity: float | None = Field(default=None, description="Similarity of the matched example")
    matched_example_id: str | None = Field(default=None, description="ID of the matched example")
    detected_keywords: list[str] = Field(default_factory=list, description="Lexicon hits")
    llm_used: bool = Field(default=False, description="Whether the LLM strategy ran")
    llm_explanation: str | None = Field(default=None, description="LLM reasoning text")
    llm_confidence: float | None = Field(default=None, description="LLM-reported confidence")
    explanation: str = Field(default="", description="Human-readable explanation")

    def index_score(self) -> float | None:
        return self.complexity.score

    def index_confidence(self) -> float | None:
        return self.complexity.confidence


# ============================================================================
# Thought
# ============================================================================


class Thought(BaseModel):
    """One reasoning pass."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: f"thought-{uuid4().hex[:12]}")
    reasoning: str = Field(default="", description="Free-text reasoning")
    approaches: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    uncertainties: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning_pass: int = Field(default=1, ge=1, le=3)


class ThoughtOutput(StageOutputBase):
    """Multi-pass reasoning about the query."""

    kind: Literal["thought"] = "thought"
    agent_name: str = StageName.THOUGHT.value
    thoughts: list[Thought] = Field(default_factory=list, description="One entry per pass")
    primary_approach: str = Field(default="", description="Selected approach")
    key_insights: list[str] = Field(default_factory=list)
    recommended_tools: list[str] = Field(default_factory=list, description="Registered tools mentioned")
    reasoning_pass: int = Field(default=1, ge=1, le=3, description="Last completed pass")
    total_passes: int = Field(default=1, ge=1, le=3, description="Passes requested")
    confidence: float = Field(default=0.5, ge=0.0, le=1.0, description="Confidence of the final pass")
    few_shot_example_ids: list[str] = Field(default_factory=list)

    def index_confidence(self) -> float | None:
        return self.confidence


# ============================================================================
# Plan
# ============================================================================


class PlanStep(BaseModel):
    """One step of a plan. ``action`` names a tool."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., description="Step ID (step-N)")
    order: int = Field(..., ge=1, description="Execution order")
    description: str = Field(default="", description="What the step does")
    action: str = Field(default="unknown", description="Tool name")
    parameters: dict[str, Any] = Field(default_factory=dict)
    expected_outcome: str | None = Field(default=None)
    dependencies: list[str] = Field(default_factory=list, description="IDs of prerequisite steps")


class Plan(BaseModel):
    """Ordered steps toward a goal."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: f"plan-{uuid4().hex[:12]}")
    goal: str = Field(default="")
    steps: list[PlanStep] = Field(default_factory=list)
    estimated_complexity: float = Field(default=0.5, ge=0.0, le=1.0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    rationale: str | None = Field(default=None)


class PlanOutput(StageOutputBase):
    """Plan produced by the planner (one version per planning round)."""

    kind: Literal["plan"] = "plan"
    agent_name: str = StageName.PLANNER.value
    plan: Plan = Field(..., description="The plan")
    refined_from_version: int | None = Field(
        default=None, description="Plan version this one refines"
    )
    feedback: list[str] = Field(default_factory=list, description="Feedback that drove a refinement")

    def index_confidence(self) -> float | None:
        return self.plan.confidence


# ============================================================================
# Critique
# ============================================================================


class CritiqueIssue(BaseModel):
    """A problem found in a plan."""

    model_config = ConfigDict(extra="forbid")

    category: IssueCategory
    severity: Severity
    description: str
    suggestion: str = ""
    affected_step: str | None = None


class FollowUpQuestion(BaseModel):
    """Question for the user when the plan is missing information."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: f"q-{uuid4().hex[:8]}")
    question: str
    category: str = "missing-info"
    priority: Literal["low", "medium", "high"] = "medium"


class CritiqueOutput(StageOutputBase):
    """Critic assessment of the latest plan."""

    kind: Literal["critique"] = "critique"
    agent_name: str = StageName.CRITIC.value
    plan_version: int = Field(..., ge=1, description="Plan version that was reviewed")
    overall_score: float = Field(..., ge=0.0, le=1.0)
    recommendation: Recommendation
    issues: list[CritiqueIssue] = Field(default_factory=list)
    follow_up_questions: list[FollowUpQuestion] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    rationale: str = Field(default="")
    validated_tools: list[str] = Field(default_factory=list, description="Registry snapshot used")
    tool_validation_skipped: bool = Field(default=False)

    @model_validator(mode="after")
    def check_reject_has_blocking_issue(self) -> CritiqueOutput:
        """A rejection must cite at least one high or critical issue."""
        if self.recommendation == Recommendation.REJECT and not self.blocking_issues:
            raise ValueError("reject requires at least one high or critical issue")
        return self

    def index_score(self) -> float | None:
        return self.overall_score

    @property
    def blocking_issues(self) -> list[CritiqueIssue]:
        return [i for i in self.issues if i.severity.is_blocking]


# ============================================================================
# Meta
# ============================================================================


class MetaOutput(StageOutputBase):
    """Assessment of the reasoning so far and the loop decision."""

    kind: Literal["meta"] = "meta"
    agent_name: str = StageName.META.value
    reasoning_quality: float = Field(..., ge=0.0, le=1.0)
    should_replan: bool = False
    should_deepen_reasoning: bool = False
    recommended_actions: list[str] = Field(default_factory=list)
    reasoning_depth_recommendation: int = Field(default=1, ge=1, le=3)
    replan_strategy: str | None = None
    focus_areas: list[str] = Field(default_factory=list)
    assessment: str = ""
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)

    def index_score(self) -> float | None:
        return self.reasoning_quality

    def index_confidence(self) -> float | None:
        return self.confidence_score


# ============================================================================
# Execution
# ============================================================================


class StepResult(BaseModel):
    """Outcome of one plan step."""

    model_config = ConfigDict(extra="forbid")

    step_id: str
    order: int
    action: str
    status: StepStatus
    result: Any = None
    error: str | None = None
    duration_ms: float = 0.0
    arguments: dict[str, Any] = Field(default_factory=dict, description="Parameters sent to the tool")
    attempts: int = Field(default=0, ge=0, description="Tool calls made for this step")


class ExecutionOutput(StageOutputBase):
    """Results of running the latest plan against the tool registry."""

    kind: Literal["execution"] = "execution"
    agent_name: str = StageName.EXECUTOR.value
    plan_version: int = Field(..., ge=1)
    step_results: list[StepResult] = Field(default_factory=list)
    partial_results: dict[str, Any] = Field(default_factory=dict, description="Results by step ID")
    errors: list[str] = Field(default_factory=list)
    overall_success: bool = False


# ============================================================================
# Summary
# ============================================================================


class SummaryOutput(StageOutputBase):
    """Final user-facing answer."""

    kind: Literal["summary"] = "summary"
    agent_name: str = StageName.SUMMARY.value
    summary: str
    thoughts_summary: str = ""
    execution_summary: str = ""
    key_takeaways: list[str] = Field(default_factory=list)


# ============================================================================
# Union
# ============================================================================


StageOutput = Annotated[
    Union[
        ComplexityDetection,
        ThoughtOutput,
        PlanOutput,
        CritiqueOutput,
        MetaOutput,
        ExecutionOutput,
        SummaryOutput,
    ],
    Field(discriminator="kind"),
]

stage_output_adapter: TypeAdapter[StageOutput] = TypeAdapter(StageOutput)
