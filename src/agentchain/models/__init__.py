"""Domain models: request context, stage outputs and examples."""

from agentchain.models.examples import (
    ComplexityExample,
    Example,
    PlanExample,
    SimilarExample,
    ThoughtExample,
)
from agentchain.models.outputs import (
    ComplexityDetection,
    CritiqueIssue,
    CritiqueOutput,
    ExecutionOutput,
    FollowUpQuestion,
    IssueCategory,
    MetaOutput,
    Plan,
    PlanOutput,
    PlanStep,
    Recommendation,
    Severity,
    StageOutput,
    StageOutputBase,
    StepResult,
    StepStatus,
    SummaryOutput,
    Thought,
    ThoughtOutput,
)
from agentchain.models.request import (
    ComplexityScore,
    DetectionMethod,
    RequestContext,
    RequestFilter,
    RequestStatus,
    StageName,
)

__all__ = [
    "ComplexityDetection",
    "ComplexityExample",
    "ComplexityScore",
    "CritiqueIssue",
    "CritiqueOutput",
    "DetectionMethod",
    "Example",
    "ExecutionOutput",
    "FollowUpQuestion",
    "IssueCategory",
    "MetaOutput",
    "Plan",
    "PlanExample",
    "PlanOutput",
    "PlanStep",
    "Recommendation",
    "RequestContext",
    "RequestFilter",
    "RequestStatus",
    "Severity",
    "SimilarExample",
    "StageName",
    "StageOutput",
    "StageOutputBase",
    "StepResult",
    "StepStatus",
    "SummaryOutput",
    "Thought",
    "ThoughtExample",
    "ThoughtOutput",
]
