"""
Tool validation for the critic.

Checks every plan step's action against a snapshot of the registered tool
names. Registered names are never flagged; everything else becomes a
feasibility issue whose severity depends on the shape of the name.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from agentchain.models.outputs import CritiqueIssue, IssueCategory, Plan, PlanStep, Severity

NON_TOOL_ACTIONS = frozenset({"manual", "manual_review", "review", "none"})

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


class ToolValidationResult(BaseModel):
    """Outcome of validating a plan against the registry snapshot."""

    issues: list[CritiqueIssue] = Field(default_factory=list)
    validated_tools: list[str] = Field(default_factory=list, description="Registry snapshot")
    skipped: bool = Field(default=False, description="Registry was unavailable")


def is_hallucinated(action: str) -> bool:
    """Names models invent for parallel or namespaced calls."""
    lower = action.lower()
    return (
        lower.startswith("multi_tool_use")
        or lower.endswith("_parallel")
        or lower.endswith(".parallel")
        or lower.startswith("functions.")
    )


def _issue(step: PlanStep, severity: Severity, description: str, suggestion: str) -> CritiqueIssue:
    return CritiqueIssue(
        category=IssueCategory.FEASIBILITY,
        severity=severity,
        description=description,
        suggestion=suggestion,
        affected_step=step.id,
    )


def check_step(step: PlanStep, registered: list[str]) -> CritiqueIssue | None:
    """Issue for one step, or None when its action is acceptable."""
    action = step.action.strip()
    if action in registered:
        return None
    if action.lower() in NON_TOOL_ACTIONS:
        return None

    if action == "unknown" or not action:
        return _issue(
            step,
            Severity.HIGH,
            f"Step {step.order} has no recognizable action; the plan could not be parsed into a tool call",
            "Specify an exact tool name for this step",
        )
    if is_hallucinated(action):
        return _issue(
            step,
            Severity.HIGH,
            f"Step {step.order} uses '{action}', which is not a real tool",
            "Split the call into separate steps that each use one registered tool",
        )
    if not _IDENTIFIER.match(action):
        return _issue(
            step,
            Severity.HIGH,
            f"Step {step.order} uses '{action}', which is not a valid tool identifier",
            "Use an exact tool name from the registry",
        )

    lower = action.lower()
    case_match = next((name for name in registered if name.lower() == lower), None)
    if case_match is not None:
        return _issue(
            step,
            Severity.LOW,
            f"Step {step.order} uses '{action}', which differs from '{case_match}' only by case",
            f"Use '{case_match}'",
        )

    candidates = [name for name in registered if lower in name.lower() or name.lower() in lower]
    if candidates:
        return _issue(
            step,
            Severity.MEDIUM,
            f"Step {step.order} uses unregistered tool '{action}'",
            f"Did you mean one of: {', '.join(candidates)}?",
        )
    return _issue(
        step,
        Severity.MEDIUM,
        f"Step {step.order} uses unregistered tool '{action}'",
        "Replace it with a registered tool",
    )


def validate_plan_tools(plan: Plan, registered: list[str]) -> list[CritiqueIssue]:
    """Issues for every step whose action is not a registered tool."""
    issues: list[CritiqueIssue] = []
    for step in sorted(plan.steps, key=lambda s: s.order):
        issue = check_step(step, registered)
        if issue is not None:
            issues.append(issue)
    return issues
