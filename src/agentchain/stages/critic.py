"""
Critic Stage

Quality gate between planning and execution. Combines a deterministic
tool-name validation pass with an LLM critique and derives the
recommendation from the overall score:

    score >= approve threshold  -> approve
    score >= revise threshold   -> revise
    otherwise                   -> reject

A high-severity tool issue always rejects. A reject without any high or
critical issue is downgraded to revise.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, Field

from agentchain.config import settings
from agentchain.exceptions import MalformedUpstreamOutput, MissingDependency, ToolRegistryUnavailable
from agentchain.models.outputs import (
    CritiqueIssue,
    CritiqueOutput,
    FollowUpQuestion,
    IssueCategory,
    Plan,
    Recommendation,
    Severity,
)
from agentchain.models.request import RequestContext, StageName
from agentchain.services.llm_client import LanguageModel
from agentchain.services.output_store import OutputStores
from agentchain.services.request_store import RequestContextStore
from agentchain.services.tool_registry import ToolRegistry
from agentchain.stages.base import BaseStage, StageInput
from agentchain.stages.parsing import as_str_list, clamp, extract_json_object, pick
from agentchain.stages.planner import format_plan
from agentchain.stages.tool_validation import ToolValidationResult, validate_plan_tools

CRITIQUE_TEMPERATURE = 0.3
MIN_FALLBACK_SCORE = 0.3
UNPARSEABLE_DESCRIPTION = "critique response could not be parsed"

CRITIC_SYSTEM_PROMPT = """You are a Critic Agent. You review plans before they are executed and catch mistakes early.

Be thorough but fair. Your goal is preventing mistakes, not perfectionism.

Evaluate:
- Feasibility: can this plan be executed with the available tools?
- Correctness: is the logic sound?
- Efficiency: are there redundant steps?
- Safety: could this cause harm?
- Completeness: is any necessary information missing?

You MUST respond with ONLY a valid JSON object in this format:
{
  "overall_score": 0.75,
  "feasibility_score": 0.8,
  "correctness_score": 0.7,
  "efficiency_score": 0.6,
  "safety_score": 0.9,
  "strengths": ["..."],
  "issues": [
    {
      "severity": "low|medium|high|critical",
      "category": "logic|feasibility|efficiency|safety|completeness",
      "description": "Clear description of the issue",
      "suggestion": "How to fix it",
      "affected_steps": ["step-1"]
    }
  ],
  "follow_up_questions": [
    {"question": "...", "category": "missing-info|ambiguous|assumption|constraint", "priority": "low|medium|high"}
  ],
  "rationale": "Why"
}

Only ask follow-up questions when a required parameter has no value or the user intent is genuinely ambiguous."""

_SUBSCORE_KEYS = (
    ("feasibility_score", "feasibilityScore"),
    ("correctness_score", "correctnessScore"),
    ("efficiency_score", "efficiencyScore"),
    ("safety_score", "safetyScore"),
)


class CriticInput(StageInput):
    """Critic stage input."""

    user_feedback: list[str] = Field(
        default_factory=list, description="Answers to earlier follow-up questions"
    )


class LLMCritique(BaseModel):
    """Decoded LLM critique before tool validation is merged in."""

    overall_score: float = 0.5
    issues: list[CritiqueIssue] = Field(default_factory=list)
    follow_up_questions: list[FollowUpQuestion] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    rationale: str = ""
    parsed: bool = True


def _enum_value(enum_type: Any, value: Any, default: Any) -> Any:
    try:
        return enum_type(str(value).lower())
    except ValueError:
        return default


def _overall_score(data: dict[str, Any]) -> float:
    raw = pick(data, "overall_score", "overallScore")
    if raw is None or (not isinstance(raw, bool) and isinstance(raw, (int, float)) and raw == 0):
        subscores = [clamp(pick(data, *keys, default=0), default=0.0) for keys in _SUBSCORE_KEYS]
        return max(*subscores, MIN_FALLBACK_SCORE)
    return clamp(raw, default=0.5)


def _parse_issue(raw: Any) -> CritiqueIssue | None:
    if not isinstance(raw, dict):
        return None
    description = str(raw.get("description") or "").strip()
    if not description:
        return None
    affected = pick(raw, "affected_steps", "affectedSteps", "affected_step")
    affected_steps = as_str_list(affected)
    return CritiqueIssue(
        category=_enum_value(IssueCategory, raw.get("category"), IssueCategory.LOGIC),
        severity=_enum_value(Severity, raw.get("severity"), Severity.MEDIUM),
        description=description,
        suggestion=str(raw.get("suggestion") or "Review and fix"),
        affected_step=", ".join(affected_steps) or None,
    )


def _parse_question(raw: Any, idx: int) -> FollowUpQuestion | None:
    if not isinstance(raw, dict) or not str(raw.get("question") or "").strip():
        return None
    priority = str(raw.get("priority") or "medium").lower()
    return FollowUpQuestion(
        id=str(raw.get("id") or f"question-{idx}"),
        question=str(raw["question"]).strip(),
        category=str(raw.get("category") or "missing-info"),
        priority=priority if priority in ("low", "medium", "high") else "medium",
    )


def parse_critique(response: str) -> LLMCritique:
    """
    Decode an LLM critique.

    Raises:
        MalformedUpstreamOutput: If the response holds no JSON object
    """
    data = extract_json_object(response)
    raw_issues = pick(data, "issues", default=[])
    raw_questions = pick(data, "follow_up_questions", "followUpQuestions", default=[])
    if not isinstance(raw_issues, list):
        raw_issues = []
    if not isinstance(raw_questions, list):
        raw_questions = []
    issues = [i for i in (_parse_issue(r) for r in raw_issues) if i]
    questions = [
        q for q in (_parse_question(r, idx) for idx, r in enumerate(raw_questions, start=1)) if q
    ]
    return LLMCritique(
        overall_score=_overall_score(data),
        issues=issues,
        follow_up_questions=questions,
        strengths=as_str_list(data.get("strengths")),
        rationale=str(data.get("rationale") or "No rationale provided"),
    )


def unparseable_critique() -> LLMCritique:
    return LLMCritique(
        overall_score=0.5,
        issues=[
            CritiqueIssue(
                category=IssueCategory.LOGIC,
                severity=Severity.HIGH,
                description=UNPARSEABLE_DESCRIPTION,
                suggestion="Review the plan manually",
            )
        ],
        rationale="Failed to generate a proper critique. Manual review recommended.",
        parsed=False,
    )


def recommend(score: float, approve_threshold: float, revise_threshold: float) -> Recommendation:
    if score >= approve_threshold:
        return Recommendation.APPROVE
    if score >= revise_threshold:
        return Recommendation.REVISE
    return Recommendation.REJECT


class CriticStage(BaseStage[CriticInput, CritiqueOutput]):
    """Plan review."""

    stage_name = StageName.CRITIC
    input_model = CriticInput
    output_key = "critique"
    required_outputs = ("plan",)

    def __init__(
        self,
        request_store: RequestContextStore,
        stores: OutputStores,
        llm: LanguageModel,
        tool_registry: ToolRegistry | None = None,
        approve_threshold: float | None = None,
        revise_threshold: float | None = None,
    ) -> None:
        super().__init__(request_store, stores)
        self.llm = llm
        self.tool_registry = tool_registry
        self.approve_threshold = (
            approve_threshold if approve_threshold is not None else settings.CRITIC_APPROVE_THRESHOLD
        )
        self.revise_threshold = (
            revise_threshold if revise_threshold is not None else settings.CRITIC_REVISE_THRESHOLD
        )

    async def validate_tools(self, plan: Plan) -> ToolValidationResult:
        """Validate actions against the registry; skipped when it is unreachable."""
        if self.tool_registry is None:
            self.logger.warning("tool_validation_skipped", reason="no tool registry configured")
            return ToolValidationResult(skipped=True)
        try:
            registered = await self.tool_registry.list_tools()
        except ToolRegistryUnavailable as e:
            self.logger.warning("tool_validation_skipped", reason=str(e))
            return ToolValidationResult(skipped=True)
        return ToolValidationResult(
            issues=validate_plan_tools(plan, registered),
            validated_tools=registered,
        )

    @staticmethod
    def _build_prompt(query: str, plan: Plan, tools: list[str], user_feedback: list[str]) -> str:
        prompt = f"User Query: {query}\n\nPlan to review:\n{format_plan(plan)}\n\n"
        prompt += f"Plan confidence: {plan.confidence:.2f}\n"
        if plan.rationale:
            prompt += f"Plan rationale: {plan.rationale}\n"
        if tools:
            prompt += "\nAvailable Tools:\n" + "\n".join(f"- {t}" for t in tools) + "\n"
        if user_feedback:
            prompt += "\nUser answers to earlier questions:\n"
            prompt += "\n".join(f"- {f}" for f in user_feedback) + "\n"
        prompt += "\nParameters:\n" + json.dumps(
            {s.id: s.parameters for s in plan.steps}, indent=2, default=str
        )
        prompt += "\n\nCritique this plan. Respond with JSON only."
        return prompt

    async def run(self, data: CriticInput, context: RequestContext) -> CritiqueOutput:
        plan_output = await self.stores.plan.get_by_request_id(context.request_id)
        if plan_output is None:
            raise MissingDependency(self.stage_name.value, context.request_id, ["plan"])
        plan = plan_output.plan
        query = self.resolve_query(data, context)

        validation = await self.validate_tools(plan)

        response = await self.llm.invoke(
            self._build_prompt(query, plan, validation.validated_tools, data.user_feedback),
            max_tokens=settings.LLM_MAX_TOKENS,
            temperature=CRITIQUE_TEMPERATURE,
            system_prompt=CRITIC_SYSTEM_PROMPT,
        )
        try:
            critique = parse_critique(response)
        except MalformedUpstreamOutput as e:
            self.recovered("critique_unparseable", error=str(e))
            critique = unparseable_critique()

        issues = [*validation.issues, *critique.issues]
        if critique.parsed:
            recommendation = recommend(
                critique.overall_score, self.approve_threshold, self.revise_threshold
            )
        else:
            recommendation = Recommendation.REVISE

        if any(i.severity.is_blocking for i in validation.issues):
            recommendation = Recommendation.REJECT
        elif recommendation == Recommendation.REJECT and not any(
            i.severity.is_blocking for i in issues
        ):
            recommendation = Recommendation.REVISE

        self.logger.info(
            "plan_critiqued",
            request_id=context.request_id,
            plan_version=plan_output.version,
            score=round(critique.overall_score, 3),
            recommendation=recommendation.value,
            tool_issues=len(validation.issues),
            issues=len(issues),
        )
        return CritiqueOutput(
            request_id=context.request_id,
            request_context=context,
            plan_version=plan_output.version or 1,
            overall_score=critique.overall_score,
            recommendation=recommendation,
            issues=issues,
            follow_up_questions=critique.follow_up_questions,
            strengths=critique.strengths,
            rationale=critique.rationale,
            validated_tools=validation.validated_tools,
            tool_validation_skipped=validation.skipped,
        )
