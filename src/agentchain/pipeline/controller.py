"""
Pipeline Controller

Drives one request through the chain:

    router -> thought -> planner -> critic -> review loop -> executor -> summary

The review loop scores the chain's confidence and, unless the critic
approved with enough confidence, asks the meta stage whether to replan
(back to the planner) or deepen reasoning (back to the thought stage).
Both loops are capped. Stages for a request run strictly one at a time;
different requests share no mutable state and may run concurrently.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from agentchain.config import settings
from agentchain.exceptions import ReplanLimitExceeded, ValidationError
from agentchain.models.outputs import (
    ComplexityDetection,
    CritiqueOutput,
    ExecutionOutput,
    MetaOutput,
    PlanOutput,
    Recommendation,
    StageOutputBase,
    SummaryOutput,
    ThoughtOutput,
)
from agentchain.models.request import RequestContext, RequestStatus, StageName
from agentchain.routing.complexity_router import ComplexityRouter, RouterInput
from agentchain.services import metrics
from agentchain.services.confidence_scorer import AgentScore, ConfidenceAssessment, ConfidenceScorer
from agentchain.services.output_store import OutputStores
from agentchain.services.request_store import RequestContextStore
from agentchain.stages.base import BaseStage
from agentchain.stages.critic import CriticInput, CriticStage
from agentchain.stages.executor import ExecutorInput, ExecutorStage
from agentchain.stages.meta import MetaInput, MetaStage
from agentchain.stages.planner import PlannerInput, PlannerStage
from agentchain.stages.summary import SummaryInput, SummaryStage
from agentchain.stages.thought import ThoughtInput, ThoughtStage

logger = structlog.get_logger()


class Phase(IntEnum):
    """Pipeline phases in execution order."""

    COMPLEXITY = 0
    THOUGHT = 1
    PLANNER = 2
    CRITIC = 3
    REVIEW = 4
    EXECUTOR = 5
    SUMMARY = 6
    DONE = 7


# ============================================================================
# Result
# ============================================================================


class PipelineResult(BaseModel):
    """Latest outputs of a pipeline run."""

    request_id: str = Field(..., description="Request ID")
    context: RequestContext | None = Field(default=None, description="Final context")
    complexity: ComplexityDetection | None = None
    thought: ThoughtOutput | None = None
    plan: PlanOutput | None = None
    critique: CritiqueOutput | None = None
    meta: MetaOutput | None = None
    execution: ExecutionOutput | None = None
    summary: SummaryOutput | None = None
    confidence: ConfidenceAssessment | None = Field(default=None, description="Last confidence assessment")
    replans: int = Field(default=0, description="Replans performed for this request")
    deepenings: int = Field(default=0, description="Deepenings performed for this request")
    halted_after: str | None = Field(default=None, description="Stage the run stopped after")

    @property
    def completed(self) -> bool:
        return self.summary is not None and self.halted_after is None

    def record(self, output: StageOutputBase) -> None:
        """Store an output under its kind."""
        setattr(self, output.kind, output)  # type: ignore[attr-defined]


class _Halt(Exception):
    """Internal signal: the run reached ``stop_after``."""


class _Run:
    """Mutable state of one run. Never shared between requests."""

    def __init__(self, result: PipelineResult, stop_after: StageName | None) -> None:
        self.result = result
        self.stop_after = stop_after

    @property
    def context(self) -> RequestContext:
        assert self.result.context is not None
        return self.result.context


# ============================================================================
# Controller
# ============================================================================


class PipelineController:
    """
    Runs requests through the stage chain.

    Args:
        request_store: Request context store
        stores: Output stores
        router: Complexity router stage
        thought, planner, critic, meta, executor, summary: Reasoning stages
        scorer: Confidence scorer for the review loop
    """

    def __init__(
        self,
        request_store: RequestContextStore,
        stores: OutputStores,
        router: ComplexityRouter,
        thought: ThoughtStage,
        planner: PlannerStage,
        critic: CriticStage,
        meta: MetaStage,
        executor: ExecutorStage,
        summary: SummaryStage,
        scorer: ConfidenceScorer | None = None,
        max_replans: int | None = None,
        max_deepenings: int | None = None,
        meta_confidence_trigger: float | None = None,
        execute_rejected_plans: bool | None = None,
    ) -> None:
        self.request_store = request_store
        self.stores = stores
        self.router = router
        self.thought = thought
        self.planner = planner
        self.critic = critic
        self.meta = meta
        self.executor = executor
        self.summary = summary
        self.scorer = scorer or ConfidenceScorer()
        self.max_replans = max_replans if max_replans is not None else settings.PIPELINE_MAX_REPLANS
        self.max_deepenings = (
            max_deepenings if max_deepenings is not None else settings.PIPELINE_MAX_DEEPENINGS
        )
        self.meta_confidence_trigger = (
            meta_confidence_trigger
            if meta_confidence_trigger is not None
            else settings.PIPELINE_META_CONFIDENCE_TRIGGER
        )
        self.execute_rejected_plans = (
            execute_rejected_plans
            if execute_rejected_plans is not None
            else settings.PIPELINE_EXECUTE_REJECTED_PLANS
        )

    # ------------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------------

    async def run(
        self,
        query: str,
        request_id: str | None = None,
        stop_after: StageName | str | None = None,
    ) -> PipelineResult:
        """
        Run the full chain for a query.

        Args:
            query: User query
            request_id: Existing request to attach to (created when unknown)
            stop_after: Stage name after which the chain is abandoned

        Returns:
            Latest outputs of the run

        Raises:
            AgentChainError: Any stage failure, after the stage marked the request failed
            ReplanLimitExceeded: If the plan is still rejected after the replan cap
        """
        run = _Run(PipelineResult(request_id=request_id or ""), self._stop_stage(stop_after))
        return await self._drive(run, Phase.COMPLEXITY, query)

    async def resume(self, request_id: str, stop_after: StageName | str | None = None) -> PipelineResult:
        """
        Continue a request from the first phase without a usable output.

        Raises:
            ValidationError: If the request does not exist
        """
        context = await self.request_store.get(request_id)
        if context is None:
            raise ValidationError(f"Unknown request {request_id}")

        result = await self.load(request_id)
        result.context = context
        phase = self._resume_phase(result)
        logger.info("pipeline_resuming", request_id=request_id, phase=phase.name.lower())

        run = _Run(result, self._stop_stage(stop_after))
        if phase == Phase.DONE:
            return result
        return await self._drive(run, phase, context.user_query or "")

    async def load(self, request_id: str) -> PipelineResult:
        """
        Latest persisted outputs for a request.

        Loop counters are rebuilt from the stored versions: every deepening
        writes one extra thought, and every replan or deepening writes one
        extra plan.
        """
        thoughts = await self.stores.thought.get_all_versions_by_request_id(request_id)
        plans = await self.stores.plan.get_all_versions_by_request_id(request_id)
        deepenings = max(0, len(thoughts) - 1)
        return PipelineResult(
            request_id=request_id,
            context=await self.request_store.get(request_id),
            complexity=await self.stores.complexity.get_by_request_id(request_id),
            thought=thoughts[-1] if thoughts else None,
            plan=plans[-1] if plans else None,
            critique=await self.stores.critique.get_by_request_id(request_id),
            meta=await self.stores.meta.get_by_request_id(request_id),
            execution=await self.stores.execution.get_by_request_id(request_id),
            summary=await self.stores.summary.get_by_request_id(request_id),
            replans=max(0, len(plans) - 1 - deepenings),
            deepenings=deepenings,
        )

    # ------------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------------

    @staticmethod
    def _stop_stage(stop_after: StageName | str | None) -> StageName | None:
        if stop_after is None or isinstance(stop_after, StageName):
            return stop_after
        try:
            return StageName(stop_after)
        except ValueError as e:
            valid = ", ".join(s.value for s in StageName)
            raise ValidationError(f"Unknown stage {stop_after!r}; expected one of: {valid}") from e

    @staticmethod
    def _resume_phase(result: PipelineResult) -> Phase:
        if result.complexity is None:
            return Phase.COMPLEXITY
        if result.thought is None:
            return Phase.THOUGHT
        if result.plan is None:
            return Phase.PLANNER
        if result.critique is None or result.critique.plan_version != result.plan.version:
            return Phase.CRITIC
        if result.execution is None or result.execution.plan_version != result.plan.version:
            return Phase.REVIEW
        if result.summary is None:
            return Phase.SUMMARY
        return Phase.DONE

    async def _drive(self, run: _Run, start: Phase, query: str) -> PipelineResult:
        try:
            if start <= Phase.COMPLEXITY:
                output, context = await self.router.process(
                    RouterInput(query=query, request_id=run.result.request_id or None),
                    run.result.context,
                )
                self._record(run, output, context)
            log = logger.bind(request_id=run.context.request_id)
            log.info("pipeline_started", phase=start.name.lower(), agent_chain=run.context.agent_chain)

            if start <= Phase.THOUGHT:
                await self._advance(run, self.thought, ThoughtInput())
            if start <= Phase.PLANNER:
                await self._advance(run, self.planner, PlannerInput())
            if start <= Phase.CRITIC:
                await self._advance(run, self.critic, CriticInput())
            if start <= Phase.REVIEW:
                await self._review(run)
            if start <= Phase.EXECUTOR:
                await self._advance(run, self.executor, ExecutorInput())
            await self._advance(run, self.summary, SummaryInput())
        except _Halt:
            metrics.record_pipeline_run("halted")
            logger.info(
                "pipeline_halted",
                request_id=run.result.request_id,
                stop_after=run.result.halted_after,
            )
            return run.result
        except Exception:
            metrics.record_pipeline_run("failed")
            raise

        metrics.record_pipeline_run("completed")
        log.info(
            "pipeline_completed",
            agent_chain=run.context.agent_chain,
            replans=run.result.replans,
            deepenings=run.result.deepenings,
        )
        return run.result

    def _record(self, run: _Run, output: StageOutputBase, context: RequestContext) -> None:
        run.result.record(output)
        run.result.context = context
        run.result.request_id = context.request_id
        if run.stop_after is not None and output.agent_name == run.stop_after.value:
            run.result.halted_after = output.agent_name
            raise _Halt()

    async def _advance(self, run: _Run, stage: BaseStage, data: Any) -> None:
        output, context = await stage.process(data, run.context)
        self._record(run, output, context)

    # ------------------------------------------------------------------------
    # Review loop
    # ------------------------------------------------------------------------

    def assess(self, result: PipelineResult) -> ConfidenceAssessment:
        """Weighted confidence over the thought, plan and critique."""
        scores: list[AgentScore] = []
        if result.thought is not None:
            scores.append(AgentScore(agent_name=StageName.THOUGHT.value, score=result.thought.confidence))
        if result.plan is not None:
            scores.append(AgentScore(agent_name=StageName.PLANNER.value, score=result.plan.plan.confidence))
        if result.critique is not None:
            scores.append(
                AgentScore(agent_name=StageName.CRITIC.value, score=result.critique.overall_score)
            )
        return self.scorer.score(scores)

    @staticmethod
    def _replan_feedback(critique: CritiqueOutput, meta: MetaOutput) -> list[str]:
        feedback = [
            f"[{issue.severity.value}] {issue.description}. Suggestion: {issue.suggestion}"
            if issue.suggestion
            else f"[{issue.severity.value}] {issue.description}"
            for issue in critique.issues
        ]
        if meta.replan_strategy:
            feedback.append(meta.replan_strategy)
        feedback.extend(meta.recommended_actions)
        return feedback or ["Improve the plan"]

    async def _fail(self, run: _Run, error: Exception) -> None:
        context = run.context.with_status(RequestStatus.FAILED)
        await self.request_store.save(context)
        run.result.context = context
        logger.error(
            "pipeline_failed",
            request_id=context.request_id,
            error_type=type(error).__name__,
            error_message=str(error),
        )

    async def _review(self, run: _Run) -> None:
        result = run.result
        while True:
            critique = result.critique
            assert critique is not None
            assessment = self.assess(result)
            result.confidence = assessment

            if (
                critique.recommendation == Recommendation.APPROVE
                and assessment.weighted_confidence >= self.meta_confidence_trigger
            ):
                return

            await self._advance(
                run,
                self.meta,
                MetaInput(
                    thoughts=result.thought,
                    plan=result.plan,
                    critique=critique,
                    confidence_score=assessment.weighted_confidence,
                ),
            )
            meta = result.meta
            assert meta is not None

            if meta.should_replan and result.replans < self.max_replans:
                result.replans += 1
                metrics.record_loop("replan")
                logger.info("pipeline_replanning", request_id=result.request_id, replan=result.replans)
                await self._advance(
                    run, self.planner, PlannerInput(feedback=self._replan_feedback(critique, meta))
                )
                await self._advance(run, self.critic, CriticInput())
                continue

            if meta.should_deepen_reasoning and result.deepenings < self.max_deepenings:
                result.deepenings += 1
                metrics.record_loop("deepen")
                current = result.thought.total_passes if result.thought else 1
                passes = max(meta.reasoning_depth_recommendation, min(3, current + 1))
                logger.info(
                    "pipeline_deepening",
                    request_id=result.request_id,
                    deepening=result.deepenings,
                    passes=passes,
                )
                await self._advance(
                    run,
                    self.thought,
                    ThoughtInput(
                        reasoning_passes=passes,
                        focus_areas=meta.focus_areas,
                        feedback=meta.recommended_actions,
                    ),
                )
                await self._advance(run, self.planner, PlannerInput())
                await self._advance(run, self.critic, CriticInput())
                continue

            if critique.recommendation == Recommendation.REJECT and not self.execute_rejected_plans:
                error = ReplanLimitExceeded(result.request_id, result.replans)
                await self._fail(run, error)
                raise error
            return
