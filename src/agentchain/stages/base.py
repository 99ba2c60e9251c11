"""
Base Stage

Shared lifecycle for every reasoning stage:

1. Validate input before any side effect
2. Check required upstream outputs exist
3. Append the stage to the agent chain and mark the request in progress
4. Run the stage body
5. Persist the output as the next version
6. Mark the request completed (or failed, re-raising the error)

Status commits are independent of output commits. If the output save
fails, the failed status is still attempted but the two writes are not
transactional.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from agentchain.exceptions import AgentChainError, MissingDependency, ValidationError
from agentchain.models.outputs import StageOutputBase
from agentchain.models.request import RequestContext, RequestStatus, StageName
from agentchain.services import metrics
from agentchain.services.output_store import OutputStores, VersionedOutputStore
from agentchain.services.request_store import RequestContextStore

logger = structlog.get_logger()

I = TypeVar("I", bound="StageInput")
O = TypeVar("O", bound=StageOutputBase)


class StageInput(BaseModel):
    """Common stage input. ``query`` falls back to the context's user query."""

    model_config = ConfigDict(extra="forbid")

    query: str | None = Field(default=None, description="Query override")


class BaseStage(ABC, Generic[I, O]):
    """
    Abstract reasoning stage.

    Subclasses declare their name, input model, output store key and the
    upstream outputs they require, and implement ``run``.
    """

    stage_name: ClassVar[StageName]
    input_model: ClassVar[type[StageInput]] = StageInput
    output_key: ClassVar[str]
    required_outputs: ClassVar[tuple[str, ...]] = ()

    def __init__(self, request_store: RequestContextStore, stores: OutputStores) -> None:
        self.request_store = request_store
        self.stores = stores
        self.logger = logger.bind(stage=self.stage_name.value)

    @property
    def output_store(self) -> VersionedOutputStore[O]:
        return getattr(self.stores, self.output_key)

    # ------------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------------

    def validate_input(self, input_data: I | dict[str, Any] | None) -> I:
        """
        Coerce raw input into the stage's input model.

        Raises:
            ValidationError: If the input does not match the model
        """
        if isinstance(input_data, self.input_model):
            return input_data  # type: ignore[return-value]
        if input_data is not None and not isinstance(input_data, dict):
            raise ValidationError(
                f"{self.stage_name.value} expects {self.input_model.__name__}, "
                f"got {type(input_data).__name__}"
            )
        try:
            return self.input_model.model_validate(input_data or {})  # type: ignore[return-value]
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {self.stage_name.value} input: {e}") from e

    async def check_dependencies(self, request_id: str) -> None:
        """
        Raise MissingDependency when a required upstream output is absent.

        Nothing is persisted and the request status is left untouched.
        """
        missing = [
            key for key in self.required_outputs
            if not await getattr(self.stores, key).exists(request_id)
        ]
        if missing:
            raise MissingDependency(self.stage_name.value, request_id, missing)

    async def process(
        self,
        input_data: I | dict[str, Any] | None,
        request_context: RequestContext,
    ) -> tuple[O, RequestContext]:
        """
        Run the stage for one request.

        Args:
            input_data: Stage input (model instance or dict)
            request_context: Current context for the request

        Returns:
            Persisted output and the completed context

        Raises:
            ValidationError: If the input is invalid (no side effects)
            MissingDependency: If an upstream output is absent (no side effects)
            AgentChainError: Collaborator failures, after marking the request failed
        """
        if not isinstance(request_context, RequestContext):
            raise ValidationError("request_context must be a RequestContext")
        data = self.validate_input(input_data)
        await self.check_dependencies(request_context.request_id)
        return await self._execute(data, request_context)

    async def _execute(self, data: I, request_context: RequestContext) -> tuple[O, RequestContext]:
        started = time.perf_counter()
        context = request_context.add_agent_to_chain(self.stage_name.value).with_status(
            RequestStatus.IN_PROGRESS
        )
        await self.request_store.save(context)

        log = self.logger.bind(request_id=context.request_id)
        log.info("stage_started", agent_chain=context.agent_chain)

        try:
            output = await self.run(data, context)
            completed = self.finalize_context(context, output).with_status(RequestStatus.COMPLETED)
            output = output.model_copy(
                update={"request_id": context.request_id, "request_context": completed}
            )
            saved = await self.output_store.save(output)
            await self.request_store.save(completed)
        except Exception as e:
            await self._mark_failed(context, e, started)
            raise

        duration = time.perf_counter() - started
        metrics.record_stage(self.stage_name.value, "completed", duration)
        log.info("stage_completed", version=saved.version, duration_seconds=round(duration, 3))
        return saved, completed

    async def _mark_failed(self, context: RequestContext, error: Exception, started: float) -> None:
        """Best-effort failed status write; the original error is re-raised by the caller."""
        log = self.logger.bind(request_id=context.request_id)
        log.error(
            "stage_failed",
            error_type=type(error).__name__,
            error_message=str(error),
        )
        metrics.record_stage(self.stage_name.value, "failed", time.perf_counter() - started)
        metrics.record_stage_error(self.stage_name.value, type(error).__name__)
        try:
            await self.request_store.save(context.with_status(RequestStatus.FAILED))
        except AgentChainError as status_error:
            log.error(
                "stage_status_commit_failed",
                error_type=type(status_error).__name__,
                error_message=str(status_error),
            )

    # ------------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------------

    @abstractmethod
    async def run(self, data: I, context: RequestContext) -> O:
        """
        Stage body.

        Args:
            data: Validated input
            context: In-progress context (already persisted)

        Returns:
            Unsaved output; version and context snapshot are assigned on save
        """

    def finalize_context(self, context: RequestContext, output: O) -> RequestContext:
        """Context changes derived from the output, applied before completion."""
        return context

    def resolve_query(self, data: StageInput, context: RequestContext) -> str:
        return (data.query or context.user_query or "").strip()

    def recovered(self, event: str, **kwargs: Any) -> None:
        """Log an absorbed failure that was replaced with defaults."""
        self.logger.warning(event, **kwargs)
        metrics.record_parse_recovery(self.stage_name.value)
