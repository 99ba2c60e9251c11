"""Root-level pytest configuration and shared fixtures."""

from __future__ import annotations

from typing import Any, AsyncGenerator, Callable

import pytest
from qdrant_client import AsyncQdrantClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentchain.database import models  # noqa: F401 - Ensure models are loaded
from agentchain.database.connection import Base, create_engine_for_url, create_session_factory
from agentchain.models.examples import ComplexityExample, PlanExample, ThoughtExample
from agentchain.pipeline.controller import PipelineController
from agentchain.routing.complexity_router import ComplexityRouter
from agentchain.services.example_memory import ExampleMemory
from agentchain.services.output_store import OutputStores
from agentchain.services.request_store import RequestContextStore
from agentchain.services.vector_index import QdrantVectorIndex
from agentchain.stages.critic import CriticStage
from agentchain.stages.executor import ExecutorStage
from agentchain.stages.meta import MetaStage
from agentchain.stages.planner import PlannerStage
from agentchain.stages.summary import SummaryStage
from agentchain.stages.thought import ThoughtStage
from tests.fakes import TEST_DIMENSION, FakeToolRegistry, HashingEmbedder, ScriptedLLM

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite database with every table created."""
    engine = create_engine_for_url("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield create_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def request_store(session_factory) -> RequestContextStore:
    return RequestContextStore(session_factory)


@pytest.fixture
def stores(session_factory) -> OutputStores:
    return OutputStores.create(session_factory)


@pytest.fixture
async def qdrant() -> AsyncGenerator[AsyncQdrantClient, None]:
    client = AsyncQdrantClient(location=":memory:")
    yield client
    await client.close()


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


async def _index(client: AsyncQdrantClient, name: str) -> QdrantVectorIndex:
    index = QdrantVectorIndex(client, name, dimension=TEST_DIMENSION)
    await index.ensure_collection()
    return index


@pytest.fixture
async def complexity_memory(qdrant, embedder) -> ExampleMemory[ComplexityExample]:
    return ExampleMemory(ComplexityExample, embedder, await _index(qdrant, "complexity_examples"))


@pytest.fixture
async def thought_memory(qdrant, embedder) -> ExampleMemory[ThoughtExample]:
    return ExampleMemory(ThoughtExample, embedder, await _index(qdrant, "thought_examples"))


@pytest.fixture
async def plan_memory(qdrant, embedder) -> ExampleMemory[PlanExample]:
    return ExampleMemory(PlanExample, embedder, await _index(qdrant, "plan_examples"))


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def tool_registry() -> FakeToolRegistry:
    return FakeToolRegistry()


@pytest.fixture
def build_controller(
    request_store, stores, complexity_memory, thought_memory, plan_memory, tool_registry
) -> Callable[..., PipelineController]:
    """Factory wiring every stage around a given LLM double."""

    def _build(llm: ScriptedLLM, **kwargs: Any) -> PipelineController:
        return PipelineController(
            request_store=request_store,
            stores=stores,
            router=ComplexityRouter(request_store, stores, memory=complexity_memory, llm=llm),
            thought=ThoughtStage(
                request_store, stores, llm, memory=thought_memory, tool_registry=tool_registry
            ),
            planner=PlannerStage(
                request_store, stores, llm, memory=plan_memory, tool_registry=tool_registry
            ),
            critic=CriticStage(request_store, stores, llm, tool_registry=tool_registry),
            meta=MetaStage(request_store, stores, llm),
            executor=ExecutorStage(request_store, stores, tool_registry),
            summary=SummaryStage(request_store, stores, llm),
            **kwargs,
        )

    return _build
