"""
Runtime wiring.

Builds the stores, collaborator clients, stages and pipeline controller
from settings and tears them down again. Everything here is created per
runtime; nothing is cached at module level.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from qdrant_client import AsyncQdrantClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentchain.config import settings
from agentchain.database.connection import close_db, init_db
from agentchain.models.examples import ComplexityExample, PlanExample, ThoughtExample
from agentchain.pipeline.controller import PipelineController
from agentchain.routing.complexity_router import ComplexityRouter
from agentchain.services.confidence_scorer import ConfidenceScorer
from agentchain.services.embedding_service import OllamaEmbeddingService
from agentchain.services.example_memory import ExampleMemory
from agentchain.services.llm_client import LLMClient, LLMClientConfig
from agentchain.services.output_store import OutputStores
from agentchain.services.request_store import RequestContextStore
from agentchain.services.tool_registry import MCPToolClient
from agentchain.services.vector_index import QdrantVectorIndex
from agentchain.stages.critic import CriticStage
from agentchain.stages.executor import ExecutorStage
from agentchain.stages.meta import MetaStage
from agentchain.stages.planner import PlannerStage
from agentchain.stages.summary import SummaryStage
from agentchain.stages.thought import ThoughtStage

logger = structlog.get_logger()


class Runtime:
    """Fully wired pipeline plus the handles needed to shut it down."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        qdrant: AsyncQdrantClient,
        embedder: OllamaEmbeddingService,
        llm: LLMClient,
        tools: MCPToolClient,
    ) -> None:
        self.session_factory = session_factory
        self.qdrant = qdrant
        self.embedder = embedder
        self.llm = llm
        self.tools = tools

        self.request_store = RequestContextStore(session_factory)
        self.stores = OutputStores.create(session_factory)

        self.indexes = {
            "complexity": QdrantVectorIndex(qdrant, settings.QDRANT_COMPLEXITY_COLLECTION),
            "thought": QdrantVectorIndex(qdrant, settings.QDRANT_THOUGHT_COLLECTION),
            "plan": QdrantVectorIndex(qdrant, settings.QDRANT_PLAN_COLLECTION),
        }
        self.complexity_memory = ExampleMemory(ComplexityExample, embedder, self.indexes["complexity"])
        self.thought_memory = ExampleMemory(ThoughtExample, embedder, self.indexes["thought"])
        self.plan_memory = ExampleMemory(PlanExample, embedder, self.indexes["plan"])

        self.controller = PipelineController(
            request_store=self.request_store,
            stores=self.stores,
            router=ComplexityRouter(self.request_store, self.stores, memory=self.complexity_memory, llm=llm),
            thought=ThoughtStage(
                self.request_store, self.stores, llm, memory=self.thought_memory, tool_registry=tools
            ),
            planner=PlannerStage(
                self.request_store, self.stores, llm, memory=self.plan_memory, tool_registry=tools
            ),
            critic=CriticStage(self.request_store, self.stores, llm, tool_registry=tools),
            meta=MetaStage(self.request_store, self.stores, llm),
            executor=ExecutorStage(self.request_store, self.stores, tools),
            summary=SummaryStage(self.request_store, self.stores, llm),
            scorer=ConfidenceScorer(),
        )

    def memory(self, kind: str) -> ExampleMemory:
        """Example memory by kind (complexity, thought or plan)."""
        memories = {
            "complexity": self.complexity_memory,
            "thought": self.thought_memory,
            "plan": self.plan_memory,
        }
        if kind not in memories:
            raise KeyError(kind)
        return memories[kind]

    async def ensure_collections(self) -> None:
        for index in self.indexes.values():
            await index.ensure_collection()

    async def close(self) -> None:
        await self.tools.close()
        await self.llm.close()
        await self.embedder.close()
        await self.qdrant.close()


@asynccontextmanager
async def open_runtime(
    database_url: str | None = None,
    create_tables: bool = False,
) -> AsyncGenerator[Runtime, None]:
    """
    Start a runtime from settings and close it on exit.

    Args:
        database_url: Override for the configured database URL
        create_tables: Create tables without migrations (local SQLite runs)
    """
    session_factory = await init_db(database_url, create_tables=create_tables)
    runtime = Runtime(
        session_factory=session_factory,
        qdrant=AsyncQdrantClient(
            url=settings.QDRANT_URL,
            api_key=settings.QDRANT_API_KEY,
            timeout=settings.QDRANT_TIMEOUT,
        ),
        embedder=OllamaEmbeddingService(),
        llm=LLMClient(LLMClientConfig.from_settings()),
        tools=MCPToolClient(),
    )
    logger.info("runtime_started")
    try:
        await runtime.ensure_collections()
        yield runtime
    finally:
        await runtime.close()
        await close_db()
        logger.info("runtime_stopped")
