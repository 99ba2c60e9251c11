#!/usr/bin/env python3
"""Seed labelled complexity examples for semantic routing.

Covers simple, medium and complex queries in the waste management domain so
the router's semantic strategy has neighbours to match against.

Usage:
    uv run python scripts/seed_complexity_examples.py
"""

import asyncio

from qdrant_client import AsyncQdrantClient

from agentchain.config import settings
from agentchain.exceptions import AgentChainError
from agentchain.models.examples import ComplexityExample
from agentchain.services.embedding_service import OllamaEmbeddingService
from agentchain.services.example_memory import ExampleMemory
from agentchain.services.vector_index import QdrantVectorIndex

EXAMPLES = [
    # Simple (1 reasoning pass): basic lookups, single operations
    ComplexityExample(query="list all facilities", complexity_score=0.2, reasoning_passes=1,
                      confidence=0.95, tags=["facility", "list", "simple"]),
    ComplexityExample(query="show me facility HAN", complexity_score=0.15, reasoning_passes=1,
                      confidence=0.95, tags=["facility", "get", "simple"]),
    ComplexityExample(query="what shipments are at facility HAN", complexity_score=0.25,
                      reasoning_passes=1, confidence=0.9, tags=["shipment", "facility", "simple"]),
    ComplexityExample(query="get inspection details", complexity_score=0.2, reasoning_passes=1,
                      confidence=0.9, tags=["inspection", "get", "simple"]),
    # Medium (2 reasoning passes): analysis, comparisons, single entity deep dive
    ComplexityExample(query="analyze facility HAN performance", complexity_score=0.5,
                      reasoning_passes=2, confidence=0.85,
                      tags=["facility", "analysis", "performance", "medium"],
                      agent_hints=["generate_intelligent_facility_report"]),
    ComplexityExample(query="compare facility HAN and facility WCR", complexity_score=0.55,
                      reasoning_passes=2, confidence=0.85, tags=["facility", "compare", "medium"]),
    ComplexityExample(query="analyze contamination risks for facility HAN", complexity_score=0.5,
                      reasoning_passes=2, confidence=0.85,
                      tags=["contaminant", "facility", "risk", "analysis", "medium"]),
    ComplexityExample(query="generate facility report for HAN", complexity_score=0.45,
                      reasoning_passes=2, confidence=0.9,
                      tags=["facility", "report", "generate", "medium"],
                      agent_hints=["generate_intelligent_facility_report"]),
    # Complex (3 reasoning passes): multi-entity, cross-facility, comprehensive analysis
    ComplexityExample(query="compare performance across all facilities and suggest improvements",
                      complexity_score=0.8, reasoning_passes=3, confidence=0.85,
                      tags=["facility", "all", "compare", "performance", "suggest", "complex"]),
    ComplexityExample(query="analyze contamination risks across all facilities and identify trends",
                      complexity_score=0.75, reasoning_passes=3, confidence=0.85,
                      tags=["contaminant", "facility", "all", "risk", "trends", "complex"]),
    ComplexityExample(
        query=(
            "analyze shipments across all facilities, identify high-risk contaminants, "
            "and suggest inspection questions"
        ),
        complexity_score=0.85, reasoning_passes=3, confidence=0.85,
        tags=["shipment", "facility", "all", "contaminant", "risk", "inspection", "complex"],
        agent_hints=["analyze_shipment_risk", "suggest_inspection_questions"],
    ),
    ComplexityExample(
        query="what is the total waste volume across all facilities and how does it compare by region",
        complexity_score=0.7, reasoning_passes=3, confidence=0.85,
        tags=["waste", "volume", "facility", "all", "aggregate", "compare", "complex"],
    ),
]


async def seed_complexity_examples() -> None:
    """Embed and store every example, reporting failures per example."""
    print(f"Starting to seed {len(EXAMPLES)} complexity examples...")

    client = AsyncQdrantClient(
        url=settings.QDRANT_URL,
        api_key=settings.QDRANT_API_KEY,
        timeout=settings.QDRANT_TIMEOUT,
    )
    embedder = OllamaEmbeddingService()
    index = QdrantVectorIndex(client, settings.QDRANT_COMPLEXITY_COLLECTION)
    memory = ExampleMemory(ComplexityExample, embedder, index)

    stored = failed = 0
    try:
        await index.ensure_collection()
        for example in EXAMPLES:
            try:
                created = await memory.store(example)
            except AgentChainError as e:
                failed += 1
                print(f"  ✗ {example.query}: {e}")
                continue
            stored += 1
            print(f"  ✓ [{created.reasoning_passes} pass] {created.query}")
    finally:
        await embedder.close()
        await client.close()

    print(f"\nSeeding complete: {stored} stored, {failed} failed")


if __name__ == "__main__":
    asyncio.run(seed_complexity_examples())
