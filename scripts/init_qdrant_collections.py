#!/usr/bin/env python3
"""
Qdrant Collection Initialization Script

Creates one collection per example memory:
- Complexity examples (query -> reasoning passes)
- Thought examples (query -> exemplary reasoning)
- Plan examples (query -> exemplary plan)

Usage:
    uv run python scripts/init_qdrant_collections.py

Environment Variables:
    QDRANT_URL: Qdrant server URL (default: http://localhost:6333)
    QDRANT_API_KEY: API key for cloud deployment (optional)
    EMBEDDING_DIMENSION: Vector size (default: 768)
"""

import asyncio

from qdrant_client import AsyncQdrantClient

from agentchain.config import settings
from agentchain.services.vector_index import QdrantVectorIndex

COLLECTIONS = (
    settings.QDRANT_COMPLEXITY_COLLECTION,
    settings.QDRANT_THOUGHT_COLLECTION,
    settings.QDRANT_PLAN_COLLECTION,
)


async def init_qdrant_collections() -> None:
    """Create every example collection that does not exist yet."""
    print(f"Connecting to Qdrant at {settings.QDRANT_URL}...")

    client = AsyncQdrantClient(
        url=settings.QDRANT_URL,
        api_key=settings.QDRANT_API_KEY,
        timeout=settings.QDRANT_TIMEOUT,
    )

    try:
        collections = await client.get_collections()
        print(f"Connected successfully. Existing collections: {len(collections.collections)}")

        for name in COLLECTIONS:
            index = QdrantVectorIndex(client, name)
            await index.ensure_collection()
            print(f"Collection '{name}' is ready ({await index.count()} points)")
            print(f"  - Vector size: {index.dimension}")
            print("  - Distance metric: Cosine")

        print("\nQdrant collection initialization complete!")
    finally:
        await client.close()


if __name__ == "__main__":
    asyncio.run(init_qdrant_collections())
