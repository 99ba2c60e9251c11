"""
Vector Index

Similarity index boundary and its Qdrant implementation. Metadata is a flat
string-keyed map; callers are responsible for encoding structured fields.
One collection holds one example kind.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Protocol, runtime_checkable

import httpx
import structlog
from pydantic import BaseModel, Field
from qdrant_client import AsyncQdrantClient
from qdrant_client import models as qmodels
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import PointStruct

from agentchain.config import settings
from agentchain.exceptions import VectorIndexUnavailable

logger = structlog.get_logger()

_QDRANT_ERRORS = (UnexpectedResponse, ResponseHandlingException, httpx.HTTPError, OSError)

_SCROLL_PAGE_SIZE = 256


class VectorMatch(BaseModel):
    """One ranked query result."""

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class VectorRecord(BaseModel):
    """A stored point."""

    id: str
    vector: list[float] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class VectorIndex(Protocol):
    """Boundary for the vector similarity index."""

    dimension: int

    async def upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None: ...

    async def query(self, vector: list[float], top_k: int) -> list[VectorMatch]: ...

    async def fetch(self, id: str) -> VectorRecord | None: ...

    async def set_metadata(self, id: str, metadata: dict[str, Any]) -> None: ...

    async def delete(self, id: str) -> None: ...

    async def scan(self) -> list[VectorRecord]: ...

    async def count(self) -> int: ...

    async def clear(self) -> None: ...


class QdrantVectorIndex:
    """
    Qdrant-backed vector index for one collection.

    Usage:
        index = QdrantVectorIndex(client, "complexity_examples", dimension=768)
        await index.ensure_collection()
        await index.upsert(point_id, vector, {"query": "..."})
        matches = await index.query(vector, top_k=5)
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection_name: str,
        dimension: int | None = None,
    ) -> None:
        self.client = client
        self.collection_name = collection_name
        self.dimension = dimension or settings.EMBEDDING_DIMENSION
        self._logger = logger.bind(collection=collection_name)

    @classmethod
    def from_settings(cls, collection_name: str) -> QdrantVectorIndex:
        """Create an index with a client built from settings."""
        client = AsyncQdrantClient(
            url=settings.QDRANT_URL,
            api_key=settings.QDRANT_API_KEY,
            timeout=settings.QDRANT_TIMEOUT,
        )
        return cls(client, collection_name)

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncGenerator[None, None]:
        """Translate client failures into VectorIndexUnavailable."""
        try:
            yield
        except _QDRANT_ERRORS as e:
            self._logger.error("vector_index_operation_failed", operation=operation, error=str(e))
            raise VectorIndexUnavailable(
                f"Vector index {self.collection_name} failed during {operation}: {e}"
            ) from e

    async def ensure_collection(self) -> None:
        """Create the collection with cosine distance when missing."""
        async with self._guard("ensure_collection"):
            collections = await self.client.get_collections()
            names = [c.name for c in collections.collections]
            if self.collection_name in names:
                self._logger.debug("qdrant_collection_exists")
                return

            self._logger.info("creating_qdrant_collection", vector_size=self.dimension)
            await self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=qmodels.VectorParams(
                    size=self.dimension,
                    distance=qmodels.Distance.COSINE,
                ),
            )
            await self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name="kind",
                field_schema=qmodels.PayloadSchemaType.KEYWORD,
            )

    async def upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        """Insert or replace one point."""
        async with self._guard("upsert"):
            await self.client.upsert(
                collection_name=self.collection_name,
                points=[PointStruct(id=id, vector=vector, payload=metadata)],
            )

    async def query(self, vector: list[float], top_k: int) -> list[VectorMatch]:
        """Nearest points by cosine similarity, best first."""
        if top_k <= 0:
            return []
        async with self._guard("query"):
            response = await self.client.query_points(
                collection_name=self.collection_name,
                query=vector,
                limit=top_k,
                with_payload=True,
            )
        return [
            VectorMatch(id=str(point.id), score=point.score, metadata=point.payload or {})
            for point in response.points
        ]

    async def fetch(self, id: str) -> VectorRecord | None:
        """Get one point with its vector."""
        async with self._guard("fetch"):
            records = await self.client.retrieve(
                collection_name=self.collection_name,
                ids=[id],
                with_payload=True,
                with_vectors=True,
            )
        if not records:
            return None
        record = records[0]
        vector = record.vector if isinstance(record.vector, list) else []
        return VectorRecord(id=str(record.id), vector=vector, metadata=record.payload or {})

    async def set_metadata(self, id: str, metadata: dict[str, Any]) -> None:
        """Merge metadata into an existing point without touching its vector."""
        async with self._guard("set_metadata"):
            await self.client.set_payload(
                collection_name=self.collection_name,
                payload=metadata,
                points=[id],
            )

    async def delete(self, id: str) -> None:
        """Delete one point."""
        async with self._guard("delete"):
            await self.client.delete(
                collection_name=self.collection_name,
                points_selector=qmodels.PointIdsList(points=[id]),
            )

    async def scan(self) -> list[VectorRecord]:
        """Every point in the collection. O(n), paged through scroll."""
        records: list[VectorRecord] = []
        offset = None
        async with self._guard("scan"):
            while True:
                points, offset = await self.client.scroll(
                    collection_name=self.collection_name,
                    limit=_SCROLL_PAGE_SIZE,
                    offset=offset,
                    with_payload=True,
                    with_vectors=False,
                )
                records.extend(
                    VectorRecord(id=str(p.id), metadata=p.payload or {}) for p in points
                )
                if offset is None:
                    break
        return records

    async def count(self) -> int:
        """Number of points."""
        async with self._guard("count"):
            result = await self.client.count(collection_name=self.collection_name, exact=True)
        return result.count

    async def clear(self) -> None:
        """Drop and recreate the collection."""
        async with self._guard("clear"):
            await self.client.delete_collection(collection_name=self.collection_name)
        await self.ensure_collection()
        self._logger.warning("qdrant_collection_cleared")

    async def close(self) -> None:
        """Close the underlying client."""
        await self.client.close()
