"""
Example Memory

Generic store of labelled examples over an embedding service and a vector
index. One instance per example kind (complexity, thought, plan) backs
semantic routing and few-shot guidance.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, TypeVar
from uuid import UUID, uuid4

import structlog

from agentchain.exceptions import ValidationError
from agentchain.models.examples import Example, SimilarExample
from agentchain.services.embedding_service import EmbeddingService
from agentchain.services.vector_index import VectorIndex

logger = structlog.get_logger()

E = TypeVar("E", bound=Example)


def _is_point_id(value: str) -> bool:
    try:
        UUID(value)
    except (TypeError, ValueError):
        return False
    return True


class ExampleMemory(Generic[E]):
    """
    Example store parameterized by example kind.

    Args:
        example_type: Example model stored here
        embedder: Embedding service boundary
        index: Vector index boundary (one collection per kind)

    Failures:
        EmbeddingUnavailable propagates from the embedder.
        StorageUnavailable propagates from the index.
    """

    def __init__(
        self,
        example_type: type[E],
        embedder: EmbeddingService,
        index: VectorIndex,
    ) -> None:
        self.example_type = example_type
        self.embedder = embedder
        self.index = index
        self._logger = logger.bind(example_kind=example_type.kind)

    def _check_dimension(self, vector: list[float]) -> None:
        if len(vector) != self.index.dimension:
            raise ValidationError(
                f"Embedding has {len(vector)} dimensions, index expects {self.index.dimension}"
            )

    def _decode(self, example_id: str, metadata: dict[str, Any], vector: list[float] | None = None) -> E:
        return self.example_type.from_metadata(example_id, metadata, vector)

    async def store(self, example: E) -> E:
        """
        Embed and persist a new example.

        Args:
            example: Example without ID or embedding

        Returns:
            Stored example with ID, embedding and timestamps assigned

        Raises:
            ValidationError: If the embedding length does not match the index
        """
        embedding = await self.embedder.embed(example.query)
        self._check_dimension(embedding)

        now = datetime.now(timezone.utc)
        stored = example.model_copy(
            update={
                "id": str(uuid4()),
                "embedding": embedding,
                "created_at": now,
                "updated_at": now,
                "usage_count": 0,
            }
        )
        await self.index.upsert(stored.id, embedding, stored.to_metadata())
        self._logger.info("example_stored", example_id=stored.id, query=stored.query[:80])
        return stored

    async def query_similar(
        self,
        query_embedding: list[float],
        top_k: int = 5,
        min_score: float = 0.0,
    ) -> list[SimilarExample[E]]:
        """
        Ranked nearest examples.

        Results are filtered by ``similarity >= min_score`` and ordered by
        similarity descending; equal similarities keep insertion order.
        """
        self._check_dimension(query_embedding)
        matches = await self.index.query(query_embedding, top_k)

        results = [
            SimilarExample[self.example_type](
                example=self._decode(m.id, m.metadata),
                similarity=max(-1.0, min(1.0, m.score)),
            )
            for m in matches
            if m.score >= min_score
        ]
        results.sort(key=lambda r: r.example.created_at)
        results.sort(key=lambda r: r.similarity, reverse=True)

        self._logger.debug(
            "examples_matched",
            top_k=top_k,
            min_score=min_score,
            matched=len(results),
        )
        return results

    async def find_similar(self, text: str, top_k: int = 5, min_score: float = 0.0) -> list[SimilarExample[E]]:
        """Embed text and query similar examples."""
        embedding = await self.embedder.embed(text)
        return await self.query_similar(embedding, top_k=top_k, min_score=min_score)

    async def get(self, example_id: str) -> E | None:
        """Get one example with its embedding, or None."""
        if not _is_point_id(example_id):
            return None
        record = await self.index.fetch(example_id)
        if record is None:
            return None
        return self._decode(record.id, record.metadata, record.vector)

    async def get_all(self) -> list[E]:
        """Every stored example, newest first. Full scan."""
        records = await self.index.scan()
        examples = [self._decode(r.id, r.metadata) for r in records]
        examples.sort(key=lambda e: e.created_at, reverse=True)
        return examples

    async def increment_usage(self, example_id: str) -> E | None:
        """
        Increment the usage counter in place (last writer wins).

        Returns:
            Updated example, or None when it does not exist
        """
        example = await self.get(example_id)
        if example is None:
            self._logger.warning("example_usage_increment_missing", example_id=example_id)
            return None

        updated_at = datetime.now(timezone.utc)
        usage_count = example.usage_count + 1
        await self.index.set_metadata(
            example_id,
            {"usage_count": usage_count, "updated_at": updated_at.isoformat()},
        )
        return example.model_copy(update={"usage_count": usage_count, "updated_at": updated_at})

    async def update(self, example_id: str, changes: dict[str, Any]) -> E | None:
        """
        Update example fields.

        Metadata-only changes are applied in place. A changed query is
        re-embedded and written as a single upsert under the same ID, so
        the example never disappears from the index.

        Returns:
            Updated example, or None when it does not exist
        """
        example = await self.get(example_id)
        if example is None:
            return None

        protected = {"id", "embedding", "created_at", "usage_count"}
        data = example.model_dump()
        data.update({k: v for k, v in changes.items() if k not in protected})
        data["updated_at"] = datetime.now(timezone.utc)
        updated = self.example_type.model_validate(data)

        if updated.query != example.query:
            embedding = await self.embedder.embed(updated.query)
            self._check_dimension(embedding)
            updated = updated.model_copy(update={"embedding": embedding})
            await self.index.upsert(example_id, embedding, updated.to_metadata())
        else:
            await self.index.set_metadata(example_id, updated.to_metadata())

        self._logger.info("example_updated", example_id=example_id, fields=sorted(changes))
        return updated

    async def delete(self, example_id: str) -> bool:
        """Delete one example. Returns False when it did not exist."""
        if await self.get(example_id) is None:
            return False
        await self.index.delete(example_id)
        self._logger.info("example_deleted", example_id=example_id)
        return True

    async def clear(self) -> None:
        """Delete every example of this kind."""
        await self.index.clear()

    async def count(self) -> int:
        """Number of stored examples."""
        return await self.index.count()
