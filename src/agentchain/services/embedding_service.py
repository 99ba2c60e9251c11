"""
Embedding Service

Generates vector embeddings for example matching. The production client
calls an Ollama-compatible ``/api/embeddings`` endpoint; any object with a
matching ``embed`` coroutine can stand in for it.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx
import structlog

from agentchain.config import settings
from agentchain.exceptions import EmbeddingUnavailable

logger = structlog.get_logger()


@runtime_checkable
class EmbeddingService(Protocol):
    """Boundary for text embedding. Deterministic for identical text."""

    dimension: int

    async def embed(self, text: str) -> list[float]:
        """Embed one text into a fixed-length vector."""
        ...


class OllamaEmbeddingService:
    """
    HTTP embedding client.

    Args:
        base_url: Embedding server URL
        model: Embedding model name
        dimension: Expected vector length
        timeout: Request timeout in seconds
        client: Optional preconfigured HTTP client
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        dimension: int | None = None,
        timeout: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url or settings.EMBEDDING_URL
        self.model = model or settings.EMBEDDING_MODEL
        self.dimension = dimension or settings.EMBEDDING_DIMENSION
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.EMBEDDING_TIMEOUT,
        )

        logger.info(
            "embedding_service_initialized",
            base_url=self.base_url,
            model=self.model,
            dimension=self.dimension,
        )

    async def embed(self, text: str) -> list[float]:
        """
        Generate embedding vector for a single text input.

        Args:
            text: Input text to embed

        Returns:
            Embedding of length ``dimension``

        Raises:
            EmbeddingUnavailable: If the service fails or returns a bad vector
        """
        if not text or not text.strip():
            raise EmbeddingUnavailable("Cannot generate embedding for empty text")

        try:
            response = await self.client.post(
                "/api/embeddings",
                json={"model": self.model, "prompt": text.strip()},
            )
            response.raise_for_status()
            embedding = response.json().get("embedding")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("embedding_request_failed", model=self.model, error=str(e))
            raise EmbeddingUnavailable(f"Embedding service failed: {e}") from e

        if not embedding:
            raise EmbeddingUnavailable("Empty embedding returned from embedding service")
        if len(embedding) != self.dimension:
            raise EmbeddingUnavailable(
                f"Embedding has {len(embedding)} dimensions, expected {self.dimension}"
            )
        return [float(v) for v in embedding]

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()
        logger.info("embedding_service_closed")
