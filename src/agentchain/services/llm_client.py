"""
LLM Client

Chat-completions client for any OpenAI-compatible endpoint. Failed calls
are retried on a fixed delay schedule, and consecutive failures trip a
circuit breaker that rejects calls until its cool-down elapses.

Stages see only the ``LanguageModel`` protocol: ``invoke`` returns raw
text with no guarantee of structure.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog
from pydantic import BaseModel, Field

from agentchain.config import settings
from agentchain.exceptions import LLMUnavailable

logger = structlog.get_logger()


@runtime_checkable
class LanguageModel(Protocol):
    """Boundary for language model calls."""

    async def invoke(
        self,
        prompt: str,
        *,
        max_tokens: int = 2048,
        temperature: float = 0.7,
        system_prompt: str | None = None,
    ) -> str:
        """Return the completion text for a prompt."""
        ...


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class LLMClientConfig(BaseModel):
    """Connection, retry and breaker settings for ``LLMClient``."""

    api_key: str = Field(..., description="Bearer token for the completions API")
    base_url: str = Field(default="https://api.openai.com/v1")
    default_model: str = Field(default="gpt-4.1-mini")
    timeout_seconds: int = Field(default=60, ge=1, le=300)
    max_retries: int = Field(default=3, ge=1, le=10, description="Total attempts per call")
    retry_delays: list[float] = Field(
        default=[1.0, 2.0, 4.0],
        description="Pause before attempt N+1; the last entry repeats",
    )
    circuit_breaker_threshold: int = Field(default=5, ge=1, description="Consecutive failures that open the breaker")
    circuit_breaker_timeout: int = Field(default=60, ge=1, description="Cool-down before a trial call")
    connection_pool_size: int = Field(default=10, ge=1, le=100)

    @classmethod
    def from_settings(cls) -> LLMClientConfig:
        return cls(
            api_key=settings.LLM_API_KEY,
            base_url=settings.LLM_BASE_URL,
            default_model=settings.LLM_MODEL,
            timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
            max_retries=settings.LLM_MAX_RETRIES,
        )


class GenerationResult(BaseModel):
    """One parsed completion."""

    content: str
    tokens_used: int = Field(..., ge=0)
    finish_reason: str
    model: str


class CircuitBreaker:
    """Consecutive-failure breaker with a timed half-open trial."""

    def __init__(self, threshold: int, cooldown: float) -> None:
        self.threshold = threshold
        self.cooldown = cooldown
        self.state = CircuitState.CLOSED
        self.failures = 0
        self._opened_at: float | None = None

    def guard(self) -> None:
        """Raise while open; move to half-open once the cool-down has passed."""
        if self.state != CircuitState.OPEN:
            return
        now = asyncio.get_running_loop().time()
        if self._opened_at is not None and now - self._opened_at >= self.cooldown:
            self.state = CircuitState.HALF_OPEN
            logger.info("llm_circuit_half_open")
            return
        raise LLMUnavailable(f"Circuit breaker OPEN. Retry after {self.cooldown:g}s")

    def succeeded(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            logger.info("llm_circuit_closed")
        self.state = CircuitState.CLOSED
        self.failures = 0
        self._opened_at = None

    def failed(self) -> bool:
        """Count a failure. Returns True when this failure opened the breaker."""
        self.failures += 1
        if self.failures < self.threshold:
            return False
        self.state = CircuitState.OPEN
        self._opened_at = asyncio.get_running_loop().time()
        logger.error("llm_circuit_opened", failures=self.failures, threshold=self.threshold)
        return True


def _parse_completion(data: dict[str, Any], requested_model: str) -> GenerationResult:
    choice = data["choices"][0]
    return GenerationResult(
        content=choice["message"]["content"] or "",
        tokens_used=data.get("usage", {}).get("total_tokens", 0),
        finish_reason=choice.get("finish_reason") or "stop",
        model=data.get("model", requested_model),
    )


class LLMClient:
    """Async ``LanguageModel`` backed by an OpenAI-compatible HTTP API."""

    def __init__(self, config: LLMClientConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self.breaker = CircuitBreaker(config.circuit_breaker_threshold, config.circuit_breaker_timeout)
        self.client = client or httpx.AsyncClient(
            base_url=config.base_url,
            headers={"Authorization": f"Bearer {config.api_key}", "Content-Type": "application/json"},
            timeout=config.timeout_seconds,
            limits=httpx.Limits(
                max_keepalive_connections=config.connection_pool_size,
                max_connections=config.connection_pool_size,
            ),
        )
        logger.info("llm_client_initialized", base_url=config.base_url, model=config.default_model)

    @property
    def circuit_state(self) -> CircuitState:
        return self.breaker.state

    def _delay(self, attempt: int) -> float:
        delays = self.config.retry_delays or [0.0]
        return delays[min(attempt, len(delays) - 1)]

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
        model: str | None = None,
    ) -> GenerationResult:
        """
        Request one completion.

        Raises:
            LLMUnavailable: When the breaker is open, opens during the call,
                or every attempt fails
        """
        self.breaker.guard()

        model = model or self.config.default_model
        messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
        messages.append({"role": "user", "content": prompt})
        body = {"model": model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens}

        error: Exception | None = None
        attempts = self.config.max_retries
        for attempt in range(attempts):
            if attempt:
                await asyncio.sleep(self._delay(attempt - 1))
            try:
                response = await self.client.post("/chat/completions", json=body)
                response.raise_for_status()
                result = _parse_completion(response.json(), model)
            except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
                error = e
                logger.warning("llm_attempt_failed", attempt=attempt + 1, attempts=attempts, error=str(e))
                if self.breaker.failed():
                    raise LLMUnavailable("Circuit breaker opened after failure") from e
                continue

            self.breaker.succeeded()
            logger.info(
                "llm_response",
                model=result.model,
                tokens=result.tokens_used,
                finish_reason=result.finish_reason,
                attempt=attempt + 1,
            )
            return result

        logger.error("llm_unavailable", attempts=attempts, error=str(error))
        raise LLMUnavailable(f"LLM request failed after {attempts} attempts") from error

    async def invoke(
        self,
        prompt: str,
        *,
        max_tokens: int = 2048,
        temperature: float = 0.7,
        system_prompt: str | None = None,
    ) -> str:
        result = await self.generate(
            prompt, system_prompt=system_prompt, max_tokens=max_tokens, temperature=temperature
        )
        return result.content

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> LLMClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
