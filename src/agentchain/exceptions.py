"""Exception hierarchy for agentchain."""

from __future__ import annotations


class AgentChainError(Exception):
    """Base exception for agentchain errors."""

    pass


class ValidationError(AgentChainError):
    """Input has the wrong shape. Raised before any side effect."""

    pass


class MissingDependency(AgentChainError):
    """A required upstream stage output is absent for the request."""

    def __init__(self, stage: str, request_id: str, missing: list[str]) -> None:
        """Initialize with the stage and the outputs it could not find."""
        self.stage = stage
        self.request_id = request_id
        self.missing = missing
        super().__init__(
            f"{stage} requires {', '.join(missing)} output(s) for request {request_id}"
        )


class StorageUnavailable(AgentChainError):
    """The persistence layer could not be reached or failed mid-operation."""

    pass


class VectorIndexUnavailable(StorageUnavailable):
    """The vector similarity index could not be reached."""

    pass


class EmbeddingUnavailable(AgentChainError):
    """The embedding service failed or returned an unusable vector."""

    pass


class LLMUnavailable(AgentChainError):
    """The language model boundary failed (timeout, HTTP error, open circuit)."""

    pass


class ToolRegistryUnavailable(AgentChainError):
    """The MCP tool catalog could not be listed or a tool could not be called."""

    pass


class MalformedUpstreamOutput(AgentChainError):
    """An LLM or store response does not parse into the expected shape."""

    pass


class ReplanLimitExceeded(AgentChainError):
    """The critique still rejects the plan after the maximum number of replans."""

    def __init__(self, request_id: str, replans: int) -> None:
        """Initialize with the request and the number of replans performed."""
        self.request_id = request_id
        self.replans = replans
        super().__init__(
            f"Plan for request {request_id} still rejected after {replans} replan(s)"
        )
