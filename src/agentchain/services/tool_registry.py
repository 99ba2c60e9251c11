"""
Tool Registry

Boundary to the MCP tool catalog, and a JSON-RPC 2.0 client over HTTP.
Every request carries its own random correlation ID; nothing is shared
between calls except the HTTP connection pool.
"""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

import httpx
import structlog
from pydantic import BaseModel, Field

from agentchain.config import settings
from agentchain.exceptions import ToolRegistryUnavailable

logger = structlog.get_logger()

MCP_PROTOCOL_VERSION = "2024-11-05"


@runtime_checkable
class ToolRegistry(Protocol):
    """Boundary for the known-tool catalog."""

    async def list_tools(self) -> list[str]:
        """Snapshot of registered tool names."""
        ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """Invoke a tool and return its result."""
        ...


class ToolDescriptor(BaseModel):
    """Tool entry from ``tools/list``."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    model_config = {"populate_by_name": True}


class MCPToolClient:
    """
    JSON-RPC 2.0 client for an MCP server over HTTP.

    Args:
        url: MCP endpoint URL
        timeout: Request timeout in seconds
        client: Optional preconfigured HTTP client
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url or settings.MCP_SERVER_URL
        self.client = client or httpx.AsyncClient(timeout=timeout or settings.MCP_TIMEOUT)
        self._initialized = False

    async def _request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """
        Send one JSON-RPC request.

        Raises:
            ToolRegistryUnavailable: On transport failure or a JSON-RPC error
        """
        correlation_id = str(uuid4())
        body = {"jsonrpc": "2.0", "id": correlation_id, "method": method, "params": params or {}}

        try:
            response = await self.client.post(self.url, json=body)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("mcp_request_failed", method=method, correlation_id=correlation_id, error=str(e))
            raise ToolRegistryUnavailable(f"MCP {method} failed: {e}") from e

        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.warning("mcp_error_response", method=method, correlation_id=correlation_id, error=message)
            raise ToolRegistryUnavailable(f"MCP {method} returned error: {message}")

        logger.debug("mcp_response", method=method, correlation_id=correlation_id)
        return data.get("result") or {}

    async def connect(self) -> None:
        """Perform the MCP initialize handshake once."""
        if self._initialized:
            return
        await self._request(
            "initialize",
            {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": "agentchain", "version": "0.1.0"},
            },
        )
        self._initialized = True
        logger.info("mcp_client_initialized", url=self.url)

    async def describe_tools(self) -> list[ToolDescriptor]:
        """Full tool descriptors from the catalog."""
        await self.connect()
        result = await self._request("tools/list")
        return [ToolDescriptor.model_validate(t) for t in result.get("tools", []) if t.get("name")]

    async def list_tools(self) -> list[str]:
        """Registered tool names."""
        return [t.name for t in await self.describe_tools()]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """
        Call a tool.

        Text content items are decoded as JSON when possible.

        Raises:
            ToolRegistryUnavailable: If the call fails or the tool reports an error
        """
        await self.connect()
        result = await self._request("tools/call", {"name": name, "arguments": arguments})
        if isinstance(result, dict) and result.get("isError"):
            raise ToolRegistryUnavailable(f"Tool {name} reported an error: {result.get('content')}")

        content = result.get("content", result) if isinstance(result, dict) else result
        if not isinstance(content, list):
            return content

        values = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                text = item.get("text", "")
                try:
                    values.append(json.loads(text))
                except ValueError:
                    values.append(text)
            else:
                values.append(item)
        return values[0] if len(values) == 1 else values

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()
