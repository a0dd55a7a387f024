"""MCP tool source: stdio servers exposed as registry tools."""

import asyncio
import os
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from coder_bot.config import McpServerConfig
from coder_bot.exceptions import McpConnectionError
from coder_bot.logging import get_logger
from coder_bot.tools.registry import Tool, ToolResult

log = get_logger(__name__)

# JSON-Schema keywords the function-calling API rejects.
UNSUPPORTED_SCHEMA_KEYS = frozenset(
    {
        "$schema",
        "$id",
        "$ref",
        "$defs",
        "definitions",
        "$comment",
        "additionalProperties",
        "allOf",
        "anyOf",
        "oneOf",
        "not",
        "examples",
        "example",
        "default",
        "contentEncoding",
        "contentMediaType",
        "const",
        "patternProperties",
        "dependencies",
        "if",
        "then",
        "else",
    }
)


def sanitize_schema(schema: Any) -> Any:
    """Return a copy of ``schema`` without unsupported JSON-Schema keywords.

    Keys under ``properties`` are property names, not keywords, and are kept
    even when they collide with a denied keyword.

    >>> sanitize_schema({"type": "object", "$schema": "x", "properties": {"default": {"type": "string", "default": "a"}}})
    {'type': 'object', 'properties': {'default': {'type': 'string'}}}
    """
    if isinstance(schema, list):
        return [sanitize_schema(item) for item in schema]
    if not isinstance(schema, dict):
        return schema

    cleaned: dict[str, Any] = {}
    for key, value in schema.items():
        if key in UNSUPPORTED_SCHEMA_KEYS:
            continue
        if key == "properties" and isinstance(value, dict):
            cleaned[key] = {name: sanitize_schema(prop) for name, prop in value.items()}
        else:
            cleaned[key] = sanitize_schema(value)
    return cleaned


class McpTool(Tool):
    """A tool living on an MCP server, invoked through its adapter."""

    def __init__(
        self,
        adapter: "McpServerAdapter",
        name: str,
        description: str,
        parameters: dict[str, Any] | None = None,
    ):
        self.adapter = adapter
        self.name = name
        self.description = description
        self.parameters = parameters or {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> ToolResult:
        return await self.adapter.call_tool(self.name, kwargs)


def _content_to_payload(item: Any) -> Any:
    text = getattr(item, "text", None)
    if getattr(item, "type", None) == "text" and text is not None:
        return text
    if hasattr(item, "model_dump"):
        return item.model_dump(mode="json", exclude_none=True)
    return str(item)


class McpServerAdapter:
    """Connection to one stdio MCP server."""

    def __init__(
        self,
        server: McpServerConfig,
        workspace_root: Path | str,
        call_timeout: float = 120,
    ):
        self.server = server
        self.workspace_root = Path(workspace_root).expanduser().resolve()
        self.call_timeout = max(1.0, float(call_timeout))
        self._exit_stack: AsyncExitStack | None = None
        self._session: ClientSession | None = None
        self._tools: dict[str, McpTool] = {}

    @property
    def name(self) -> str:
        return self.server.name

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    def _server_parameters(self) -> StdioServerParameters:
        env = os.environ.copy()
        env.update(self.server.env)
        return StdioServerParameters(
            command=self.server.command,
            args=self.server.resolved_args(self.workspace_root),
            env=env,
        )

    async def _open_session(self, exit_stack: AsyncExitStack) -> ClientSession:
        read, write = await exit_stack.enter_async_context(stdio_client(self._server_parameters()))
        return await exit_stack.enter_async_context(ClientSession(read, write))

    async def connect(self) -> None:
        """Spawn the server, handshake and list its tools.

        Raises:
            McpConnectionError: spawn, handshake or listing failed
        """
        if self.is_connected:
            log.warning("MCP server already connected", server=self.name)
            return

        log.info("Connecting to MCP server", server=self.name, command=self.server.command)
        self._exit_stack = AsyncExitStack()
        try:
            session = await self._open_session(self._exit_stack)
            await session.initialize()
            listing = await session.list_tools()
        except Exception as e:
            log.error("Failed to connect to MCP server", server=self.name, error=str(e))
            await self.disconnect()
            raise McpConnectionError(self.name, str(e)) from e

        self._session = session
        self._tools = {}
        for remote in listing.tools:
            self._tools[remote.name] = McpTool(
                self,
                remote.name,
                remote.description or "",
                sanitize_schema(remote.inputSchema or {}),
            )
        log.info("Connected to MCP server", server=self.name, tool_count=len(self._tools))

    async def disconnect(self) -> None:
        """Close the session and stop the server process."""
        exit_stack, self._exit_stack = self._exit_stack, None
        self._session = None
        self._tools = {}
        if exit_stack is None:
            return
        try:
            await exit_stack.aclose()
        except Exception as e:
            log.error("Error disconnecting MCP server", server=self.name, error=str(e))
        else:
            log.info("Disconnected from MCP server", server=self.name)

    def get_tools(self) -> list[McpTool]:
        return list(self._tools.values())

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """Forward a call to the server and convert its content into a ToolResult."""
        if self._session is None:
            return ToolResult.fail(f"MCP server '{self.name}' is not connected")
        if name not in self._tools:
            return ToolResult.fail(f"Tool not found: {name}")

        try:
            result = await asyncio.wait_for(
                self._session.call_tool(name, dict(arguments or {})),
                timeout=self.call_timeout,
            )
        except asyncio.TimeoutError:
            log.warning("MCP tool call timed out", server=self.name, tool=name)
            return ToolResult.fail(f"MCP tool '{name}' timed out after {int(self.call_timeout)} seconds")

        content = [_content_to_payload(item) for item in result.content or []]
        if result.isError:
            message = "\n".join(item for item in content if isinstance(item, str))
            return ToolResult.fail(message or f"MCP tool '{name}' reported an error", data=content)
        return ToolResult.ok({"content": content})
