import asyncio
import copy
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from coder_bot.config import Config, McpServerConfig
from coder_bot.exceptions import McpConnectionError
from coder_bot.tools.mcp import McpServerAdapter, McpTool, sanitize_schema
from coder_bot.tools.registry import ToolRegistry

READ_FILE_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "path": {"type": "string", "default": "."},
        "default": {"type": "boolean", "description": "A property literally named default"},
        "mode": {"anyOf": [{"type": "string"}, {"type": "null"}], "description": "Mode"},
        "edits": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"oldText": {"type": "string", "examples": ["a"]}},
                "additionalProperties": False,
            },
        },
    },
    "required": ["path"],
}


class FakeSession:
    def __init__(self, tools: list[Any], results: dict[str, Any] | None = None, delay: float = 0.0):
        self.tools = tools
        self.results = results or {}
        self.delay = delay
        self.initialized = False
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def initialize(self) -> None:
        self.initialized = True

    async def list_tools(self) -> Any:
        return SimpleNamespace(tools=self.tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        self.calls.append((name, arguments))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.results[name]


def _remote_tool(name: str, schema: dict[str, Any] | None = None) -> Any:
    return SimpleNamespace(name=name, description=f"{name} description", inputSchema=schema or {})


def _text_result(text: str, is_error: bool = False) -> Any:
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)], isError=is_error)


def _adapter(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, session: Any, **kwargs) -> McpServerAdapter:
    server = McpServerConfig(name="filesystem", command="npx", args=["-y", "server", "{workspace_root}"])
    adapter = McpServerAdapter(server, workspace_root=tmp_path, **kwargs)

    async def _open_session(exit_stack):
        if isinstance(session, Exception):
            raise session
        return session

    monkeypatch.setattr(adapter, "_open_session", _open_session)
    return adapter


def test_sanitize_schema_strips_unsupported_keywords():
    cleaned = sanitize_schema(READ_FILE_SCHEMA)

    assert cleaned == {
        "type": "object",
        "properties": {
            "path": {"type": "string"},
            "default": {"type": "boolean", "description": "A property literally named default"},
            "mode": {"description": "Mode"},
            "edits": {
                "type": "array",
                "items": {"type": "object", "properties": {"oldText": {"type": "string"}}},
            },
        },
        "required": ["path"],
    }


def test_sanitize_schema_does_not_mutate_input():
    snapshot = copy.deepcopy(READ_FILE_SCHEMA)

    sanitize_schema(READ_FILE_SCHEMA)

    assert READ_FILE_SCHEMA == snapshot


def test_sanitize_schema_passes_scalars_through():
    assert sanitize_schema("string") == "string"
    assert sanitize_schema([{"$ref": "#/x", "type": "string"}]) == [{"type": "string"}]


def test_server_args_substitute_workspace_root(tmp_path: Path):
    server = McpServerConfig(name="fs", command="npx", args=["-y", "pkg", "{workspace_root}"])
    adapter = McpServerAdapter(server, workspace_root=tmp_path)

    params = adapter._server_parameters()

    assert params.command == "npx"
    assert params.args == ["-y", "pkg", str(tmp_path.resolve())]


@pytest.mark.asyncio
async def test_connect_lists_sanitized_tools(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    session = FakeSession([_remote_tool("read_file", READ_FILE_SCHEMA), _remote_tool("list_directory")])
    adapter = _adapter(tmp_path, monkeypatch, session)

    await adapter.connect()

    assert adapter.is_connected
    assert session.initialized
    tools = adapter.get_tools()
    assert [tool.name for tool in tools] == ["read_file", "list_directory"]
    assert all(isinstance(tool, McpTool) for tool in tools)
    assert "$schema" not in tools[0].parameters
    assert tools[0].description == "read_file description"
    assert tools[1].parameters == {"type": "object", "properties": {}}


@pytest.mark.asyncio
async def test_connect_failure_raises_and_leaves_adapter_disconnected(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
):
    adapter = _adapter(tmp_path, monkeypatch, FileNotFoundError("npx not found"))

    with pytest.raises(McpConnectionError, match="npx not found"):
        await adapter.connect()

    assert adapter.is_connected is False
    assert adapter.get_tools() == []


@pytest.mark.asyncio
async def test_call_tool_returns_text_content(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    session = FakeSession([_remote_tool("read_file")], {"read_file": _text_result("file body")})
    adapter = _adapter(tmp_path, monkeypatch, session)
    await adapter.connect()

    result = await adapter.get_tools()[0].execute(path="notes.txt")

    assert result.success is True
    assert result.data == {"content": ["file body"]}
    assert session.calls == [("read_file", {"path": "notes.txt"})]


@pytest.mark.asyncio
async def test_call_tool_maps_remote_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    session = FakeSession(
        [_remote_tool("read_file")],
        {"read_file": _text_result("Access denied - path outside allowed directories", is_error=True)},
    )
    adapter = _adapter(tmp_path, monkeypatch, session)
    await adapter.connect()

    result = await adapter.call_tool("read_file", {"path": "/etc/passwd"})

    assert result.success is False
    assert result.error == "Access denied - path outside allowed directories"


@pytest.mark.asyncio
async def test_call_tool_rejects_unknown_and_disconnected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    adapter = _adapter(tmp_path, monkeypatch, FakeSession([_remote_tool("read_file")]))

    before = await adapter.call_tool("read_file", {})
    await adapter.connect()
    unknown = await adapter.call_tool("write_file", {})

    assert before.error == "MCP server 'filesystem' is not connected"
    assert unknown.error == "Tool not found: write_file"


@pytest.mark.asyncio
async def test_call_tool_times_out(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    session = FakeSession([_remote_tool("slow")], {"slow": _text_result("late")}, delay=5)
    adapter = _adapter(tmp_path, monkeypatch, session, call_timeout=1)
    await adapter.connect()

    result = await adapter.call_tool("slow", {})

    assert result.success is False
    assert result.error == "MCP tool 'slow' timed out after 1 seconds"


@pytest.mark.asyncio
async def test_disconnect_clears_tools_and_is_repeatable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    adapter = _adapter(tmp_path, monkeypatch, FakeSession([_remote_tool("read_file")]))
    await adapter.connect()

    await adapter.disconnect()
    await adapter.disconnect()

    assert adapter.is_connected is False
    assert adapter.get_tools() == []


@pytest.mark.asyncio
async def test_registry_routes_calls_to_mcp_adapter(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    session = FakeSession([_remote_tool("read_file", READ_FILE_SCHEMA)], {"read_file": _text_result("hi")})
    adapter = _adapter(tmp_path, monkeypatch, session)
    registry = ToolRegistry(workspace_root=tmp_path, mcp_adapters=[adapter], config=Config())

    await registry.initialize()
    result = await registry.execute_tool("read_file", {"path": "a.txt"})
    missing = await registry.execute_tool("read_file", {})

    assert result.success is True
    assert result.data == {"content": ["hi"]}
    assert missing.success is False
    assert "Missing required argument: path" in missing.error
    await registry.shutdown()
    assert adapter.is_connected is False
