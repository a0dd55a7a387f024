"""Tool registry and base tool classes."""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from pydantic import BaseModel, model_validator

from coder_bot.config import Config, get_config
from coder_bot.exceptions import (
    ToolExecutionError,
    ToolNotFoundError,
    ToolRegistryError,
)
from coder_bot.logging import get_logger
from coder_bot.workspace import resolve_in_workspace

if TYPE_CHECKING:
    from coder_bot.tools.mcp import McpServerAdapter

log = get_logger(__name__)


class ToolResult(BaseModel):
    """Tagged outcome of one tool execution."""

    success: bool = True
    data: Any = None
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = self.data.strip() if isinstance(self.data, str) else ""
            self.error = fallback or "Tool execution failed"
        return self

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, data: Any = None) -> "ToolResult":
        return cls(success=False, data=data, error=error)

    def to_response(self) -> dict[str, Any]:
        """Project into the function-response payload read by the model."""
        payload: dict[str, Any] = {"success": self.success, "data": self.data}
        if self.error:
            payload["error"] = self.error
        return payload


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {"type": "object", "properties": {}}

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments

        Returns:
            ToolResult with success status and payload
        """
        pass

    def get_declaration(self) -> dict[str, Any]:
        """Get the function declaration sent to the LLM."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Check required arguments are present.

        Raises:
            ToolExecutionError: a required argument is missing
        """
        required = self.parameters.get("required", []) if isinstance(self.parameters, dict) else []
        for field in required:
            if field not in arguments:
                raise ToolExecutionError(
                    self.name,
                    f"Missing required argument: {field}",
                )


class FunctionTool(Tool):
    """Tool backed by a plain async callable."""

    def __init__(
        self,
        name: str,
        description: str,
        func: Callable[..., Awaitable[ToolResult]],
        parameters: dict[str, Any] | None = None,
    ):
        self.name = name
        self.description = description
        self.parameters = parameters or {"type": "object", "properties": {}}
        self._func = func

    async def execute(self, **kwargs: Any) -> ToolResult:
        return await self._func(**kwargs)


class WorkspaceTool(Tool):
    """Tool confined to the workspace root and bound to a working directory."""

    def __init__(self, workspace_root: Path | str, working_directory: Path | str | None = None):
        self.workspace_root = Path(workspace_root).expanduser().resolve()
        self.working_directory = self.workspace_root
        self.bind_working_directory(working_directory or self.workspace_root)

    def bind_working_directory(self, working_directory: Path | str) -> None:
        """Point the tool at a new working directory inside the workspace."""
        self.working_directory = resolve_in_workspace(working_directory, self.workspace_root)

    def resolve_path(self, path: Path | str | None) -> Path:
        """Resolve a tool argument path against the working directory.

        Raises:
            WorkspaceError: the path escapes the workspace root
        """
        cleaned = str(path or "").strip()
        if not cleaned:
            return self.working_directory
        return resolve_in_workspace(cleaned, self.workspace_root, base=self.working_directory)


class ToolRegistry:
    """Single catalog of every tool the agent can call, whatever its source."""

    def __init__(
        self,
        workspace_root: Path | str | None = None,
        mcp_adapters: list["McpServerAdapter"] | None = None,
        on_reset: Callable[[], None] | None = None,
        config: Config | None = None,
    ):
        self._config = config or get_config()
        self._workspace_root = Path(
            workspace_root or self._config.resolved_workspace_root()
        ).expanduser().resolve()
        self._mcp_adapters: list["McpServerAdapter"] = list(mcp_adapters or [])
        self._on_reset = on_reset
        self._tools: dict[str, Tool] = {}
        self._declarations: list[dict[str, Any]] | None = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    async def initialize(self, working_directory: Path | str | None = None) -> None:
        """Connect MCP adapters, then register MCP and internal tools.

        Raises:
            ToolRegistryError: an adapter failed to connect or a tool failed to build
        """
        if self._initialized:
            log.warning("ToolRegistry already initialized")
            return

        working_dir = working_directory or self._workspace_root
        log.info("Initializing tool registry", working_directory=str(working_dir))

        try:
            for adapter in self._mcp_adapters:
                await adapter.connect()
                for tool in adapter.get_tools():
                    self.register(tool)

            self._register_internal_tools(working_dir)
        except Exception as e:
            log.error("Failed to initialize tool registry", error=str(e))
            await self._disconnect_adapters()
            self._tools.clear()
            self._declarations = None
            raise ToolRegistryError(f"Failed to initialize tool registry: {e}") from e

        self._initialized = True
        log.info(
            "Tool registry initialized",
            tool_count=len(self._tools),
            tools=list(self._tools.keys()),
        )

    def _register_internal_tools(self, working_directory: Path | str) -> None:
        """Register internal tools bound to the working directory."""
        from coder_bot.tools.git import GitHistoryTool
        from coder_bot.tools.reset import ResetMemoryTool
        from coder_bot.tools.shell import ShellTool
        from coder_bot.tools.vercel import DeleteVercelProjectTool, DeployToVercelTool

        tools_cfg = self._config.tools
        self.register(
            ShellTool(
                self._workspace_root,
                working_directory,
                timeout=tools_cfg.shell.timeout,
                max_output_chars=tools_cfg.shell.max_output_chars,
                blocked_patterns=tools_cfg.shell.blocked_patterns,
            )
        )
        self.register(
            GitHistoryTool(
                self._workspace_root,
                working_directory,
                timeout=tools_cfg.git.timeout,
                max_count=tools_cfg.git.max_count,
            )
        )
        if self._on_reset is not None:
            self.register(ResetMemoryTool(self._on_reset))

        vercel_cfg = tools_cfg.vercel
        if vercel_cfg.token:
            self.register(
                DeployToVercelTool(
                    self._workspace_root,
                    working_directory,
                    token=vercel_cfg.token,
                    api_base_url=vercel_cfg.api_base_url,
                    timeout=vercel_cfg.timeout,
                )
            )
            self.register(
                DeleteVercelProjectTool(
                    token=vercel_cfg.token,
                    api_base_url=vercel_cfg.api_base_url,
                )
            )
        else:
            log.info("Vercel token not configured, deployment tools disabled")

    async def _disconnect_adapters(self) -> None:
        for adapter in self._mcp_adapters:
            await adapter.disconnect()

    async def shutdown(self) -> None:
        """Disconnect MCP adapters and drop every registered tool."""
        log.info("Shutting down tool registry")
        await self._disconnect_adapters()
        self._tools.clear()
        self._declarations = None
        self._initialized = False
        log.info("Tool registry shut down")

    def register(self, tool: Tool) -> None:
        """Register a tool; a later registration with the same name wins.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        if tool.name in self._tools:
            log.warning("Overwriting existing tool", tool=tool.name)
        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool
        self._declarations = None

    def set_working_directory(self, working_directory: Path | str) -> None:
        """Re-bind workspace tools so the next dispatch runs in *working_directory*."""
        for tool in self._tools.values():
            if isinstance(tool, WorkspaceTool):
                tool.bind_working_directory(working_directory)

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_function_declarations(self) -> list[dict[str, Any]]:
        """Get all tool declarations for the LLM.

        Cached until the next registration.
        """
        if self._declarations is None:
            self._declarations = [tool.get_declaration() for tool in self._tools.values()]
        return list(self._declarations)

    async def execute_tool(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """Execute a tool by name; never raises for tool faults.

        Args:
            name: Tool name
            arguments: Tool arguments

        Returns:
            ToolResult from execution, or a failure result describing the fault
        """
        tool = self._tools.get(name)
        if tool is None:
            log.warning("Attempted to execute unknown tool", tool=name)
            return ToolResult.fail(str(ToolNotFoundError(name)))

        args = dict(arguments or {})
        log.info("Executing tool", tool=name, args=args)
        try:
            tool.validate_arguments(args)
            result = await tool.execute(**args)
            if not isinstance(result, ToolResult):
                raise ToolExecutionError(name, "Tool returned invalid result payload")
        except asyncio.CancelledError:
            raise
        except ToolExecutionError as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            return ToolResult.fail(str(e))
        except Exception as e:
            log.error("Tool execution threw an error", tool=name, error=str(e))
            return ToolResult.fail(str(ToolExecutionError(name, str(e))))

        log.info("Tool executed", tool=name, success=result.success)
        return result


async def create_tool_registry(
    working_directory: Path | str | None = None,
    on_reset: Callable[[], None] | None = None,
    config: Config | None = None,
    workspace_root: Path | str | None = None,
) -> ToolRegistry:
    """Build a registry with one MCP adapter per configured server and initialize it."""
    from coder_bot.tools.mcp import McpServerAdapter

    cfg = config or get_config()
    workspace_root = Path(workspace_root or cfg.resolved_workspace_root()).expanduser().resolve()
    adapters = [
        McpServerAdapter(
            server,
            workspace_root=workspace_root,
            call_timeout=cfg.tools.mcp.call_timeout,
        )
        for server in cfg.tools.mcp.servers
    ]
    registry = ToolRegistry(
        workspace_root=workspace_root,
        mcp_adapters=adapters,
        on_reset=on_reset,
        config=cfg,
    )
    await registry.initialize(working_directory or workspace_root)
    return registry
