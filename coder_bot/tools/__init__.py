"""Tools package for Coder Bot."""

from coder_bot.tools.registry import (
    FunctionTool,
    Tool,
    ToolRegistry,
    ToolResult,
    WorkspaceTool,
    create_tool_registry,
)
from coder_bot.tools.git import GitHistoryTool
from coder_bot.tools.mcp import McpServerAdapter, McpTool, sanitize_schema
from coder_bot.tools.reset import ResetMemoryTool
from coder_bot.tools.shell import ShellTool
from coder_bot.tools.vercel import DeleteVercelProjectTool, DeployToVercelTool

__all__ = [
    "FunctionTool",
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "WorkspaceTool",
    "create_tool_registry",
    "GitHistoryTool",
    "McpServerAdapter",
    "McpTool",
    "sanitize_schema",
    "ResetMemoryTool",
    "ShellTool",
    "DeleteVercelProjectTool",
    "DeployToVercelTool",
]
