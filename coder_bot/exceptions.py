"""Custom exceptions for Coder Bot."""


class CoderBotError(Exception):
    """Base exception for Coder Bot."""

    pass


class ConfigurationError(CoderBotError):
    """Configuration-related errors."""

    pass


class LLMError(CoderBotError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolError(CoderBotError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ToolRegistryError(ToolError):
    """Tool registry could not be initialized."""

    pass


class McpConnectionError(ToolError):
    """Connecting to an MCP server failed."""

    def __init__(self, server_name: str, message: str):
        super().__init__(f"Failed to connect to MCP server '{server_name}': {message}")
        self.server_name = server_name


class AgentError(CoderBotError):
    """Agent lifecycle errors."""

    pass


class AgentInitializationError(AgentError):
    """Agent initialization failed."""

    def __init__(self, message: str):
        super().__init__(f"Failed to initialize agent: {message}")


class WorkspaceError(CoderBotError):
    """Path resolves outside the workspace root."""

    def __init__(self, path: str, root: str):
        super().__init__(f"Path must be within the workspace: {root} (got {path})")
        self.path = path
        self.root = root
