"""Configuration management for Coder Bot."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from coder_bot.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.coder-bot/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"
WORKSPACE_ROOT_PLACEHOLDER = "{workspace_root}"


class ModelConfig(BaseModel):
    """LLM backend configuration."""

    provider: str = "gemini"
    model: str = "gemini-2.0-flash"
    api_key: str = ""
    base_url: str = ""
    temperature: float | None = None
    timeout: float = 120.0


class AgentConfig(BaseModel):
    """Agent loop limits and prompt."""

    max_iterations: int = 25
    # ~100k tokens at 4 chars per token
    history_max_chars: int = 400000
    system_prompt: str = ""


class WorkspaceConfig(BaseModel):
    """Workspace root every tool is confined to."""

    root: str = "./workspace"


class ShellToolConfig(BaseModel):
    """Shell tool configuration."""

    timeout: int = 300
    max_output_chars: int = 50000
    blocked_patterns: list[str] = [
        r"\brm\s+(-rf?|--recursive)?\s*[/~]",
        r"\bsudo\b",
        r"\b(shutdown|reboot|halt|poweroff)\b",
        r"\bchmod\s+.*777",
        r"\b(curl|wget)\s+.*\|\s*(ba)?sh",
    ]


class GitToolConfig(BaseModel):
    """Git history tool configuration."""

    timeout: int = 30
    max_count: int = 50


class VercelToolConfig(BaseModel):
    """Vercel deployment tool configuration."""

    token: str = ""
    api_base_url: str = "https://api.vercel.com"
    timeout: int = 600


class McpServerConfig(BaseModel):
    """One stdio MCP server spawned as a subprocess."""

    name: str
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    def resolved_args(self, workspace_root: Path | str) -> list[str]:
        """Substitute the workspace root placeholder in server arguments."""
        root = str(workspace_root)
        return [arg.replace(WORKSPACE_ROOT_PLACEHOLDER, root) for arg in self.args]


def _default_mcp_servers() -> list[McpServerConfig]:
    return [
        McpServerConfig(
            name="filesystem",
            command="npx",
            args=["-y", "@modelcontextprotocol/server-filesystem", WORKSPACE_ROOT_PLACEHOLDER],
        )
    ]


class McpToolConfig(BaseModel):
    """MCP tool sources."""

    servers: list[McpServerConfig] = Field(default_factory=_default_mcp_servers)
    call_timeout: float = 120.0


class ToolsConfig(BaseModel):
    """Tools configuration."""

    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)
    git: GitToolConfig = Field(default_factory=GitToolConfig)
    vercel: VercelToolConfig = Field(default_factory=VercelToolConfig)
    mcp: McpToolConfig = Field(default_factory=McpToolConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["console", "json"] = "console"
    # empty logs to stderr
    file: str = ""


class Config(BaseSettings):
    """Main configuration for Coder Bot."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="CODER_BOT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML; env vars are applied by pydantic-settings."""
        return cls.from_yaml(path)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_workspace_root(self, runtime_base: Path | str | None = None) -> Path:
        """Resolve workspace root, anchoring relative paths to runtime base/cwd."""
        raw = Path(self.workspace.root).expanduser()
        if raw.is_absolute():
            return raw.resolve()
        anchor = Path(runtime_base).expanduser().resolve() if runtime_base is not None else Path.cwd().resolve()
        return (anchor / raw).resolve()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
