"""Coder Bot - a tool-calling coding agent."""

__version__ = "0.1.0"

from coder_bot.agent import Agent, AgentResult, create_agent
from coder_bot.agent_pool import AgentPool
from coder_bot.config import Config

__all__ = ["Agent", "AgentPool", "AgentResult", "Config", "create_agent", "__version__"]
