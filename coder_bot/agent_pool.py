"""Agent pool: one agent per conversation.

Each conversation identity (a chat user, a channel) gets its own Agent and
therefore its own history and planning state. Agents share the LLM provider.

This is the entry point for multi-conversation front ends such as chat bot
adapters. The terminal REPL in ``coder_bot.main`` serves a single conversation
and drives one Agent directly.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from coder_bot.llm import LLMProvider
from coder_bot.logging import get_logger

log = get_logger(__name__)


class AgentPool:
    """Pool of initialized agents keyed by conversation id."""

    def __init__(self, provider: LLMProvider | None = None, **agent_kwargs: Any):
        self._provider = provider
        self._agent_kwargs = agent_kwargs
        self._agents: dict[str, Any] = {}  # conversation_id -> Agent
        self._lock = asyncio.Lock()
        # Per-conversation creation locks so different conversations
        # initialize their agents in parallel.
        self._creating: dict[str, asyncio.Lock] = {}

    @property
    def size(self) -> int:
        """Current number of agents in the pool."""
        return len(self._agents)

    def get(self, conversation_id: str) -> Any | None:
        return self._agents.get(conversation_id)

    async def get_or_create(
        self,
        conversation_id: str,
        working_directory: Path | str | None = None,
    ) -> Any:
        """Return the conversation's agent, creating and initializing it on first use.

        ``working_directory`` only applies to a newly created agent.
        """
        async with self._lock:
            if conversation_id in self._agents:
                return self._agents[conversation_id]
            creation_lock = self._creating.setdefault(conversation_id, asyncio.Lock())

        async with creation_lock:
            async with self._lock:
                if conversation_id in self._agents:
                    self._creating.pop(conversation_id, None)
                    return self._agents[conversation_id]

            # Import here to avoid circular dependency.
            from coder_bot.agent import Agent

            kwargs = dict(self._agent_kwargs)
            if working_directory is not None:
                kwargs["working_directory"] = working_directory
            agent = Agent(provider=self._provider, **kwargs)
            try:
                await agent.initialize()
            finally:
                if not agent.is_initialized:
                    async with self._lock:
                        self._creating.pop(conversation_id, None)

            async with self._lock:
                self._agents[conversation_id] = agent
                self._creating.pop(conversation_id, None)
                log.info("Created agent", conversation_id=conversation_id, pool_size=len(self._agents))
            return agent

    async def remove(self, conversation_id: str) -> bool:
        """Shut down and forget a conversation's agent."""
        async with self._lock:
            agent = self._agents.pop(conversation_id, None)
        if agent is None:
            return False
        await agent.shutdown()
        log.info("Removed agent", conversation_id=conversation_id, pool_size=len(self._agents))
        return True

    async def shutdown_all(self) -> None:
        """Shut down every pooled agent."""
        async with self._lock:
            agents = list(self._agents.items())
            self._agents.clear()
            self._creating.clear()
        for conversation_id, agent in agents:
            try:
                await agent.shutdown()
            except Exception as e:
                log.error("Error shutting down agent", conversation_id=conversation_id, error=str(e))
        log.info("Agent pool shut down", count=len(agents))
