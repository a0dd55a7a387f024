"""Agent orchestration: the think, act, observe loop."""

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from coder_bot.config import get_config
from coder_bot.exceptions import AgentInitializationError
from coder_bot.instructions import InstructionLoader
from coder_bot.llm import (
    Candidate,
    Content,
    FunctionCall,
    FunctionResponse,
    LLMProvider,
    LLMResponse,
    Part,
    create_provider,
    get_provider,
)
from coder_bot.logging import get_logger
from coder_bot.planning import PLANNING_INSTRUCTIONS, is_plan_approval, is_planning_request
from coder_bot.tools.registry import ToolRegistry, ToolResult, create_tool_registry
from coder_bot.tools.reset import MEMORY_CLEARED_MESSAGE
from coder_bot.workspace import resolve_in_workspace

log = get_logger(__name__)

NOT_INITIALIZED_MESSAGE = "Agent not initialized. Call initialize() first."
PLANNING_PLACEHOLDER = "Let me create a detailed plan for you first before starting implementation."
TASK_COMPLETED_MESSAGE = "Task completed."
NO_RESPONSE_MESSAGE = "I was unable to generate a response."
MAX_ITERATIONS_MESSAGE = (
    "I've reached the maximum number of steps for this task. "
    "Here's what I've accomplished so far. Please provide additional guidance if needed."
)


@dataclass
class AgentResult:
    """Outcome of one ``Agent.execute`` call."""

    success: bool
    response: str
    tool_call_count: int = 0
    tools_used: list[str] = field(default_factory=list)
    error: str | None = None


class Agent:
    """Tool-calling agent bound to one conversation."""

    def __init__(
        self,
        provider: LLMProvider | None = None,
        registry: ToolRegistry | None = None,
        *,
        max_iterations: int | None = None,
        history_max_chars: int | None = None,
        workspace_root: Path | str | None = None,
        working_directory: Path | str | None = None,
        system_prompt: str | None = None,
        model: str | None = None,
    ):
        """Initialize the agent.

        Args:
            provider: Optional LLM provider override
            registry: Optional pre-built tool registry; built on initialize() otherwise
            max_iterations: Cap on LLM round-trips per execute()
            history_max_chars: Budget for the serialized conversation history
            workspace_root: Directory every tool is confined to
            working_directory: Starting project directory inside the workspace
            system_prompt: System instruction override
            model: Model id used when the provider is created here
        """
        cfg = get_config()
        self._config = cfg
        self.provider = provider
        self.model = model or cfg.model.model
        self._registry = registry
        self.max_iterations = max(1, int(max_iterations or cfg.agent.max_iterations))
        self.history_max_chars = max(1, int(history_max_chars or cfg.agent.history_max_chars))
        self._workspace_root = Path(
            workspace_root or cfg.resolved_workspace_root()
        ).expanduser().resolve()
        self._working_directory = resolve_in_workspace(
            working_directory or self._workspace_root, self._workspace_root
        )
        self.instructions = InstructionLoader()
        self.system_prompt = (
            system_prompt
            or cfg.agent.system_prompt
            or self.instructions.load("system_prompt.md")
        )

        self._history: list[Content] = []
        self._planning_mode = False
        self._initialized = False
        self._iteration = 0
        # incremented by clear_history
        self._clear_count = 0
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_planning_mode(self) -> bool:
        return self._planning_mode

    @is_planning_mode.setter
    def is_planning_mode(self, value: bool) -> None:
        self._planning_mode = bool(value)

    @property
    def conversation_history(self) -> list[Content]:
        """Snapshot of the conversation history."""
        return list(self._history)

    @property
    def working_directory(self) -> Path:
        return self._working_directory

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    @property
    def registry(self) -> ToolRegistry | None:
        return self._registry

    def _create_provider(self) -> LLMProvider:
        if self.model == self._config.model.model:
            return get_provider()
        model_cfg = self._config.model
        return create_provider(
            provider=model_cfg.provider,
            model=self.model,
            api_key=model_cfg.api_key or None,
            base_url=model_cfg.base_url or None,
            temperature=model_cfg.temperature,
            timeout=model_cfg.timeout,
        )

    async def initialize(self) -> None:
        """Wire the provider and the tool registry.

        Raises:
            AgentInitializationError: the provider or any tool source failed to start
        """
        if self._initialized:
            log.warning("Agent already initialized")
            return

        log.info(
            "Initializing agent",
            workspace=str(self._workspace_root),
            working_directory=str(self._working_directory),
            model=self.model,
        )
        try:
            self._workspace_root.mkdir(parents=True, exist_ok=True)
            if self.provider is None:
                self.provider = self._create_provider()
            if self._registry is None:
                self._registry = await create_tool_registry(
                    working_directory=self._working_directory,
                    on_reset=self.clear_history,
                    config=self._config,
                    workspace_root=self._workspace_root,
                )
            elif not self._registry.is_initialized:
                await self._registry.initialize(self._working_directory)
        except Exception as e:
            log.error("Failed to initialize agent", error=str(e))
            raise AgentInitializationError(str(e)) from e

        self._initialized = True
        log.info("Agent initialized", tools=self._registry.list_tools())

    async def shutdown(self) -> None:
        """Release the registry (stopping MCP servers) and forget the conversation."""
        log.info("Shutting down agent")
        if self._registry is not None:
            await self._registry.shutdown()
        self._history.clear()
        self._initialized = False

    def clear_history(self) -> None:
        """Clear conversation history."""
        self._history.clear()
        self._clear_count += 1
        log.info("Conversation history cleared")

    def set_working_directory(self, path: Path | str) -> Path:
        """Move the agent to another project directory inside the workspace.

        Raises:
            WorkspaceError: the directory escapes the workspace root
        """
        resolved = resolve_in_workspace(path, self._workspace_root)
        self._working_directory = resolved
        if self._registry is not None:
            self._registry.set_working_directory(resolved)
        log.info("Working directory changed", working_directory=str(resolved))
        return resolved

    def _bootstrap_context(self) -> None:
        """Seed an empty history with the project-directory context pair."""
        working_directory = str(self._working_directory)
        self._history.append(
            Content.text(
                "user",
                self.instructions.render("context_bootstrap.md", working_directory=working_directory),
            )
        )
        self._history.append(
            Content.text(
                "model",
                self.instructions.render("context_acknowledgement.md", working_directory=working_directory),
            )
        )

    def _trim_history(self) -> None:
        """Drop the oldest entries until the serialized history fits the budget.

        The history never becomes empty. Leading function responses are
        dropped, except a lone surviving one, which keeps the function call
        that produced it.
        """
        sizes = [len(json.dumps(entry.to_dict())) for entry in self._history]
        # brackets plus ", " between entries
        total = sum(sizes) + 2 * max(len(sizes) - 1, 0) + 2
        dropped = 0
        while total > self.history_max_chars and len(self._history) - dropped > 1:
            total -= sizes[dropped] + 2
            dropped += 1
        last = len(self._history) - 1
        while dropped < last and self._history[dropped].has_function_response:
            dropped += 1
        if (
            dropped
            and self._history[dropped].has_function_response
            and self._history[dropped - 1].has_function_call
        ):
            dropped -= 1
        if dropped:
            del self._history[:dropped]
            log.debug("Trimmed conversation history", dropped=dropped, remaining=len(self._history))

    @staticmethod
    def _first_candidate(response: LLMResponse) -> Candidate | None:
        return response.candidates[0] if response.candidates else None

    @classmethod
    def _extract_function_calls(cls, response: LLMResponse) -> list[FunctionCall]:
        candidate = cls._first_candidate(response)
        if candidate is None or candidate.content is None:
            return []
        return [part.function_call for part in candidate.content.parts if part.function_call is not None]

    @classmethod
    def _collect_text(cls, response: LLMResponse) -> str:
        candidate = cls._first_candidate(response)
        if candidate is None or candidate.content is None:
            return ""
        return "\n".join(part.text for part in candidate.content.parts if part.text)

    @classmethod
    def _extract_text_response(cls, response: LLMResponse) -> str:
        """Text of the first candidate, with fallbacks for empty turns."""
        candidate = cls._first_candidate(response)
        if candidate is None or candidate.content is None or not candidate.content.parts:
            return NO_RESPONSE_MESSAGE
        return cls._collect_text(response) or TASK_COMPLETED_MESSAGE

    async def _dispatch(self, call: FunctionCall) -> ToolResult:
        assert self._registry is not None
        try:
            return await self._registry.execute_tool(call.name, call.args)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("Tool dispatch raised", tool=call.name, error=str(e))
            return ToolResult.fail(f'Tool "{call.name}" failed: {e}')

    async def execute(self, prompt: str) -> AgentResult:
        """Run one request through the tool-calling loop.

        Never raises: every fault is reported as a failed AgentResult.
        """
        async with self._lock:
            if not self._initialized:
                return AgentResult(
                    success=False,
                    response=NOT_INITIALIZED_MESSAGE,
                    error=NOT_INITIALIZED_MESSAGE,
                )

            tools_used: list[str] = []
            self._iteration = 0
            try:
                return await self._run(prompt, tools_used)
            except Exception as e:
                log.error("Agent execution failed", error=str(e), exc_info=True)
                return AgentResult(
                    success=False,
                    response=f"I encountered an error while processing your request: {e}",
                    tool_call_count=len(tools_used),
                    tools_used=list(dict.fromkeys(tools_used)),
                    error=str(e),
                )

    async def _run(self, prompt: str, tools_used: list[str]) -> AgentResult:
        assert self.provider is not None and self._registry is not None

        wants_plan = is_planning_request(prompt)
        if wants_plan and not self._planning_mode:
            self._planning_mode = True
            log.info("Planning mode enabled")
        elif self._planning_mode and not wants_plan and is_plan_approval(prompt):
            self._planning_mode = False
            log.info("Plan approved, planning mode disabled")

        if not self._history:
            self._bootstrap_context()

        message = prompt
        if self._planning_mode and wants_plan:
            message = f"{prompt}\n\n{PLANNING_INSTRUCTIONS}"
        self._history.append(Content.text("user", message))

        while self._iteration < self.max_iterations:
            self._iteration += 1
            self._trim_history()

            log.debug("Agent iteration", iteration=self._iteration, history_size=len(self._history))
            response = await self.provider.generate(
                self._history,
                system_instruction=self.system_prompt,
                tools=self._registry.get_function_declarations(),
            )
            calls = self._extract_function_calls(response)

            if self._planning_mode and calls:
                text = self._collect_text(response)
                if text:
                    self._history.append(Content.text("model", text))
                    return AgentResult(
                        success=True,
                        response=text,
                        tool_call_count=len(tools_used),
                        tools_used=list(dict.fromkeys(tools_used)),
                    )
                log.info("Ignoring tool calls while planning", calls=[call.name for call in calls])
                self._history.append(Content.text("model", PLANNING_PLACEHOLDER))
                continue

            if not calls:
                text = self._extract_text_response(response)
                self._history.append(Content.text("model", text))
                return AgentResult(
                    success=True,
                    response=text,
                    tool_call_count=len(tools_used),
                    tools_used=list(dict.fromkeys(tools_used)),
                )

            log.info("Dispatching tool calls", tools=[call.name for call in calls])
            tools_used.extend(call.name for call in calls)
            clear_count = self._clear_count
            results = await asyncio.gather(*(self._dispatch(call) for call in calls))

            if self._clear_count != clear_count:
                log.info("History cleared during tool batch")
                return AgentResult(
                    success=True,
                    response=MEMORY_CLEARED_MESSAGE,
                    tool_call_count=len(tools_used),
                    tools_used=list(dict.fromkeys(tools_used)),
                )

            self._history.append(
                Content(role="model", parts=[Part(function_call=call) for call in calls])
            )
            self._history.append(
                Content(
                    role="user",
                    parts=[
                        Part(
                            function_response=FunctionResponse(
                                name=call.name,
                                response=result.to_response(),
                                id=call.id,
                            )
                        )
                        for call, result in zip(calls, results)
                    ],
                )
            )

        log.warning("Maximum iterations reached", max_iterations=self.max_iterations)
        return AgentResult(
            success=False,
            response=MAX_ITERATIONS_MESSAGE,
            tool_call_count=len(tools_used),
            tools_used=list(dict.fromkeys(tools_used)),
            error=f"Maximum iterations reached ({self.max_iterations})",
        )


async def create_agent(**kwargs: Any) -> Agent:
    """Build and initialize an agent."""
    agent = Agent(**kwargs)
    await agent.initialize()
    return agent
