"""Tool that lets the model wipe its own conversation memory."""

from typing import Any, Callable

from coder_bot.tools.registry import FunctionTool, ToolResult

MEMORY_CLEARED_MESSAGE = "Memory cleared successfully. Starting fresh."


class ResetMemoryTool(FunctionTool):
    """Clear conversation history through a callback owned by the agent."""

    def __init__(self, on_reset: Callable[[], None]):
        async def _reset(**kwargs: Any) -> ToolResult:
            on_reset()
            return ToolResult.ok({"message": MEMORY_CLEARED_MESSAGE})

        super().__init__(
            name="reset_memory",
            description=(
                "Resets the agent's memory and conversation history. Use this when asked to "
                "start over, forget previous context, or reset."
            ),
            func=_reset,
        )
