"""Git history tool."""

import asyncio
from pathlib import Path
from typing import Any

from coder_bot.logging import get_logger
from coder_bot.tools.registry import ToolResult, WorkspaceTool
from coder_bot.workspace import is_within_workspace, truncate_output

log = get_logger(__name__)

LOG_FORMAT = "--pretty=format:%h | %ad | %an | %s"
MAX_HISTORY_CHARS = 100000


class GitHistoryTool(WorkspaceTool):
    """Read recent commits of the project in the working directory."""

    name = "get_git_history"
    description = (
        "Retrieves the recent git commit history for the current project. "
        "Use this to see what changes have been made, when, and by whom."
    )
    parameters = {
        "type": "object",
        "properties": {
            "count": {
                "type": "number",
                "description": "Number of commits to retrieve (default: 10, max: 50)",
            },
            "show_diff": {
                "type": "boolean",
                "description": "Whether to include the diff for each commit (default: false)",
            },
        },
    }

    def __init__(
        self,
        workspace_root: Path | str,
        working_directory: Path | str | None = None,
        timeout: float = 30,
        max_count: int = 50,
    ):
        super().__init__(workspace_root, working_directory)
        self.timeout = max(1.0, float(timeout))
        self.max_count = max(1, int(max_count))

    def _clamp_count(self, count: Any) -> int:
        try:
            value = int(count) if count is not None else 10
        except (TypeError, ValueError):
            value = 10
        return min(max(value, 1), self.max_count)

    async def execute(self, count: Any = None, show_diff: bool = False, **kwargs: Any) -> ToolResult:
        """Run ``git log`` in the working directory."""
        if not is_within_workspace(self.working_directory, self.workspace_root):
            return ToolResult.fail("Working directory must be within the workspace.")

        limit = self._clamp_count(count)
        argv = [
            "git",
            "log",
            f"-{limit}",
            LOG_FORMAT,
            "--date=short",
            "-p" if show_diff else "--stat",
        ]

        log.info(
            "Fetching git history",
            cwd=str(self.working_directory),
            count=limit,
            show_diff=bool(show_diff),
        )
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(self.working_directory),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult.fail(f"Git history timed out after {int(self.timeout)} seconds")

        stdout_text = stdout.decode("utf-8", errors="replace")
        stderr_text = stderr.decode("utf-8", errors="replace").strip()

        if process.returncode != 0:
            if "not a git repository" in stderr_text.lower():
                return ToolResult.fail(
                    "This directory is not a git repository. Initialize with 'git init' first."
                )
            if "does not have any commits" in stderr_text.lower():
                return ToolResult.ok({"message": "No commits found in this repository.", "commits": []})
            return ToolResult.fail(f"Failed to get git history: {stderr_text or 'unknown error'}")

        if not stdout_text.strip():
            return ToolResult.ok({"message": "No commits found in this repository.", "commits": []})

        return ToolResult.ok(
            {
                "history": truncate_output(stdout_text, MAX_HISTORY_CHARS),
                "commit_count": limit,
            }
        )
