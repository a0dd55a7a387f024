"""Shell tool for executing commands inside the workspace."""

import asyncio
import os
import re
from pathlib import Path
from typing import Any

from coder_bot.exceptions import WorkspaceError
from coder_bot.logging import get_logger
from coder_bot.tools.registry import ToolResult, WorkspaceTool
from coder_bot.workspace import truncate_output

log = get_logger(__name__)

DEFAULT_BLOCKED_PATTERNS = [
    r"\brm\s+(-rf?|--recursive)?\s*[/~]",
    r"\bsudo\b",
    r"\b(shutdown|reboot|halt|poweroff)\b",
    r"\bchmod\s+.*777",
    r"\b(curl|wget)\s+.*\|\s*(ba)?sh",
]


def _compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile regex pattern with literal fallback for invalid regex input."""
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return re.compile(re.escape(pattern), re.IGNORECASE)


def is_blocked_command(command: str, blocked_patterns: list[str]) -> tuple[bool, str]:
    """Return (blocked, matched_pattern) for a shell command."""
    cleaned = str(command or "").strip()
    if not cleaned:
        return True, "empty_command"
    for raw_pattern in blocked_patterns or []:
        pattern = str(raw_pattern or "").strip()
        if pattern and _compile_pattern(pattern).search(cleaned):
            return True, pattern
    return False, ""


class ShellTool(WorkspaceTool):
    """Execute terminal commands in the workspace."""

    name = "run_terminal_command"
    description = (
        "Execute a terminal command in the workspace. Use this to run npm, git, build commands, "
        "and other CLI tools. The command runs in the current project directory by default."
    )
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute (e.g., 'npm install', 'git status', 'ls -la')",
            },
            "cwd": {
                "type": "string",
                "description": "Optional working directory for the command. Defaults to the current project directory.",
            },
        },
        "required": ["command"],
    }

    def __init__(
        self,
        workspace_root: Path | str,
        working_directory: Path | str | None = None,
        timeout: float = 300,
        max_output_chars: int = 50000,
        blocked_patterns: list[str] | None = None,
    ):
        super().__init__(workspace_root, working_directory)
        self.timeout = max(1.0, float(timeout))
        self.max_output_chars = max(1, int(max_output_chars))
        self.blocked_patterns = list(
            DEFAULT_BLOCKED_PATTERNS if blocked_patterns is None else blocked_patterns
        )

    async def execute(self, command: str, cwd: str | None = None, **kwargs: Any) -> ToolResult:
        """Execute a shell command.

        Args:
            command: Shell command to execute
            cwd: Optional working directory, relative to the current one

        Returns:
            ToolResult with stdout/stderr, or the failure with exit code
        """
        try:
            run_dir = self.resolve_path(cwd)
        except WorkspaceError as e:
            log.warning("Attempted to execute command outside workspace", cwd=e.path, workspace=e.root)
            return ToolResult.fail(
                f"Working directory must be within the workspace: {self.workspace_root}. "
                "Use a path relative to the workspace or leave cwd empty to use the default workspace directory."
            )

        blocked, matched = is_blocked_command(command, self.blocked_patterns)
        if blocked:
            if matched == "empty_command":
                return ToolResult.fail("Command is empty")
            log.warning("Blocked dangerous command", command=command, pattern=matched)
            return ToolResult.fail(
                "This command has been blocked for safety reasons. Please use a safer alternative."
            )

        env = os.environ.copy()
        env["PATH"] = os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin")
        env.setdefault("NODE_ENV", "development")

        log.info("Executing shell command", command=command, cwd=str(run_dir), timeout=self.timeout)
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(run_dir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )

        communicate_task = asyncio.create_task(process.communicate())
        try:
            done, _ = await asyncio.wait({communicate_task}, timeout=self.timeout)
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            communicate_task.cancel()
            raise

        if communicate_task not in done:
            process.kill()
            communicate_task.cancel()
            try:
                await communicate_task
            except asyncio.CancelledError:
                pass
            await process.wait()
            log.warning("Command timed out", command=command)
            timeout_label = int(self.timeout) if self.timeout.is_integer() else self.timeout
            return ToolResult.fail(f"Command timed out after {timeout_label} seconds")

        stdout, stderr = communicate_task.result()
        stdout_text = truncate_output(stdout.decode("utf-8", errors="replace"), self.max_output_chars)
        stderr_text = truncate_output(stderr.decode("utf-8", errors="replace"), self.max_output_chars)

        if process.returncode != 0:
            log.error("Command execution failed", command=command, exit_code=process.returncode)
            message = f"Command failed with exit code {process.returncode}"
            if stderr_text:
                message += f"\n\nError output:\n{stderr_text}"
            if stdout_text:
                message += f"\n\nStandard output:\n{stdout_text}"
            return ToolResult.fail(
                message,
                data={
                    "stdout": stdout_text,
                    "stderr": stderr_text,
                    "exit_code": process.returncode,
                },
            )

        log.debug(
            "Shell command completed",
            command=command,
            stdout_length=len(stdout),
            stderr_length=len(stderr),
        )
        if stderr_text and not stdout_text:
            return ToolResult.ok({"output": stderr_text, "type": "stderr"})
        payload: dict[str, Any] = {"stdout": stdout_text}
        if stderr_text:
            payload["stderr"] = stderr_text
        return ToolResult.ok(payload)
