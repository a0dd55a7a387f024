"""Vercel deployment tools."""

import asyncio
import os
import re
from pathlib import Path
from typing import Any

import httpx

from coder_bot.exceptions import WorkspaceError
from coder_bot.logging import get_logger
from coder_bot.tools.registry import Tool, ToolResult, WorkspaceTool
from coder_bot.workspace import truncate_output

log = get_logger(__name__)

VERCEL_API_BASE = "https://api.vercel.com"
MAX_OUTPUT_SIZE = 50000

_VERCEL_URL_RE = re.compile(r"https://[^\s]+\.vercel\.app[^\s]*")


def sanitize_project_name(name: str) -> str:
    """Lower-case a project name to Vercel's allowed charset."""
    cleaned = re.sub(r"[^a-z0-9-]", "-", str(name or "").lower())
    cleaned = re.sub(r"-+", "-", cleaned)
    return cleaned.strip("-")


def parse_deployment_url(stdout: str) -> str | None:
    """Find the deployment URL in ``vercel`` CLI output.

    The CLI prints the URL as its last line; fall back to any ``*.vercel.app`` link.
    """
    lines = [line.strip() for line in str(stdout or "").strip().splitlines()]
    if lines and lines[-1].startswith("https://"):
        return lines[-1]
    match = _VERCEL_URL_RE.search(stdout or "")
    return match.group(0) if match else None


class _VercelApi:
    """Thin REST helper shared by the Vercel tools."""

    def __init__(self, token: str, api_base_url: str = VERCEL_API_BASE, client: httpx.AsyncClient | None = None):
        self.token = str(token or "").strip()
        self.api_base_url = (api_base_url or VERCEL_API_BASE).rstrip("/")
        self._client = client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def request(self, method: str, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        url = f"{self.api_base_url}/{path.lstrip('/')}"
        if self._client is not None:
            return await self._client.request(method, url, headers=self._headers(), params=params)
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await client.request(method, url, headers=self._headers(), params=params)

    async def list_deployments(self, project_name: str) -> list[dict[str, Any]]:
        try:
            response = await self.request(
                "GET",
                "v6/deployments",
                params={"projectId": project_name, "limit": 100},
            )
        except httpx.HTTPError as e:
            log.warning("Error listing deployments", project_name=project_name, error=str(e))
            return []
        if not response.is_success:
            log.warning("Failed to list deployments", project_name=project_name, status=response.status_code)
            return []
        payload = response.json()
        deployments = payload.get("deployments") if isinstance(payload, dict) else None
        return [item for item in deployments or [] if isinstance(item, dict)]

    async def delete_deployment(self, deployment_id: str) -> bool:
        try:
            response = await self.request("DELETE", f"v13/deployments/{deployment_id}")
        except httpx.HTTPError as e:
            log.debug("Error deleting deployment", deployment_id=deployment_id, error=str(e))
            return False
        return response.status_code in {200, 204}

    async def cleanup_deployments(self, project_name: str) -> int:
        """Delete every existing deployment of a project; return how many went."""
        deployments = await self.list_deployments(project_name)
        if not deployments:
            log.debug("No existing deployments found", project_name=project_name)
            return 0
        deleted = 0
        for deployment in deployments:
            uid = str(deployment.get("uid", "")).strip()
            if uid and await self.delete_deployment(uid):
                deleted += 1
        log.info("Cleaned up old deployments", project_name=project_name, deleted_count=deleted)
        return deleted


class DeployToVercelTool(WorkspaceTool):
    """Deploy a project directory with the Vercel CLI."""

    name = "deploy_to_vercel"
    description = (
        "Deploy a web application to Vercel hosting. Returns the live URL where the app can be accessed. "
        "Use preview deployments by default (unique URL per deploy), or set production=true for stable "
        "production URLs. Supports React, Next.js, Vue, Svelte, static sites, and most web frameworks."
    )
    parameters = {
        "type": "object",
        "properties": {
            "project_path": {
                "type": "string",
                "description": "Path to the project directory to deploy (relative to the working directory or absolute within workspace)",
            },
            "production": {
                "type": "boolean",
                "description": "Set to true for production deployment with stable URL. Default is false (preview deployment).",
            },
            "project_name": {
                "type": "string",
                "description": "Optional name for the Vercel project. Defaults to the directory name.",
            },
            "skip_cleanup": {
                "type": "boolean",
                "description": "Set to true to keep old deployments. Default is false (old deployments are deleted first).",
            },
        },
        "required": ["project_path"],
    }

    def __init__(
        self,
        workspace_root: Path | str,
        working_directory: Path | str | None = None,
        token: str = "",
        api_base_url: str = VERCEL_API_BASE,
        timeout: float = 600,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(workspace_root, working_directory)
        self.token = str(token or "").strip()
        self.timeout = max(1.0, float(timeout))
        self._api = _VercelApi(self.token, api_base_url, client=client)

    def _build_argv(self, production: bool, project_name: str) -> list[str]:
        argv = ["npx", "vercel", "--yes", "--token", self.token]
        if production:
            argv.append("--prod")
        if project_name:
            argv.extend(["--name", project_name])
        return argv

    async def execute(
        self,
        project_path: str,
        production: bool = False,
        project_name: str | None = None,
        skip_cleanup: bool = False,
        **kwargs: Any,
    ) -> ToolResult:
        """Deploy ``project_path`` and report the resulting URL."""
        try:
            resolved = self.resolve_path(project_path)
        except WorkspaceError as e:
            log.warning("Attempted to deploy project outside workspace", project_path=e.path, workspace=e.root)
            return ToolResult.fail(
                f"Project path must be within the workspace: {self.workspace_root}. "
                "Use a path relative to the workspace."
            )
        if not resolved.is_dir():
            return ToolResult.fail(f"Project directory does not exist: {resolved}")

        explicit_name = sanitize_project_name(project_name) if project_name else ""
        effective_name = explicit_name or sanitize_project_name(resolved.name)
        if not skip_cleanup and effective_name:
            await self._api.cleanup_deployments(effective_name)

        env = os.environ.copy()
        env["VERCEL_TELEMETRY_DISABLED"] = "1"

        log.info("Deploying to Vercel", project_path=str(resolved), production=production, project_name=explicit_name)
        process = await asyncio.create_subprocess_exec(
            *self._build_argv(production, explicit_name),
            cwd=str(resolved),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            log.error("Vercel deployment timed out", project_path=str(resolved))
            return ToolResult.fail(f"Deployment timed out after {int(self.timeout // 60)} minutes")

        stdout_text = truncate_output(stdout.decode("utf-8", errors="replace").strip(), MAX_OUTPUT_SIZE)
        stderr_text = truncate_output(stderr.decode("utf-8", errors="replace").strip(), MAX_OUTPUT_SIZE)

        if process.returncode != 0:
            log.error("Vercel deployment failed", exit_code=process.returncode, project_path=str(resolved))
            message = f"Deployment failed with exit code {process.returncode}"
            if stderr_text:
                message += f"\n\nError output:\n{stderr_text}"
            if stdout_text:
                message += f"\n\nStandard output:\n{stdout_text}"
            return ToolResult.fail(
                message,
                data={"stdout": stdout_text, "stderr": stderr_text, "exit_code": process.returncode},
            )

        url = parse_deployment_url(stdout_text)
        if url:
            log.info("Vercel deployment successful", url=url, production=production)
            label = "production" if production else "preview"
            return ToolResult.ok(
                {
                    "url": url,
                    "production": production,
                    "message": f"Successfully deployed {label}: {url}",
                    "stdout": stdout_text,
                }
            )

        log.warning("Deployment completed but could not parse URL", stdout=stdout_text[:500])
        payload: dict[str, Any] = {
            "message": "Deployment completed but could not parse URL from output",
            "stdout": stdout_text,
        }
        if stderr_text:
            payload["stderr"] = stderr_text
        return ToolResult.ok(payload)


class DeleteVercelProjectTool(Tool):
    """Delete a Vercel project and all its deployments."""

    name = "delete_vercel_project"
    description = (
        "Delete a project from Vercel. This permanently removes the project and all its deployments. "
        "Use the project name or ID to identify which project to delete. "
        "WARNING: This action is irreversible."
    )
    parameters = {
        "type": "object",
        "properties": {
            "project_name_or_id": {
                "type": "string",
                "description": "The name or ID of the Vercel project to delete.",
            },
        },
        "required": ["project_name_or_id"],
    }

    def __init__(self, token: str = "", api_base_url: str = VERCEL_API_BASE, client: httpx.AsyncClient | None = None):
        self._api = _VercelApi(token, api_base_url, client=client)

    async def execute(self, project_name_or_id: str = "", **kwargs: Any) -> ToolResult:
        target = str(project_name_or_id or "").strip()
        if not target:
            return ToolResult.fail("Project name or ID is required")

        log.info("Deleting Vercel project", project=target)
        try:
            response = await self._api.request("DELETE", f"v9/projects/{target}")
        except httpx.HTTPError as e:
            return ToolResult.fail(f"Failed to delete project: {e}")

        if response.status_code in {200, 204}:
            log.info("Vercel project deleted", project=target)
            return ToolResult.ok(
                {
                    "message": f"Successfully deleted project: {target}",
                    "project_name_or_id": target,
                }
            )
        if response.status_code == 404:
            return ToolResult.fail(
                f"Project not found: {target}. Please verify the project name or ID is correct."
            )
        if response.status_code == 403:
            return ToolResult.fail(
                f"Access denied: You don't have permission to delete project '{target}'. "
                "Ensure your Vercel token has the necessary permissions."
            )

        try:
            payload = response.json()
            error_body = ""
            if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
                error_body = str(payload["error"].get("message", "") or "")
            error_body = error_body or response.text
        except ValueError:
            error_body = response.text
        return ToolResult.fail(f"Failed to delete project (HTTP {response.status_code}): {error_body}")
