import json
from pathlib import Path

import httpx
import pytest

from coder_bot.tools.vercel import (
    DeleteVercelProjectTool,
    DeployToVercelTool,
    _VercelApi,
    parse_deployment_url,
    sanitize_project_name,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_parse_deployment_url_prefers_last_line():
    stdout = "Vercel CLI 33.0.0\nInspect: https://vercel.com/me/app/abc\nhttps://app-abc123.vercel.app"

    assert parse_deployment_url(stdout) == "https://app-abc123.vercel.app"


def test_parse_deployment_url_falls_back_to_vercel_app_link():
    stdout = "Production: https://my-app.vercel.app [2s]\nDone"

    assert parse_deployment_url(stdout) == "https://my-app.vercel.app"
    assert parse_deployment_url("nothing here") is None


def test_sanitize_project_name():
    assert sanitize_project_name("My App!") == "my-app"
    assert sanitize_project_name("--todo__list--") == "todo-list"


@pytest.mark.asyncio
async def test_delete_project_success():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    tool = DeleteVercelProjectTool(token="secret", client=_client(handler))

    result = await tool.execute(project_name_or_id="my-app")

    assert result.success is True
    assert result.data["message"] == "Successfully deleted project: my-app"
    assert requests[0].method == "DELETE"
    assert requests[0].url.path == "/v9/projects/my-app"
    assert requests[0].headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "body", "expected"),
    [
        (404, {}, "Project not found: my-app"),
        (403, {}, "Access denied"),
        (500, {"error": {"message": "internal failure"}}, "Failed to delete project (HTTP 500): internal failure"),
    ],
)
async def test_delete_project_failures(status: int, body: dict, expected: str):
    tool = DeleteVercelProjectTool(
        token="secret",
        client=_client(lambda request: httpx.Response(status, json=body)),
    )

    result = await tool.execute(project_name_or_id="my-app")

    assert result.success is False
    assert result.error.startswith(expected)


@pytest.mark.asyncio
async def test_delete_project_requires_target():
    tool = DeleteVercelProjectTool(token="secret", client=_client(lambda request: httpx.Response(200)))

    result = await tool.execute(project_name_or_id="  ")

    assert result.success is False
    assert result.error == "Project name or ID is required"


@pytest.mark.asyncio
async def test_cleanup_deletes_every_listed_deployment():
    deleted: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            assert request.url.path == "/v6/deployments"
            assert request.url.params["projectId"] == "my-app"
            assert request.url.params["limit"] == "100"
            return httpx.Response(200, json={"deployments": [{"uid": "dpl_1"}, {"uid": "dpl_2"}, {}]})
        deleted.append(request.url.path)
        return httpx.Response(200 if request.url.path.endswith("dpl_1") else 500)

    api = _VercelApi("secret", client=_client(handler))

    count = await api.cleanup_deployments("my-app")

    assert count == 1
    assert deleted == ["/v13/deployments/dpl_1", "/v13/deployments/dpl_2"]


@pytest.mark.asyncio
async def test_cleanup_tolerates_listing_failure():
    api = _VercelApi("secret", client=_client(lambda request: httpx.Response(401, json={})))

    assert await api.cleanup_deployments("my-app") == 0


@pytest.mark.asyncio
async def test_deploy_rejects_paths_outside_workspace(tmp_path: Path):
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    tool = DeployToVercelTool(workspace, token="secret")

    escaped = await tool.execute(project_path="../elsewhere")
    missing = await tool.execute(project_path="missing-app")

    assert escaped.success is False
    assert escaped.error.startswith("Project path must be within the workspace")
    assert missing.success is False
    assert missing.error.startswith("Project directory does not exist")


def test_deploy_argv_includes_flags(tmp_path: Path):
    tool = DeployToVercelTool(tmp_path, token="secret")

    assert tool._build_argv(False, "") == ["npx", "vercel", "--yes", "--token", "secret"]
    assert tool._build_argv(True, "my-app") == [
        "npx", "vercel", "--yes", "--token", "secret", "--prod", "--name", "my-app",
    ]


def test_deploy_declaration_requires_project_path(tmp_path: Path):
    declaration = DeployToVercelTool(tmp_path, token="secret").get_declaration()

    assert declaration["name"] == "deploy_to_vercel"
    assert declaration["parameters"]["required"] == ["project_path"]
    json.dumps(declaration)
