import pytest

import coder_bot.config as config_module
import coder_bot.llm as llm_module
from coder_bot.config import Config


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Fresh config without MCP servers so no test spawns npx."""
    cfg = Config()
    cfg.tools.mcp.servers = []
    cfg.workspace.root = str(tmp_path)
    monkeypatch.setattr(config_module, "_config", cfg)
    monkeypatch.setattr(llm_module, "_provider", None)
    return cfg
