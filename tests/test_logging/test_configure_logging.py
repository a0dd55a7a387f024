import json
from pathlib import Path

import pytest
import structlog

import coder_bot.logging as logging_module
from coder_bot.config import Config
from coder_bot.logging import configure_logging, get_logger


@pytest.fixture(autouse=True)
def restore_structlog():
    yield
    logging_module._open_log_file(None)
    structlog.reset_defaults()


def test_log_file_receives_json_events(isolated_config: Config, tmp_path: Path):
    isolated_config.logging.format = "json"
    target = tmp_path / "logs" / "coder-bot.log"

    configure_logging(log_file=target)
    get_logger("coder_bot.test").info("Tool executed", tool="echo", success=True)

    event = json.loads(target.read_text(encoding="utf-8").strip().splitlines()[-1])
    assert event["event"] == "Tool executed"
    assert event["tool"] == "echo"
    assert event["success"] is True
    assert event["level"] == "info"


def test_level_filters_events(isolated_config: Config, tmp_path: Path):
    isolated_config.logging.format = "json"
    isolated_config.logging.file = str(tmp_path / "filtered.log")

    configure_logging("WARNING")
    logger = get_logger("coder_bot.test")
    logger.info("Dispatching tool calls")
    logger.warning("Maximum iterations reached", max_iterations=3)

    lines = (tmp_path / "filtered.log").read_text(encoding="utf-8").strip().splitlines()
    assert [json.loads(line)["event"] for line in lines] == ["Maximum iterations reached"]


def test_reconfiguring_closes_previous_log_file(isolated_config: Config, tmp_path: Path):
    configure_logging(log_file=tmp_path / "first.log")
    first = logging_module._log_file

    configure_logging()

    assert first is not None and first.closed
    assert logging_module._log_file is None
