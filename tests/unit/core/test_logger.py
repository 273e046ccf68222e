import json
import logging

import pytest
import structlog

from config import LoggingConfig
from core.logger import bind_context, cycle_safe_values, get_structured_logger, setup_logging


@pytest.fixture
def reset_logging():
    yield
    structlog.reset_defaults()
    logging.basicConfig(handlers=[logging.NullHandler()], force=True)


@pytest.fixture
def configured_logging(reset_logging):
    """Configures logging before the test body so caplog's handler is installed afterwards."""
    setup_logging(LoggingConfig(log_file_path=None))


def test_json_events_are_written_to_timestamped_file(tmp_path, reset_logging):
    setup_logging(LoggingConfig(log_level="DEBUG", log_format="json", log_file_path=tmp_path / "application.log"))

    logger = bind_context(get_structured_logger("tests.logger"), target_id="123")
    logger.info("application_started", company="Example Inc")

    log_files = list(tmp_path.glob("application_*.log"))
    assert len(log_files) == 1

    lines = [line for line in log_files[0].read_text(encoding="utf-8").splitlines() if "application_started" in line]
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event"] == "application_started"
    assert record["target_id"] == "123"
    assert record["company"] == "Example Inc"
    assert record["level"] == "info"
    assert record["logger"] == "tests.logger"
    assert "timestamp" in record


def test_level_filter(tmp_path, reset_logging):
    setup_logging(LoggingConfig(log_level="WARNING", log_file_path=tmp_path / "app.log"))

    logger = get_structured_logger("tests.level")
    logger.info("quiet_event")
    logger.warning("loud_event")

    content = next(tmp_path.glob("app_*.log")).read_text(encoding="utf-8")
    assert "quiet_event" not in content
    assert "loud_event" in content


def test_repeated_setup_does_not_stack_handlers(tmp_path, reset_logging):
    config = LoggingConfig(log_file_path=None)
    setup_logging(config)
    setup_logging(config)

    assert len(logging.getLogger().handlers) == 1


def test_stdlib_records_are_captured(configured_logging, caplog):
    with caplog.at_level(logging.INFO):
        logging.getLogger("tests.stdlib").info("plain message")

    assert len(caplog.records) == 1
    record = caplog.records[0]
    assert record.levelname == "INFO"
    assert record.name == "tests.stdlib"


def test_cycle_safe_values_marks_self_references():
    data = {"name": "loop"}
    data["self"] = data
    items = [1, 2]
    items.append(items)

    event = cycle_safe_values(None, "info", {"event": "x", "data": data, "items": items})

    assert event["data"] == {"name": "loop", "self": "<circular>"}
    assert event["items"] == [1, 2, "<circular>"]


def test_cycle_safe_values_keeps_shared_non_cyclic_values():
    shared = {"a": 1}
    event = cycle_safe_values(None, "info", {"event": "x", "left": shared, "right": [shared, shared]})

    assert event["left"] == {"a": 1}
    assert event["right"] == [{"a": 1}, {"a": 1}]
