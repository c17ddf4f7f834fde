"""Tests for logging helpers."""

import logging

import pytest

from delegationAgent.config.settings import ObservabilitySettings
from delegationAgent.utils.logging_utils import (
    ROOT_LOGGER_NAME,
    get_logger,
    log_tool_result,
    setup_logging,
    setup_logging_from_settings,
)


@pytest.fixture
def restore_root_logger():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def test_setup_logging_writes_detailed_file(tmp_path, restore_root_logger):
    logger = setup_logging(logging.WARNING, log_dir=tmp_path / "logs")

    assert logger is restore_root_logger
    assert len(logger.handlers) == 2
    get_logger("runtime.execution").debug("detail line")
    for handler in logger.handlers:
        handler.flush()

    log_files = list((tmp_path / "logs").glob("delegation_*.log"))
    assert len(log_files) == 1
    content = log_files[0].read_text(encoding="utf-8")
    assert "session started" in content
    assert "detail line" in content


def test_setup_logging_console_only(restore_root_logger):
    logger = setup_logging(logging.INFO)
    assert len(logger.handlers) == 1
    assert logger.handlers[0].level == logging.INFO


def test_get_logger_namespaces_children():
    assert get_logger("cache").name == f"{ROOT_LOGGER_NAME}.cache"
    assert get_logger(f"{ROOT_LOGGER_NAME}.hitl").name == f"{ROOT_LOGGER_NAME}.hitl"


def test_log_tool_result_truncates(caplog):
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.test")
    with caplog.at_level(logging.DEBUG, logger=logger.name):
        log_tool_result(logger, "lookup", "x" * 800, success=False)

    assert "lookup - ✗ Failed" in caplog.text
    assert "(truncated)" in caplog.text


def test_setup_logging_from_settings(tmp_path, restore_root_logger):
    observability = ObservabilitySettings(log_level="warning", log_dir=str(tmp_path))
    logger = setup_logging_from_settings(observability)

    console = [h for h in logger.handlers if not isinstance(h, logging.FileHandler)]
    assert console[0].level == logging.WARNING
    assert list(tmp_path.glob("delegation_*.log"))


def test_setup_logging_from_settings_unknown_level(restore_root_logger):
    logger = setup_logging_from_settings(ObservabilitySettings(log_level="chatty"))
    assert logger.handlers[0].level == logging.INFO
