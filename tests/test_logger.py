# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import logging
import sys
from logging.handlers import RotatingFileHandler

import pytest

from lapreplay.core import logger as logger_module
from lapreplay.core.logger import get_logger


@pytest.fixture
def fresh_loggers(monkeypatch):
    """Give each test an empty logger cache and close what it created"""
    monkeypatch.setattr(logger_module, "_loggers", {})
    yield logger_module._loggers
    for replay_logger in logger_module._loggers.values():
        for handler in replay_logger.logger.handlers:
            handler.close()
        replay_logger.logger.handlers.clear()


def handler_types(replay_logger):
    return [type(h) for h in replay_logger.logger.handlers]


def test_level_and_stderr_console(fresh_loggers, monkeypatch):
    monkeypatch.setenv("LAPREPLAY_NO_FILE_LOGS", "true")

    replay_logger = get_logger("lapreplay_level", level="debug")

    assert replay_logger.logger.level == logging.DEBUG
    assert handler_types(replay_logger) == [logging.StreamHandler]
    assert replay_logger.logger.handlers[0].stream is sys.stderr


def test_level_from_environment(fresh_loggers, monkeypatch):
    monkeypatch.setenv("LAPREPLAY_NO_FILE_LOGS", "true")
    monkeypatch.setenv("LAPREPLAY_LOG_LEVEL", "WARNING")

    replay_logger = get_logger("lapreplay_env")

    assert replay_logger.logger.level == logging.WARNING


def test_file_logging(fresh_loggers, monkeypatch, tmp_path):
    monkeypatch.setenv("LAPREPLAY_NO_FILE_LOGS", "false")

    replay_logger = get_logger("lapreplay_file", level="INFO", log_dir=tmp_path)

    assert RotatingFileHandler in handler_types(replay_logger)
    file_handler = next(
        h for h in replay_logger.logger.handlers if isinstance(h, RotatingFileHandler)
    )
    assert file_handler.level == logging.DEBUG
    assert (tmp_path / "lapreplay_file.log").exists()


def test_cached_logger_level_can_change(fresh_loggers, monkeypatch, tmp_path):
    monkeypatch.setenv("LAPREPLAY_NO_FILE_LOGS", "false")
    first = get_logger("lapreplay_cached", level="INFO", log_dir=tmp_path)

    second = get_logger("lapreplay_cached", level="ERROR")

    assert second is first
    assert first.logger.level == logging.ERROR
    levels = {type(h): h.level for h in first.logger.handlers}
    assert levels[logging.StreamHandler] == logging.ERROR
    assert levels[RotatingFileHandler] == logging.DEBUG
