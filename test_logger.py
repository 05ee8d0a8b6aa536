#!/usr/bin/env python3
"""ロガーのテスト"""
import logging

from funnel.models.config import LoggingConfig
from funnel.utils.logger import LoggerManager


def test_logger(tmp_path):
    """ロガーが正しく動作するか確認"""
    log_file = tmp_path / "logs" / "funnel.log"
    logger = LoggerManager.setup(LoggingConfig(level="WARNING", file=str(log_file)))

    logger.info("not written")
    logger.warning("written")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.WARNING
    content = log_file.read_text(encoding="utf-8")
    assert "written" in content
    assert "not written" not in content


def test_setup_is_idempotent():
    first = LoggerManager.setup(LoggingConfig())
    second = LoggerManager.setup(LoggingConfig(level="DEBUG"))

    assert first is second
    assert first.level == logging.INFO


def test_get_logger_returns_children():
    assert LoggerManager.get_logger().name == "funnel"
    assert LoggerManager.get_logger("funnel.core.pipeline").name == "funnel.core.pipeline"
    assert LoggerManager.get_logger("tests").name == "funnel.tests"


def test_unknown_level_falls_back_to_info():
    logger = LoggerManager.setup(LoggingConfig(level="chatty"))
    assert logger.level == logging.INFO


def test_setup_attaches_handlers_to_root_only(tmp_path):
    log_file = tmp_path / "funnel.log"
    root = LoggerManager.setup(LoggingConfig(file=str(log_file)))
    child = LoggerManager.get_logger("funnel.core.pipeline")

    child.info("from child")
    for handler in root.handlers:
        handler.flush()

    assert root.propagate is False
    assert child.handlers == []
    assert [type(h) for h in root.handlers] == [logging.StreamHandler, logging.FileHandler]
    assert "from child" in log_file.read_text(encoding="utf-8")
