"""Unit tests for logging configuration."""

import logging
import os
import time

import pytest
import structlog

from knowledge.config.schema import LoggingConfig
from knowledge.observability.logging import (
    RetainingFileHandler,
    add_app_context,
    configure_from_config,
    get_logger,
)


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    structlog.reset_defaults()


def test_app_context():
    assert add_app_context(None, "info", {"event": "x"}) == {"event": "x", "app": "knowledge"}


def test_file_logging(tmp_path):
    configure_from_config(LoggingConfig(level="INFO", json_logs=True, enable_file=True, log_dir=tmp_path))

    get_logger("knowledge.test").info("file_logging_works", source_id="doc-1")

    for handler in logging.getLogger().handlers:
        handler.flush()
    text = (tmp_path / "knowledge.log").read_text(encoding="utf-8")
    assert "file_logging_works" in text
    assert '"source_id": "doc-1"' in text


def test_prune_removes_only_expired_files(tmp_path):
    handler = RetainingFileHandler(str(tmp_path / "knowledge.log"), max_days=1, encoding="utf-8")
    try:
        old = tmp_path / "knowledge.log.2020-01-01"
        fresh = tmp_path / "knowledge.log.2099-01-01"
        old.write_text("old")
        fresh.write_text("fresh")
        two_days_ago = time.time() - 2 * 86400
        os.utime(old, (two_days_ago, two_days_ago))

        assert handler.prune() == 1
        assert not old.exists()
        assert fresh.exists()
    finally:
        handler.close()
