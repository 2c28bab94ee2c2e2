"""
Tests for structured logging setup.
"""

import json
import logging
import logging.handlers

from tabpilot.logging_config import JSONFormatter, get_logger, setup_logging


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("tabpilot.context", logging.INFO, __file__, 1, "Browser context ready", None, None)
    record.phase = "live"
    record.tool_name = "browser_navigate"

    data = json.loads(JSONFormatter().format(record))
    assert data["message"] == "Browser context ready"
    assert data["level"] == "INFO"
    assert data["phase"] == "live"
    assert data["tool_name"] == "browser_navigate"


def test_setup_logging_writes_rotating_file(tmp_path):
    logger = setup_logging(log_dir=tmp_path)
    try:
        get_logger("test").warning("hello from the test")
        for handler in logger.handlers:
            handler.flush()

        lines = (tmp_path / "tabpilot.log").read_text().splitlines()
        messages = [json.loads(line)["message"] for line in lines]
        assert "hello from the test" in messages
        assert all(isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers)
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)


def test_verbose_logs_to_stderr_not_stdout(tmp_path, capsys):
    logger = setup_logging(verbose=True, log_dir=tmp_path)
    try:
        get_logger("test").info("visible on stderr")
        captured = capsys.readouterr()
        assert captured.out == ""
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)


def test_unwritable_log_dir_falls_back_to_stderr(tmp_path, capsys):
    blocker = tmp_path / "logs"
    blocker.write_text("a file where the log directory should be")

    logger = setup_logging(log_dir=blocker)
    try:
        [handler] = logger.handlers
        assert not isinstance(handler, logging.handlers.RotatingFileHandler)
        assert handler.level == logging.WARNING

        captured = capsys.readouterr()
        assert "Log directory is not writable" in captured.err
        assert captured.out == ""
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
