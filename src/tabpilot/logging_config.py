"""
Structured Logging for tabpilot

JSON logging to file with rotation.
stdout carries the MCP stdio transport, so nothing is ever logged there.
"""

import logging
import logging.handlers
import json
from pathlib import Path
import sys


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields attached by the coordinator
        if hasattr(record, "tool_name"):
            log_data["tool_name"] = record.tool_name
        if hasattr(record, "phase"):
            log_data["phase"] = record.phase

        return json.dumps(log_data)


def _rotating_file_handler(log_dir: Path) -> logging.Handler | None:
    """JSON file handler (10MB max, keep last 5 files), None if the directory is unusable."""
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_dir / "tabpilot.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError:
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(verbose: bool = False, log_dir: Path | None = None):
    """
    Setup structured logging for tabpilot.

    Args:
        verbose: If True, also log to stderr
        log_dir: Directory for the rotating log file (default ~/.tabpilot/logs)

    Returns:
        Logger instance
    """
    root_logger = logging.getLogger("tabpilot")
    root_logger.handlers.clear()
    root_logger.setLevel(logging.DEBUG)

    file_handler = _rotating_file_handler(log_dir or Path.home() / ".tabpilot" / "logs")
    if file_handler is not None:
        root_logger.addHandler(file_handler)

    # Without a log file, warnings still reach stderr
    if verbose or file_handler is None:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.INFO if verbose else logging.WARNING)
        console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        root_logger.addHandler(console_handler)

    if file_handler is None:
        root_logger.warning("Log directory is not writable, logging to stderr only")
    root_logger.info("tabpilot logging initialized", extra={"phase": "startup"})
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific module."""
    return logging.getLogger(f"tabpilot.{name}")
