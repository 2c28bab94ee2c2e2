"""
tabpilot - Error Taxonomy

Fatal errors are exceptions and propagate to the caller:
- ConfigurationError: malformed endpoints, unsupported platform, bad flags
- BrowserNotInstalledError: the configured browser binary is missing
- BrowserLaunchError: any other failure while creating the session handle
- ToolError: a tool was called with arguments that do not fit the session
  (unknown tab index, no dialog to handle, unhandled modal state)

Everything that is merely nice to have (state capture, profile cleanup,
per-tab restore, closing resources) goes through best_effort() or
non_fatal() so the fatal and non-fatal paths look different in the code.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Awaitable, Iterator, TypeVar

logger = logging.getLogger("tabpilot.errors")

T = TypeVar("T")

BROWSER_NOT_INSTALLED_MESSAGE = (
    "Browser specified in your config is not installed. "
    "Either install it (likely) or change the config."
)


class TabpilotError(Exception):
    """Base class for tabpilot errors."""


class ConfigurationError(TabpilotError):
    """Invalid configuration. Fatal to the current operation only."""


class BrowserNotInstalledError(TabpilotError):
    """The browser executable could not be found."""

    def __init__(self, detail: str = ""):
        super().__init__(BROWSER_NOT_INSTALLED_MESSAGE)
        self.detail = detail


class BrowserLaunchError(TabpilotError):
    """Launching or connecting to the browser failed."""


class NoCurrentTabError(TabpilotError):
    """A tool needed the current tab but none is open."""


class ToolError(TabpilotError):
    """A tool call that cannot be honoured in the current session state."""


# ═══════════════════════════════════════════════════════════════════════════
# Non-fatal operations
# ═══════════════════════════════════════════════════════════════════════════


async def best_effort(operation: str, awaitable: Awaitable[T], default: T | None = None) -> T | None:
    """
    Await a non-fatal operation.

    Args:
        operation: Short description used in the log line
        awaitable: The coroutine/future to await
        default: Value returned when the operation fails

    Returns:
        The awaited result, or ``default`` if it raised
    """
    try:
        return await awaitable
    except Exception as e:
        logger.debug(f"{operation} failed: {e}")
        return default


@contextlib.contextmanager
def non_fatal(operation: str) -> Iterator[None]:
    """Run a block whose failure is logged and otherwise ignored."""
    try:
        yield
    except Exception as e:
        logger.warning(f"{operation} failed, continuing: {e}")
