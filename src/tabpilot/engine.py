"""
tabpilot - Session Handle Provider

Creates the single browser context a coordinator works with.

Strategies, in priority order:
1. remote_endpoint  → Playwright server (browser_type.connect)
2. cdp_endpoint     → running Chromium over CDP (connect_over_cdp)
3. isolated         → fresh ephemeral context (launch + new_context)
4. default          → persistent context backed by a profile directory

Endpoint strings are validated before the Playwright driver starts.
A missing browser executable always surfaces as BrowserNotInstalledError.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from playwright.async_api import async_playwright
from pydantic.alias_generators import to_camel

from tabpilot.config import BrowserOptions, FullConfig, NetworkOptions
from tabpilot.errors import (
    BrowserLaunchError,
    BrowserNotInstalledError,
    ConfigurationError,
    TabpilotError,
    best_effort,
)
from tabpilot.paths import create_user_data_dir

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Playwright, Route

logger = logging.getLogger("tabpilot.engine")


class SessionPhase(str, enum.Enum):
    """Lifecycle of the session handle."""
    IDLE = "idle"
    STARTING = "starting"
    LIVE = "live"
    CLOSING = "closing"


@dataclass
class SessionHandle:
    """The live browser connection. Owned by exactly one coordinator."""
    context: "BrowserContext"
    browser: "Browser | None" = None
    playwright: "Playwright | None" = None
    persistent: bool = False


# ═══════════════════════════════════════════════════════════════════════════
# Endpoint validation
# ═══════════════════════════════════════════════════════════════════════════


def validate_endpoint(kind: str, value: Any) -> str:
    """Return the trimmed endpoint or raise ConfigurationError."""
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"Invalid {kind} endpoint: {value!r}. Must be a valid URL string.")
    endpoint = value.strip()
    parsed = urlparse(endpoint)
    if not parsed.scheme or not parsed.netloc:
        raise ConfigurationError(f"Invalid {kind} endpoint: {value!r}. Must be a valid URL string.")
    return endpoint


def remote_endpoint_url(options: BrowserOptions) -> str:
    """Remote endpoint with the browser name and launch options as query parameters."""
    endpoint = validate_endpoint("remote", options.remote_endpoint)
    parsed = urlparse(endpoint)
    query = dict(parse_qsl(parsed.query))
    query["browser"] = options.browser_name
    if options.launch_options:
        camel = {to_camel(k): v for k, v in options.launch_options.items()}
        query["launch-options"] = json.dumps(camel)
    return urlunparse(parsed._replace(query=urlencode(query)))


def _translate_launch_error(error: Exception, what: str) -> TabpilotError:
    message = str(error)
    if "Executable doesn't exist" in message:
        return BrowserNotInstalledError(message)
    if "Invalid URL" in message:
        return BrowserLaunchError(f"Failed to launch {what} - invalid URL configuration: {message}")
    return BrowserLaunchError(f"Failed to launch {what}: {message}")


def _context_options(options: BrowserOptions, storage_state: Any) -> dict[str, Any]:
    result = {k: v for k, v in options.context_options.items() if k != "storage_state"}
    if storage_state:
        result["storage_state"] = storage_state
    return result


# ═══════════════════════════════════════════════════════════════════════════
# Strategies
# ═══════════════════════════════════════════════════════════════════════════


async def _connect_remote(playwright: "Playwright", options: BrowserOptions, endpoint: str,
                          storage_state: Any) -> SessionHandle:
    browser_type = getattr(playwright, options.browser_name)
    try:
        browser = await browser_type.connect(endpoint)
    except Exception as e:
        raise BrowserLaunchError(f"Failed to connect to remote browser at {options.remote_endpoint}: {e}") from e
    context = await browser.new_context(**_context_options(options, storage_state))
    return SessionHandle(context=context, browser=browser)


async def _connect_cdp(playwright: "Playwright", options: BrowserOptions, endpoint: str,
                       storage_state: Any) -> SessionHandle:
    try:
        browser = await playwright.chromium.connect_over_cdp(endpoint)
    except Exception as e:
        raise BrowserLaunchError(f"Failed to connect over CDP to {endpoint}: {e}") from e
    if options.isolated:
        context = await browser.new_context(**_context_options(options, storage_state))
    elif browser.contexts:
        context = browser.contexts[0]
    else:
        raise BrowserLaunchError(f"Browser at {endpoint} exposes no default context")
    return SessionHandle(context=context, browser=browser)


async def _launch_isolated(playwright: "Playwright", options: BrowserOptions,
                           storage_state: Any) -> SessionHandle:
    browser_type = getattr(playwright, options.browser_name)
    try:
        browser = await browser_type.launch(**options.launch_options)
        context = await browser.new_context(**_context_options(options, storage_state))
    except Exception as e:
        raise _translate_launch_error(e, "isolated browser context") from e
    return SessionHandle(context=context, browser=browser)


async def _launch_persistent(playwright: "Playwright", options: BrowserOptions) -> SessionHandle:
    browser_type = getattr(playwright, options.browser_name)
    try:
        if options.user_data_dir:
            user_data_dir = Path(options.user_data_dir)
        else:
            user_data_dir = await asyncio.to_thread(create_user_data_dir, options.browser_name, options.channel)
        context = await browser_type.launch_persistent_context(
            str(user_data_dir),
            **{**options.launch_options, **_context_options(options, None)},
        )
    except Exception as e:
        raise _translate_launch_error(e, "persistent browser context") from e
    logger.info(f"Launched persistent context with profile {user_data_dir}")
    return SessionHandle(context=context, persistent=True)


async def create_session_handle(config: FullConfig, storage_state: Any = None) -> SessionHandle:
    """
    Create a browser context according to the configured strategy.

    Args:
        config: Resolved configuration
        storage_state: Cookies/localStorage to seed non-persistent contexts with

    Returns:
        SessionHandle with the driver attached

    Raises:
        ConfigurationError: malformed endpoint (raised before any network attempt)
        BrowserNotInstalledError: browser executable missing
        BrowserLaunchError: any other launch/connect failure
    """
    options = config.browser
    remote = cdp = None
    if options.remote_endpoint is not None:
        remote = remote_endpoint_url(options)
    elif options.cdp_endpoint is not None:
        cdp = validate_endpoint("CDP", options.cdp_endpoint)

    try:
        playwright = await async_playwright().start()
    except Exception as e:
        raise BrowserLaunchError(f"Playwright failed to start: {e}") from e

    try:
        if remote:
            handle = await _connect_remote(playwright, options, remote, storage_state)
        elif cdp:
            handle = await _connect_cdp(playwright, options, cdp, storage_state)
        elif options.isolated:
            handle = await _launch_isolated(playwright, options, storage_state)
        else:
            handle = await _launch_persistent(playwright, options)
    except Exception:
        await best_effort("Stopping Playwright driver", playwright.stop())
        raise

    handle.playwright = playwright
    return handle


# ═══════════════════════════════════════════════════════════════════════════
# Request interception
# ═══════════════════════════════════════════════════════════════════════════


async def _abort(route: "Route") -> None:
    await route.abort("blockedbyclient")


async def _continue(route: "Route") -> None:
    await route.continue_()


async def setup_request_interception(context: "BrowserContext", network: NetworkOptions) -> None:
    """
    Install origin allow/block rules.

    Playwright consults the most recently added route first, so the
    catch-all abort goes in before the per-origin allowances.
    """
    if network.allowed_origins:
        await context.route("**", _abort)
        for origin in network.allowed_origins:
            await context.route(f"*://{origin}/**", _continue)

    if network.blocked_origins:
        for origin in network.blocked_origins:
            await context.route(f"*://{origin}/**", _abort)
