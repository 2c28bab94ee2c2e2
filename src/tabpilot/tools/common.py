"""
tabpilot - Session lifecycle tools

browser_close, browser_restart, browser_resize, browser_save_state,
browser_load_state.

Restart and the state tools report their failures in the code comment
instead of raising, so the client always sees what happened.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from pydantic import Field

from tabpilot.state import load_snapshot, save_snapshot
from tabpilot.tools.base import NoParams, Tool, ToolParams, ToolResult

logger = logging.getLogger("tabpilot.tools.common")


def _comment(text: str) -> ToolResult:
    return ToolResult(code=[f"// {text}"], capture_snapshot=False, wait_for_network=False)


# ═══════════════════════════════════════════════════════════════════════════
# browser_close
# ═══════════════════════════════════════════════════════════════════════════


async def _close(context, params: NoParams) -> ToolResult:
    await context.close()
    return ToolResult(code=["await page.close()"], capture_snapshot=False, wait_for_network=False)


close = Tool(
    name="browser_close",
    title="Close browser",
    description="Close the page",
    params=NoParams,
    handle=_close,
    requires_tab=False,
    read_only=True,
)


# ═══════════════════════════════════════════════════════════════════════════
# browser_restart
# ═══════════════════════════════════════════════════════════════════════════


class RestartParams(ToolParams):
    clean_profile: bool = Field(
        default=False,
        description="Clean the browser profile directory to fix corruption issues. "
                    "Use with caution as this will clear all browser data including cookies and saved logins.",
    )
    preserve_state: bool = Field(
        default=True,
        description="Preserve the current browser session state (cookies, localStorage, sessionStorage, "
                    "tabs, and current page) across the restart. Set to false to start with a completely clean state.",
    )


async def _restart(context, params: RestartParams) -> ToolResult:
    try:
        await context.reset_browser_context(params.clean_profile, params.preserve_state)
    except Exception as e:
        logger.error(f"Restart failed: {e}", exc_info=True)
        return _comment(f"Error restarting browser: {e}")
    clean_msg = " and cleaned profile directory" if params.clean_profile else ""
    state_msg = " with preserved session state" if params.preserve_state else " with clean state"
    return _comment(f"Restarted browser{clean_msg}{state_msg} and reset all internal state")


restart = Tool(
    name="browser_restart",
    title="Restart browser",
    description="Restart the browser and reset all state. Use this when the browser is in an "
                "inconsistent state or experiencing connection issues.",
    params=RestartParams,
    handle=_restart,
    requires_tab=False,
    read_only=True,
)


# ═══════════════════════════════════════════════════════════════════════════
# browser_resize
# ═══════════════════════════════════════════════════════════════════════════


class ResizeParams(ToolParams):
    width: int = Field(gt=0, description="Width of the browser window")
    height: int = Field(gt=0, description="Height of the browser window")


async def _resize(context, params: ResizeParams) -> ToolResult:
    tab = context.current_tab_or_die()

    async def action():
        await tab.page.set_viewport_size({"width": params.width, "height": params.height})

    return ToolResult(
        code=[
            f"// Resize browser window to {params.width}x{params.height}",
            f"await page.setViewportSize({{ width: {params.width}, height: {params.height} }});",
        ],
        action=action,
        capture_snapshot=True,
        wait_for_network=True,
    )


resize = Tool(
    name="browser_resize",
    title="Resize browser window",
    description="Resize the browser window",
    params=ResizeParams,
    handle=_resize,
    read_only=True,
)


# ═══════════════════════════════════════════════════════════════════════════
# browser_save_state / browser_load_state
# ═══════════════════════════════════════════════════════════════════════════


class SaveStateParams(ToolParams):
    filename: str | None = Field(
        default=None,
        description="Filename to save the state to. If not provided, a default filename with timestamp will be used.",
    )


async def _save_state(context, params: SaveStateParams) -> ToolResult:
    if not context.has_handle:
        return _comment("No browser context available to save state from")
    try:
        saved = await context.capture_current_state()
        if saved is None:
            return _comment("Failed to capture browser state")
        stamp = datetime.now().isoformat().replace(":", "-").replace(".", "-")
        filename = params.filename or f"browser-state-{stamp}.json"
        save_snapshot(filename, saved)
    except Exception as e:
        logger.error(f"Saving state failed: {e}", exc_info=True)
        return _comment(f"Error saving browser state: {e}")
    return _comment(f"Saved browser state to {filename}")


save_state = Tool(
    name="browser_save_state",
    title="Save browser state",
    description="Save the current browser session state (cookies, localStorage, sessionStorage, tabs, "
                "and current page) to a file for later restoration.",
    params=SaveStateParams,
    handle=_save_state,
    requires_tab=False,
    read_only=True,
)


class LoadStateParams(ToolParams):
    filename: str = Field(description="Filename to load the state from.")
    restart: bool = Field(
        default=True,
        description="Whether to restart the browser before loading the state. Recommended to ensure clean restoration.",
    )


async def _load_state(context, params: LoadStateParams) -> ToolResult:
    if not Path(params.filename).exists():
        return _comment(f"State file '{params.filename}' not found")
    try:
        saved = load_snapshot(params.filename)
    except Exception as e:
        logger.error(f"Loading state failed: {e}", exc_info=True)
        return _comment(f"Error loading browser state: {e}")

    if not params.restart:
        context.saved_state = saved
        return _comment(f"Loaded browser state from {params.filename}. Use browser_restart to apply it.")

    try:
        # Drop the current session without capturing it, then stash the loaded snapshot
        await context.reset_browser_context(clean_profile=False, preserve_state=False)
        context.saved_state = saved
    except Exception as e:
        logger.error(f"Applying loaded state failed: {e}", exc_info=True)
        return _comment(f"Error loading browser state: {e}")
    return _comment(f"Loaded and applied browser state from {params.filename}")


load_state = Tool(
    name="browser_load_state",
    title="Load browser state",
    description="Load a previously saved browser session state from a file and restore it to the current browser context.",
    params=LoadStateParams,
    handle=_load_state,
    requires_tab=False,
    read_only=True,
)


TOOLS = [close, restart, resize, save_state, load_state]
