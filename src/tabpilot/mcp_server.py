"""
tabpilot - MCP Server

Exposes one browser session to an MCP host (Claude Desktop, Cursor,
VS Code, ...) over stdio.

Architecture:
    FastMCP framework, one explicit function per browser tool.
    Every function forwards to the ToolRegistry, which runs the tool in
    the session's Context and never raises. The MCP layer is a thin skin:
    tab registry, dialogs, quiescence and restart all live in Context.

stdout carries the protocol; logs go to stderr and the log file only.
"""

import contextlib
import logging
from typing import Annotated, Any, AsyncIterator

from mcp.server.fastmcp import FastMCP

from tabpilot import __version__
from tabpilot.config import FullConfig
from tabpilot.context import Context
from tabpilot.tools import ToolRegistry, create_tool_registry

logger = logging.getLogger("tabpilot.mcp")


def _annotations(registry: ToolRegistry, name: str) -> dict[str, Any]:
    tool = registry.get(name)
    return {
        "title": tool.title,
        "readOnlyHint": tool.read_only,
        "destructiveHint": not tool.read_only,
        "openWorldHint": True,
    }


def create_mcp_server(config: FullConfig, registry: ToolRegistry | None = None) -> FastMCP:
    """Create the tabpilot MCP server around a single browser session.

    Args:
        config: Resolved configuration for the session
        registry: Tool registry to dispatch into (defaults to every browser tool)

    Returns:
        FastMCP server instance. ``server.browser_context`` is the session
        coordinator, closed when the server's lifespan ends.
    """
    registry = registry or create_tool_registry()
    context = Context(list(registry), config)

    @contextlib.asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        logger.info(f"tabpilot {__version__} serving {len(registry)} tools")
        try:
            yield
        finally:
            await context.close()
            logger.info("Session closed on server shutdown")

    mcp = FastMCP(
        "tabpilot",
        instructions=(
            "Drive a real browser session: navigate, manage tabs, answer dialogs, "
            "and save or restore the session state across restarts."
        ),
        lifespan=lifespan,
    )
    mcp.browser_context = context

    async def _call(name: str, **args: Any) -> str:
        # Unset optional arguments fall back to the tool's own defaults
        arguments = {k: v for k, v in args.items() if v is not None}
        response = await registry.call(context, name, arguments)
        return response.text()

    # ═════════════════════════════════════════════════════════════════════
    # Navigation
    # ═════════════════════════════════════════════════════════════════════

    @mcp.tool(annotations=_annotations(registry, "browser_navigate"))
    async def browser_navigate(
        url: Annotated[str, "The URL to navigate to"],
    ) -> str:
        """Navigate to a URL."""
        return await _call("browser_navigate", url=url)

    @mcp.tool(annotations=_annotations(registry, "browser_navigate_back"))
    async def browser_navigate_back() -> str:
        """Go back to the previous page."""
        return await _call("browser_navigate_back")

    @mcp.tool(annotations=_annotations(registry, "browser_navigate_forward"))
    async def browser_navigate_forward() -> str:
        """Go forward to the next page."""
        return await _call("browser_navigate_forward")

    # ═════════════════════════════════════════════════════════════════════
    # Tabs
    # ═════════════════════════════════════════════════════════════════════

    @mcp.tool(annotations=_annotations(registry, "browser_tab_list"))
    async def browser_tab_list() -> str:
        """List browser tabs."""
        return await _call("browser_tab_list")

    @mcp.tool(annotations=_annotations(registry, "browser_tab_new"))
    async def browser_tab_new(
        url: Annotated[str | None, "The URL to navigate to in the new tab. If not provided, the new tab will be blank."] = None,
    ) -> str:
        """Open a new tab."""
        return await _call("browser_tab_new", url=url)

    @mcp.tool(annotations=_annotations(registry, "browser_tab_select"))
    async def browser_tab_select(
        index: Annotated[int, "The index of the tab to select"],
    ) -> str:
        """Select a tab by index."""
        return await _call("browser_tab_select", index=index)

    @mcp.tool(annotations=_annotations(registry, "browser_tab_close"))
    async def browser_tab_close(
        index: Annotated[int | None, "The index of the tab to close. Closes current tab if not provided."] = None,
    ) -> str:
        """Close a tab."""
        return await _call("browser_tab_close", index=index)

    # ═════════════════════════════════════════════════════════════════════
    # Dialogs & waiting
    # ═════════════════════════════════════════════════════════════════════

    @mcp.tool(annotations=_annotations(registry, "browser_handle_dialog"))
    async def browser_handle_dialog(
        accept: Annotated[bool, "Whether to accept the dialog."],
        prompt_text: Annotated[str | None, "The text of the prompt in case of a prompt dialog."] = None,
    ) -> str:
        """Handle a dialog (alert, confirm, prompt, beforeunload) that blocks the page."""
        return await _call("browser_handle_dialog", accept=accept, prompt_text=prompt_text)

    @mcp.tool(annotations=_annotations(registry, "browser_wait_for"))
    async def browser_wait_for(
        time: Annotated[float, "The time to wait in seconds (at most 30)"],
    ) -> str:
        """Wait for a specified time in seconds."""
        return await _call("browser_wait_for", time=time)

    # ═════════════════════════════════════════════════════════════════════
    # Session lifecycle
    # ═════════════════════════════════════════════════════════════════════

    @mcp.tool(annotations=_annotations(registry, "browser_close"))
    async def browser_close() -> str:
        """Close the page."""
        return await _call("browser_close")

    @mcp.tool(annotations=_annotations(registry, "browser_restart"))
    async def browser_restart(
        clean_profile: Annotated[bool, "Clean the browser profile directory to fix corruption issues. Clears cookies and saved logins."] = False,
        preserve_state: Annotated[bool, "Preserve cookies, localStorage, sessionStorage, tabs and the current page across the restart."] = True,
    ) -> str:
        """Restart the browser and reset all state.

        Use this when the browser is in an inconsistent state or experiencing
        connection issues.
        """
        return await _call("browser_restart", clean_profile=clean_profile, preserve_state=preserve_state)

    @mcp.tool(annotations=_annotations(registry, "browser_resize"))
    async def browser_resize(
        width: Annotated[int, "Width of the browser window"],
        height: Annotated[int, "Height of the browser window"],
    ) -> str:
        """Resize the browser window."""
        return await _call("browser_resize", width=width, height=height)

    @mcp.tool(annotations=_annotations(registry, "browser_save_state"))
    async def browser_save_state(
        filename: Annotated[str | None, "Filename to save the state to. Defaults to a timestamped name."] = None,
    ) -> str:
        """Save the current browser session state to a file for later restoration."""
        return await _call("browser_save_state", filename=filename)

    @mcp.tool(annotations=_annotations(registry, "browser_load_state"))
    async def browser_load_state(
        filename: Annotated[str, "Filename to load the state from."],
        restart: Annotated[bool, "Restart the browser before loading the state. Recommended."] = True,
    ) -> str:
        """Load a previously saved browser session state from a file."""
        return await _call("browser_load_state", filename=filename, restart=restart)

    return mcp


# ═══════════════════════════════════════════════════════════════════════════
# Server Runner
# ═══════════════════════════════════════════════════════════════════════════


async def run_mcp_server(config: FullConfig) -> None:
    """Serve the browser tools over stdio until the host disconnects."""
    mcp = create_mcp_server(config)
    logger.info(f"tabpilot MCP server starting (browser={config.browser.browser_name})")
    await mcp.run_stdio_async()
