"""
tabpilot - Tab management tools

Tab indexes are 1-based, as listed by browser_tab_list. They are checked
here; the coordinator trusts what it is given.
"""

from __future__ import annotations

from pydantic import Field

from tabpilot.errors import ToolError
from tabpilot.tools.base import NoParams, Tool, ToolParams, ToolResponse, ToolResult


def _check_index(context, index: int) -> None:
    count = len(context.tabs())
    if not 1 <= index <= count:
        raise ToolError(f"Tab {index} not found, there are {count} open tab(s)")


async def _list(context, params: NoParams) -> ToolResult:
    await context.ensure_tab()
    return ToolResult(
        code=["// <internal code to list tabs>"],
        capture_snapshot=False,
        wait_for_network=False,
        result_override=ToolResponse.from_text(await context.list_tabs_markdown()),
    )


class NewTabParams(ToolParams):
    url: str | None = Field(
        default=None,
        description="The URL to navigate to in the new tab. If not provided, the new tab will be blank.",
    )


async def _new(context, params: NewTabParams) -> ToolResult:
    tab = await context.new_tab()
    if params.url:
        await tab.navigate(params.url)
    return ToolResult(
        code=["// <internal code to open a new tab>"],
        capture_snapshot=True,
        wait_for_network=False,
    )


class SelectTabParams(ToolParams):
    index: int = Field(description="The index of the tab to select")


async def _select(context, params: SelectTabParams) -> ToolResult:
    _check_index(context, params.index)
    await context.select_tab(params.index)
    return ToolResult(
        code=[f"// <internal code to select tab {params.index}>"],
        capture_snapshot=True,
        wait_for_network=False,
    )


class CloseTabParams(ToolParams):
    index: int | None = Field(
        default=None,
        description="The index of the tab to close. Closes current tab if not provided.",
    )


async def _close(context, params: CloseTabParams) -> ToolResult:
    if params.index is not None:
        _check_index(context, params.index)
    await context.close_tab(params.index)
    target = f"tab {params.index}" if params.index is not None else "current tab"
    return ToolResult(
        code=[f"// <internal code to close {target}>"],
        capture_snapshot=True,
        wait_for_network=False,
    )


tab_list = Tool(
    name="browser_tab_list",
    title="List tabs",
    description="List browser tabs",
    params=NoParams,
    handle=_list,
    read_only=True,
)

tab_new = Tool(
    name="browser_tab_new",
    title="Open a new tab",
    description="Open a new tab",
    params=NewTabParams,
    handle=_new,
    read_only=True,
)

tab_select = Tool(
    name="browser_tab_select",
    title="Select a tab",
    description="Select a tab by index",
    params=SelectTabParams,
    handle=_select,
    read_only=True,
)

tab_close = Tool(
    name="browser_tab_close",
    title="Close a tab",
    description="Close a tab",
    params=CloseTabParams,
    handle=_close,
)


TOOLS = [tab_list, tab_new, tab_select, tab_close]
