"""
tabpilot - Navigation tools
"""

from __future__ import annotations

from pydantic import Field

from tabpilot.tools.base import NoParams, Tool, ToolParams, ToolResult


class NavigateParams(ToolParams):
    url: str = Field(description="The URL to navigate to")


async def _navigate(context, params: NavigateParams) -> ToolResult:
    tab = await context.ensure_tab()
    await tab.navigate(params.url)
    return ToolResult(
        code=[
            f"// Navigate to {params.url}",
            f"await page.goto('{params.url}');",
        ],
        capture_snapshot=True,
        wait_for_network=False,
    )


async def _go_back(context, params: NoParams) -> ToolResult:
    tab = context.current_tab_or_die()

    async def action():
        await tab.page.go_back()

    return ToolResult(
        code=["// Navigate back", "await page.goBack();"],
        action=action,
        capture_snapshot=True,
        wait_for_network=True,
    )


async def _go_forward(context, params: NoParams) -> ToolResult:
    tab = context.current_tab_or_die()

    async def action():
        await tab.page.go_forward()

    return ToolResult(
        code=["// Navigate forward", "await page.goForward();"],
        action=action,
        capture_snapshot=True,
        wait_for_network=True,
    )


navigate = Tool(
    name="browser_navigate",
    title="Navigate to a URL",
    description="Navigate to a URL",
    params=NavigateParams,
    handle=_navigate,
)

go_back = Tool(
    name="browser_navigate_back",
    title="Go back",
    description="Go back to the previous page",
    params=NoParams,
    handle=_go_back,
    read_only=True,
)

go_forward = Tool(
    name="browser_navigate_forward",
    title="Go forward",
    description="Go forward to the next page",
    params=NoParams,
    handle=_go_forward,
    read_only=True,
)


TOOLS = [navigate, go_back, go_forward]
