"""
tabpilot - Wait tool
"""

from __future__ import annotations

import asyncio

from pydantic import Field

from tabpilot.tools.base import Tool, ToolParams, ToolResult

MAX_WAIT_SECONDS = 30


class WaitParams(ToolParams):
    time: float = Field(ge=0, description="The time to wait in seconds")


async def _wait(context, params: WaitParams) -> ToolResult:
    await asyncio.sleep(min(MAX_WAIT_SECONDS, params.time))
    return ToolResult(
        code=[f"// Waited for {params.time} seconds"],
        capture_snapshot=True,
        wait_for_network=False,
    )


wait_for = Tool(
    name="browser_wait_for",
    title="Wait",
    description=f"Wait for a specified time in seconds (at most {MAX_WAIT_SECONDS})",
    params=WaitParams,
    handle=_wait,
    read_only=True,
)


TOOLS = [wait_for]
