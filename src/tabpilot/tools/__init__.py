"""
tabpilot - Tools

Browser tool registry. The registry owns the modal-state gate and turns
any failure of a tool call into an ``### Error`` response, so a client
always gets a result back.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, TYPE_CHECKING

from pydantic import ValidationError

from tabpilot.tools import common, dialogs, navigate, tabs, wait
from tabpilot.tools.base import Tool, ToolResponse

if TYPE_CHECKING:
    from tabpilot.context import Context

logger = logging.getLogger("tabpilot.tools")


def all_tools() -> list[Tool]:
    """Every browser tool, in catalogue order."""
    return [
        *navigate.TOOLS,
        *tabs.TOOLS,
        *dialogs.TOOLS,
        *wait.TOOLS,
        *common.TOOLS,
    ]


# ═══════════════════════════════════════════════════════════════════════════
# Tool Registry
# ═══════════════════════════════════════════════════════════════════════════


class ToolRegistry:
    """Name -> Tool lookup plus guarded dispatch into a Context."""

    def __init__(self, tools: list[Tool] | None = None):
        self.tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self.tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self.tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self.tools.get(name)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self.tools.values())

    def __len__(self) -> int:
        return len(self.tools)

    def __contains__(self, name: str) -> bool:
        return name in self.tools

    def _check_modal_state(self, context: "Context", tool: Tool) -> str | None:
        """Error text when ``tool`` may not run in the current modal state."""
        states = context.modal_states()
        if tool.clears_modal_state:
            if not any(s.kind == tool.clears_modal_state for s in states):
                return (
                    f'The tool "{tool.name}" can only be used when there is related modal state present.\n'
                    + "\n".join(context.modal_states_markdown())
                )
            return None
        if states:
            return (
                f'Tool "{tool.name}" does not handle the modal state.\n'
                + "\n".join(context.modal_states_markdown())
            )
        return None

    async def call(self, context: "Context", name: str, args: dict[str, Any] | None = None) -> ToolResponse:
        """Call a tool by name against ``context``. Never raises."""
        tool = self.tools.get(name)
        if tool is None:
            return ToolResponse.from_text(f"### Error\nUnknown tool: {name}", is_error=True)

        gate = self._check_modal_state(context, tool)
        if gate:
            return ToolResponse.from_text(f"### Error\n{gate}", is_error=True)

        try:
            logger.debug(f"Tool call: {name} with args: {args}", extra={"tool_name": name})
            return await context.run(tool, args)
        except ValidationError as e:
            logger.warning(f"Invalid arguments for {name}: {e}", extra={"tool_name": name})
            return ToolResponse.from_text(f"### Error\nInvalid arguments for {name}:\n{e}", is_error=True)
        except Exception as e:
            logger.error(f"Tool execution error for {name}: {e}", exc_info=True, extra={"tool_name": name})
            return ToolResponse.from_text(f"### Error\n{e}", is_error=True)


def create_tool_registry() -> ToolRegistry:
    """Registry holding every browser tool."""
    return ToolRegistry(all_tools())


__all__ = ["Tool", "ToolRegistry", "ToolResponse", "all_tools", "create_tool_registry"]
