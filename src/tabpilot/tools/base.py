"""
tabpilot - Tool primitives

A tool's handle() does its bookkeeping synchronously against the
coordinator and hands back a ToolResult. The side-effecting part, if any,
goes in ``action`` so the coordinator can race it against dialogs and wait
for the network to settle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from tabpilot.context import Context


class ToolParams(BaseModel):
    """Base for tool parameter models. Unknown fields are rejected."""
    model_config = ConfigDict(extra="forbid")


class NoParams(ToolParams):
    pass


@dataclass
class ToolActionResult:
    content: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ToolResponse:
    content: list[dict[str, Any]]
    is_error: bool = False

    @classmethod
    def from_text(cls, text: str, is_error: bool = False) -> "ToolResponse":
        return cls(content=[{"type": "text", "text": text}], is_error=is_error)

    def text(self) -> str:
        return "\n".join(c["text"] for c in self.content if c.get("type") == "text")


@dataclass
class ToolResult:
    code: list[str]
    action: Callable[[], Awaitable[ToolActionResult | None]] | None = None
    capture_snapshot: bool = False
    wait_for_network: bool = False
    result_override: ToolResponse | None = None


@dataclass
class Tool:
    name: str
    title: str
    description: str
    params: type[ToolParams]
    handle: Callable[["Context", Any], Awaitable[ToolResult]]
    clears_modal_state: str | None = None
    requires_tab: bool = True
    read_only: bool = False

    def parse_params(self, params: dict[str, Any] | None) -> ToolParams:
        return self.params.model_validate(params or {})

    def input_schema(self) -> dict[str, Any]:
        return self.params.model_json_schema()
