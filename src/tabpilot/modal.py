"""
tabpilot - Modal States

UI conditions (dialogs) that block further page interaction until a tool
resolves them. At most one per tab is expected, several may coexist.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, TYPE_CHECKING

if TYPE_CHECKING:
    from tabpilot.tab import Tab
    from tabpilot.tools.base import Tool


@dataclass(eq=False)
class ModalState:
    """A blocking UI state. Compared by identity, never by field values."""
    kind: str
    description: str
    tab: "Tab"
    dialog: Any = None


class ModalStateStack:
    def __init__(self):
        self._states: list[ModalState] = []

    def push(self, state: ModalState) -> None:
        self._states.append(state)

    def clear(self, state: ModalState) -> None:
        self._states = [s for s in self._states if s is not state]

    def drop_tab(self, tab: "Tab") -> None:
        """Forget every state raised by a tab that has gone away."""
        self._states = [s for s in self._states if s.tab is not tab]

    def reset(self) -> None:
        self._states = []

    def states(self) -> tuple[ModalState, ...]:
        return tuple(self._states)

    def is_script_blocked(self) -> bool:
        return any(s.kind == "dialog" for s in self._states)

    def markdown(self, tools: Iterable["Tool"]) -> list[str]:
        tools = list(tools)
        lines = ["### Modal state"]
        if not self._states:
            lines.append("- There is no modal state present")
        for state in self._states:
            tool = next((t for t in tools if t.clears_modal_state == state.kind), None)
            name = tool.name if tool else None
            lines.append(f'- [{state.description}]: can be handled by the "{name}" tool')
        return lines

    def __len__(self) -> int:
        return len(self._states)
