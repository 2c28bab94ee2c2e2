"""
tabpilot - Engine Event Boundary

Every Playwright event the coordinator reacts to enters through here:
- SessionEvents is the interface the coordinator implements
- EventBinding is the registration table for one emitter, so a group of
  listeners can always be detached together
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine, Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from playwright.async_api import Dialog, Download, Page
    from tabpilot.tab import Tab


class SessionEvents(Protocol):
    """Callbacks fired by the browser engine."""

    def on_page_created(self, page: "Page") -> None: ...

    def on_page_closed(self, tab: "Tab") -> None: ...

    def dialog_shown(self, tab: "Tab", dialog: "Dialog") -> None: ...

    async def download_started(self, tab: "Tab", download: "Download") -> None: ...

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> "asyncio.Task": ...


class EventBinding:
    """Listeners attached to one emitter (page or browser context)."""

    def __init__(self, emitter: Any):
        self._emitter = emitter
        self._listeners: list[tuple[str, Callable[..., Any]]] = []

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        self._emitter.on(event, listener)
        self._listeners.append((event, listener))

    def detach(self) -> None:
        """Remove every listener registered through this binding. Idempotent."""
        listeners, self._listeners = self._listeners, []
        for event, listener in listeners:
            self._emitter.remove_listener(event, listener)

    def __len__(self) -> int:
        return len(self._listeners)
