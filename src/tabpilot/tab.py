"""
tabpilot - Tab

Wraps one Playwright page. Page events are forwarded to the owning
coordinator, which is referenced weakly: a tab never keeps a coordinator
alive.
"""

from __future__ import annotations

import weakref
from typing import Callable, TYPE_CHECKING

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from tabpilot.events import EventBinding, SessionEvents
from tabpilot.logging_config import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Dialog, Download, Page

logger = get_logger("tab")


class Tab:
    def __init__(self, context: SessionEvents, page: "Page", on_page_close: Callable[["Tab"], None]):
        self._context_ref = weakref.ref(context)
        self.page = page
        self._on_page_close = on_page_close
        self._snapshot: str | None = None
        self._last_url: str = page.url

        self._binding = EventBinding(page)
        self._binding.on("close", self._on_close)
        self._binding.on("dialog", self._on_dialog)
        self._binding.on("download", self._on_download)

    @property
    def context(self) -> SessionEvents | None:
        return self._context_ref()

    @property
    def url(self) -> str:
        """Current URL, or the last one seen if the page is gone."""
        if not self.page.is_closed():
            self._last_url = self.page.url
        return self._last_url

    async def title(self) -> str:
        return await self.page.title()

    async def navigate(self, url: str) -> None:
        """
        Go to ``url`` and wait (briefly) for the load event.

        A navigation that turns into a download is not an error.
        """
        self._snapshot = None
        try:
            await self.page.goto(url, wait_until="domcontentloaded")
        except PlaywrightError as e:
            if "Download is starting" in str(e):
                logger.debug(f"Navigation to {url} started a download")
                return
            raise
        try:
            await self.page.wait_for_load_state("load", timeout=5000)
        except PlaywrightTimeout:
            logger.debug(f"Load event for {url} did not fire within 5s, continuing")
        self._last_url = self.page.url

    async def wait_for_load_state(self, state: str = "load") -> None:
        await self.page.wait_for_load_state(state)

    # Snapshot

    async def capture_snapshot(self) -> None:
        self._snapshot = await self.page.locator("body").aria_snapshot()

    def has_snapshot(self) -> bool:
        return self._snapshot is not None

    def snapshot_or_die(self) -> str:
        if self._snapshot is None:
            raise RuntimeError("No snapshot available for this tab")
        return self._snapshot

    def snapshot_markdown(self) -> str:
        return f"- Page Snapshot:\n```yaml\n{self.snapshot_or_die()}\n```"

    # Engine events

    def _on_close(self, _page: "Page") -> None:
        self._binding.detach()
        self._on_page_close(self)

    def _on_dialog(self, dialog: "Dialog") -> None:
        context = self.context
        if context is not None:
            context.dialog_shown(self, dialog)

    def _on_download(self, download: "Download") -> None:
        context = self.context
        if context is not None:
            context.spawn(context.download_started(self, download), f"download {download.suggested_filename}")
