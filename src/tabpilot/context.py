"""
tabpilot - Session Coordinator

Owns the single browser context of a session and everything hanging off it:

- Session handle: created lazily, exactly once even under concurrent
  callers, torn down on close/restart
- Tab registry: ordered open pages + the current tab
- Modal states: dialogs that block the page until a tool handles them
- Action race: a tool's action vs. the first dialog it triggers
- Quiescence: waiting for the network to settle after an action
- Downloads: append-only log for the session
- Capture/restore: storage + tab topology carried across a restart

All mutations of the registry and modal states are synchronous, so they
are atomic with respect to each other on the event loop. Suspension
points: handle creation, page creation/navigation, storage reads and the
quiescence wait.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, Iterable, TYPE_CHECKING

from tabpilot.config import FullConfig
from tabpilot.downloads import DownloadTracker
from tabpilot.engine import SessionHandle, SessionPhase, create_session_handle, setup_request_interception
from tabpilot.errors import NoCurrentTabError, best_effort, non_fatal
from tabpilot.modal import ModalState, ModalStateStack
from tabpilot.paths import default_user_data_dir, is_under, profiles_root
from tabpilot.state import SavedSessionState, apply_storage_state, capture_state, restore_state
from tabpilot.tab import Tab
from tabpilot.tools.base import Tool, ToolActionResult, ToolResponse
from tabpilot.waiter import wait_for_completion

if TYPE_CHECKING:
    from playwright.async_api import Dialog, Download, Page

logger = logging.getLogger("tabpilot.context")

NO_PAGES_MESSAGE = 'No open pages available. Use the "browser_navigate" tool to navigate to a page first.'

IN_PAGE_WAIT_SCRIPT = "(ms) => new Promise(resolve => setTimeout(resolve, ms))"


@dataclass
class PendingAction:
    """The in-flight race between a tool action and the first dialog."""
    dialog_shown: asyncio.Future


class Context:
    """Session coordinator. One per client connection."""

    def __init__(self, tools: Iterable[Tool], config: FullConfig):
        self.tools: list[Tool] = list(tools)
        self.config = config
        self._handle_task: asyncio.Task[SessionHandle] | None = None
        self._closing = 0
        self._tabs: list[Tab] = []
        self._current_tab: Tab | None = None
        self._modal_states = ModalStateStack()
        self._pending_action: PendingAction | None = None
        self._downloads = DownloadTracker(config)
        self._saved_state: SavedSessionState | None = None
        self._background: set[asyncio.Task] = set()

    # ═══════════════════════════════════════════════════════════════════════
    # Session handle
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def phase(self) -> SessionPhase:
        task = self._handle_task
        if task is None:
            return SessionPhase.CLOSING if self._closing else SessionPhase.IDLE
        if task.done() and not task.cancelled() and task.exception() is None:
            return SessionPhase.LIVE
        return SessionPhase.STARTING

    @property
    def has_handle(self) -> bool:
        return self._handle_task is not None

    def _ensure_handle_task(self) -> asyncio.Task[SessionHandle]:
        if self._handle_task is None:
            task = asyncio.ensure_future(self._setup_session_handle())
            self._handle_task = task
            task.add_done_callback(self._on_handle_settled)
        return self._handle_task

    def _on_handle_settled(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is not None:
            # Forget the failure so the next caller retries from scratch
            if self._handle_task is task:
                self._handle_task = None
            if not task.cancelled():
                logger.warning(f"Browser context creation failed: {task.exception()}")

    async def ensure_handle(self) -> SessionHandle:
        """The memoized session handle; concurrent callers share one creation."""
        return await asyncio.shield(self._ensure_handle_task())

    async def _setup_session_handle(self) -> SessionHandle:
        saved = self._saved_state
        storage_state = saved.storage_state if saved else self.config.browser.context_options.get("storage_state")

        handle = await create_session_handle(self.config, storage_state)
        browser_context = handle.context
        try:
            await setup_request_interception(browser_context, self.config.network)
            if handle.persistent and storage_state:
                await best_effort("Applying storage state", apply_storage_state(browser_context, storage_state))

            for page in browser_context.pages:
                self.on_page_created(page)
            browser_context.on("page", self.on_page_created)

            if saved is not None:
                await restore_state(self, browser_context, saved)

            if self.config.save_trace:
                await browser_context.tracing.start(name="trace", screenshots=False, snapshots=True, sources=False)
        except Exception:
            await self._teardown(handle)
            raise

        logger.info("Browser context ready", extra={"phase": SessionPhase.LIVE.value})
        return handle

    # ═══════════════════════════════════════════════════════════════════════
    # Tab registry
    # ═══════════════════════════════════════════════════════════════════════

    def tabs(self) -> list[Tab]:
        return list(self._tabs)

    @property
    def current_tab(self) -> Tab | None:
        return self._current_tab

    def current_tab_or_die(self) -> Tab:
        if self._current_tab is None:
            raise NoCurrentTabError(
                "No current snapshot available. Capture a snapshot or navigate to a new location first."
            )
        return self._current_tab

    async def new_tab(self) -> Tab:
        handle = await self.ensure_handle()
        page = await handle.context.new_page()
        tab = self._tab_for_page(page)
        if tab is None:
            # The "page" event has not been delivered yet
            self.on_page_created(page)
            tab = self._tab_for_page(page)
        self._current_tab = tab
        return tab

    async def select_tab(self, index: int) -> None:
        """Make the 1-based ``index`` tab current. Range is checked by the caller."""
        tab = self._tabs[index - 1]
        self._current_tab = tab
        await tab.page.bring_to_front()

    async def ensure_tab(self) -> Tab:
        handle = await self.ensure_handle()
        if self._current_tab is None:
            page = await handle.context.new_page()
            if self._tab_for_page(page) is None:
                self.on_page_created(page)
        return self._current_tab

    async def close_tab(self, index: int | None = None) -> str:
        tab = self._current_tab if index is None else self._tabs[index - 1]
        if tab is not None:
            await tab.page.close()
        return await self.list_tabs_markdown()

    async def list_tabs_markdown(self) -> str:
        if not self._tabs:
            return "### No tabs open"
        lines = ["### Open tabs"]
        for i, tab in enumerate(self._tabs, start=1):
            title = await best_effort("Reading tab title", tab.title(), default="")
            current = " (current)" if tab is self._current_tab else ""
            lines.append(f"- {i}:{current} [{title}] ({tab.url})")
        return "\n".join(lines)

    def _tab_for_page(self, page: "Page") -> Tab | None:
        return next((t for t in self._tabs if t.page is page), None)

    def on_page_created(self, page: "Page") -> None:
        if self._tab_for_page(page) is not None:
            return
        tab = Tab(self, page, self.on_page_closed)
        self._tabs.append(tab)
        if self._current_tab is None:
            self._current_tab = tab

    def on_page_closed(self, tab: Tab) -> None:
        self._modal_states.drop_tab(tab)
        try:
            index = self._tabs.index(tab)
        except ValueError:
            return
        del self._tabs[index]

        if self._current_tab is tab:
            self._current_tab = self._tabs[min(index, len(self._tabs) - 1)] if self._tabs else None
        if not self._tabs:
            self.spawn(self.close(), "close after last tab")

    # ═══════════════════════════════════════════════════════════════════════
    # Modal states
    # ═══════════════════════════════════════════════════════════════════════

    def modal_states(self) -> tuple[ModalState, ...]:
        return self._modal_states.states()

    def set_modal_state(self, state: ModalState) -> None:
        self._modal_states.push(state)

    def clear_modal_state(self, state: ModalState) -> None:
        self._modal_states.clear(state)

    def modal_states_markdown(self) -> list[str]:
        return self._modal_states.markdown(self.tools)

    def is_script_blocked(self) -> bool:
        return self._modal_states.is_script_blocked()

    # ═══════════════════════════════════════════════════════════════════════
    # Engine events
    # ═══════════════════════════════════════════════════════════════════════

    def dialog_shown(self, tab: Tab, dialog: "Dialog") -> None:
        self.set_modal_state(ModalState(
            kind="dialog",
            description=f'"{dialog.type}" dialog with message "{dialog.message}"',
            tab=tab,
            dialog=dialog,
        ))
        pending = self._pending_action
        if pending is not None and not pending.dialog_shown.done():
            pending.dialog_shown.set_result(None)

    async def download_started(self, tab: Tab, download: "Download") -> None:
        await self._downloads.start(download)

    @property
    def downloads(self) -> DownloadTracker:
        return self._downloads

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Run ``coro`` in the background; failures are logged, never raised."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"Background task '{name}' failed: {t.exception()}", exc_info=t.exception())

        task.add_done_callback(_done)
        return task

    # ═══════════════════════════════════════════════════════════════════════
    # Tool execution
    # ═══════════════════════════════════════════════════════════════════════

    async def run(self, tool: Tool, params: dict[str, Any] | None = None) -> ToolResponse:
        """Run one tool invocation and assemble its response."""
        tool_result = await tool.handle(self, tool.parse_params(params))
        if tool_result.result_override is not None:
            return tool_result.result_override

        code_block = "- Ran Playwright code:\n```js\n" + "\n".join(tool_result.code) + "\n```\n"

        if self._current_tab is None:
            if tool.requires_tab:
                return ToolResponse.from_text(NO_PAGES_MESSAGE)
            return ToolResponse.from_text(code_block)

        tab = self._current_tab
        action = tool_result.action
        racing_action = (lambda: self._race_against_modal_dialogs(action)) if action else None

        action_result: ToolActionResult | None = None
        try:
            if racing_action is not None:
                if tool_result.wait_for_network:
                    action_result = await wait_for_completion(self, tab, racing_action)
                else:
                    action_result = await racing_action()
        finally:
            if tool_result.capture_snapshot and not self.is_script_blocked():
                await best_effort("Capturing page snapshot", tab.capture_snapshot())

        result = [code_block]

        if self.modal_states():
            result.extend(self.modal_states_markdown())
            return ToolResponse.from_text("\n".join(result))

        result.extend(self._downloads.markdown())

        if len(self._tabs) > 1:
            result.extend([await self.list_tabs_markdown(), ""])
            result.append("### Current tab")

        title = await best_effort("Reading page title", tab.title(), default="")
        result.extend([f"- Page URL: {tab.url}", f"- Page Title: {title}"])

        if tool_result.capture_snapshot and tab.has_snapshot():
            result.append(tab.snapshot_markdown())

        content = list(action_result.content) if action_result else []
        content.append({"type": "text", "text": "\n".join(result)})
        return ToolResponse(content=content)

    async def wait_for_timeout(self, ms: int) -> None:
        """Sleep ``ms`` milliseconds, in-page when scripts can run."""
        tab = self._current_tab
        if tab is None or self.is_script_blocked() or tab.page.is_closed():
            await asyncio.sleep(ms / 1000)
            return
        try:
            await tab.page.evaluate(IN_PAGE_WAIT_SCRIPT, ms)
        except Exception as e:
            # Page navigated away or closed mid-wait
            logger.debug(f"In-page wait interrupted: {e}")
            await asyncio.sleep(ms / 1000)

    async def _race_against_modal_dialogs(
        self, action: Callable[[], Awaitable[ToolActionResult | None]]
    ) -> ToolActionResult | None:
        """
        Run ``action`` until it finishes or a dialog shows up, whichever is first.

        When the dialog wins, the action keeps running in the background and
        its outcome is dropped for this turn.
        """
        loop = asyncio.get_running_loop()
        self._pending_action = PendingAction(dialog_shown=loop.create_future())
        dialog_shown = self._pending_action.dialog_shown
        action_task = asyncio.ensure_future(action())
        try:
            await asyncio.wait({action_task, dialog_shown}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            action_task.cancel()
            raise
        finally:
            self._pending_action = None
            if not dialog_shown.done():
                dialog_shown.cancel()

        if action_task.done():
            return action_task.result()

        logger.debug("Dialog pre-empted the running action; it continues in the background")
        self._background.add(action_task)
        action_task.add_done_callback(self._discard_preempted_action)
        return None

    def _discard_preempted_action(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.debug(f"Pre-empted action failed after the dialog: {task.exception()}")
        else:
            logger.debug("Pre-empted action finished after the dialog; result dropped")

    # ═══════════════════════════════════════════════════════════════════════
    # Teardown / restart
    # ═══════════════════════════════════════════════════════════════════════

    async def close(self) -> None:
        """Tear the session handle down. Best-effort; no-op when idle."""
        task = self._handle_task
        if task is None:
            return
        self._detach_handle()
        self._closing += 1
        try:
            await asyncio.wait({task})
            if task.cancelled() or task.exception() is not None:
                logger.debug("Nothing to close, browser context creation had failed")
                return
            await self._teardown(task.result())
        finally:
            self._closing -= 1
        logger.info("Browser context closed", extra={"phase": SessionPhase.IDLE.value})

    def _detach_handle(self) -> None:
        # Callers see no handle and no tabs from here on, even while teardown
        # I/O runs, so a session created meanwhile owns a clean registry
        self._handle_task = None
        self._tabs = []
        self._current_tab = None
        self._modal_states.reset()

    async def _teardown(self, handle: SessionHandle) -> None:
        if self.config.save_trace:
            trace_file = self.config.output_file("trace.zip")
            await best_effort("Stopping trace", handle.context.tracing.stop(path=trace_file))
        await best_effort("Closing browser context", handle.context.close())
        if handle.browser is not None:
            await best_effort("Closing browser", handle.browser.close())
        if handle.playwright is not None:
            await best_effort("Stopping Playwright driver", handle.playwright.stop())

    def _profile_dir(self) -> Path | None:
        """On-disk profile of a persistent session, None for isolated/remote/CDP."""
        browser = self.config.browser
        if browser.isolated or browser.remote_endpoint or browser.cdp_endpoint:
            return None
        if browser.user_data_dir:
            return Path(browser.user_data_dir)
        return default_user_data_dir(browser.browser_name, browser.channel)

    async def _clean_profile(self) -> None:
        with non_fatal("Cleaning profile directory"):
            profile_dir = self._profile_dir()
            if profile_dir is None:
                return
            if not is_under(profile_dir, profiles_root()):
                logger.warning(f"Refusing to delete profile outside the cache root: {profile_dir}")
                return
            logger.info(f"Removing profile directory {profile_dir}")
            await asyncio.to_thread(shutil.rmtree, profile_dir, ignore_errors=False)

    async def reset_browser_context(self, clean_profile: bool = False, preserve_state: bool = True) -> None:
        """
        Restart the session.

        Args:
            clean_profile: Delete the on-disk profile (persistent sessions only)
            preserve_state: Capture storage + tabs first and replay them on the
                next handle creation
        """
        saved: SavedSessionState | None = None
        if preserve_state:
            # Without a live session a loaded snapshot is still pending
            if self._handle_task is None:
                saved = self._saved_state
            else:
                saved = await self.capture_current_state()

        # Set before teardown so a session started during it picks the snapshot up
        self._downloads.reset()
        self._saved_state = saved
        await self.close()

        if clean_profile:
            if self._handle_task is not None:
                logger.warning("Skipping profile cleanup, a new session started during the restart")
            else:
                await self._clean_profile()

    # ═══════════════════════════════════════════════════════════════════════
    # Saved state
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def saved_state(self) -> SavedSessionState | None:
        return self._saved_state

    @saved_state.setter
    def saved_state(self, state: SavedSessionState | None) -> None:
        self._saved_state = state

    async def capture_current_state(self) -> SavedSessionState | None:
        """Snapshot the live session. None when there is no session or capture failed."""
        if self._handle_task is None:
            return None
        try:
            handle = await self.ensure_handle()
        except Exception as e:
            logger.debug(f"No session to capture: {e}")
            return None
        return await capture_state(self, handle.context)
