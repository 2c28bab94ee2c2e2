"""
tabpilot - Network Quiescence Waiter

Runs an action, then holds the tool response until the page settles:
- every request seen during the action has finished (or failed), or
- a top-level navigation happened and its load event fired, or
- the settle timeout elapsed (proceed anyway, never an error)

followed by one short delay for trailing script timers.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar, TYPE_CHECKING

from tabpilot.events import EventBinding
from tabpilot.logging_config import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Frame, Request

    from tabpilot.context import Context
    from tabpilot.tab import Tab

logger = get_logger("waiter")

T = TypeVar("T")


async def wait_for_completion(context: "Context", tab: "Tab", callback: Callable[[], Awaitable[T]]) -> T:
    """
    Run ``callback`` and wait for network quiescence on ``tab``.

    Listeners are always detached on exit, so a later call never sees
    requests counted by an earlier one.
    """
    loop = asyncio.get_running_loop()
    timeouts = context.config.timeouts
    requests: set["Request"] = set()
    frame_navigated = False
    barrier: asyncio.Future[None] = loop.create_future()
    load_task: asyncio.Task | None = None
    binding = EventBinding(tab.page)

    def release() -> None:
        if not barrier.done():
            barrier.set_result(None)

    def dispose() -> None:
        binding.detach()
        timer.cancel()

    def on_request(request: "Request") -> None:
        requests.add(request)

    def on_request_done(request: "Request") -> None:
        requests.discard(request)
        if not requests:
            release()

    def on_frame_navigated(frame: "Frame") -> None:
        nonlocal frame_navigated, load_task
        if frame.parent_frame is not None:
            return
        frame_navigated = True
        dispose()
        load_task = asyncio.ensure_future(tab.wait_for_load_state("load"))
        load_task.add_done_callback(on_loaded)

    def on_loaded(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Waiting for load after navigation failed: {task.exception()}")
        release()

    def on_timeout() -> None:
        logger.debug(f"Network did not settle within {timeouts.network_settle_ms}ms, proceeding")
        dispose()
        release()

    binding.on("request", on_request)
    binding.on("requestfinished", on_request_done)
    binding.on("requestfailed", on_request_done)
    binding.on("framenavigated", on_frame_navigated)
    timer = loop.call_later(timeouts.network_settle_ms / 1000, on_timeout)

    try:
        result = await callback()
        if context.is_script_blocked():
            # A dialog pre-empted the action; nothing will settle until it is handled
            return result
        if not requests and not frame_navigated:
            release()
        await barrier
        await context.wait_for_timeout(timeouts.quiescence_delay_ms)
        return result
    finally:
        dispose()
        if load_task is not None and not load_task.done():
            load_task.cancel()
