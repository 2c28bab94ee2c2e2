"""
tabpilot - Test Configuration

Shared fixtures for all tests. The browser engine is replaced by small
in-memory fakes with the same event surface as Playwright's async API
(pyee-style on/remove_listener, listeners called synchronously on emit).
"""

import asyncio
import json
from types import SimpleNamespace
from urllib.parse import urlparse

import pytest
from unittest.mock import AsyncMock

from tabpilot.context import IN_PAGE_WAIT_SCRIPT
from tabpilot.state import CAPTURE_SESSION_STORAGE_SCRIPT, RESTORE_SESSION_STORAGE_SCRIPT

# ═══════════════════════════════════════════════════════════════════════════
# Fake engine objects
# ═══════════════════════════════════════════════════════════════════════════


class FakeEmitter:
    def __init__(self):
        self._listeners: dict[str, list] = {}

    def on(self, event, listener):
        self._listeners.setdefault(event, []).append(listener)

    def remove_listener(self, event, listener):
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event, *args):
        for listener in list(self._listeners.get(event, [])):
            listener(*args)

    def listener_count(self, event=None) -> int:
        if event is None:
            return sum(len(v) for v in self._listeners.values())
        return len(self._listeners.get(event, []))


class FakeFrame:
    def __init__(self, parent_frame=None):
        self.parent_frame = parent_frame


class FakeLocator:
    def __init__(self, page):
        self._page = page

    async def aria_snapshot(self):
        return f"- document: {self._page.url}"


class FakePage(FakeEmitter):
    def __init__(self, browser_context=None, url="about:blank", title=""):
        super().__init__()
        self.browser_context = browser_context
        self.url = url
        self._title = title
        self._closed = False
        self.session_storage: dict[str, str] = {}
        self.main_frame = FakeFrame()
        self.viewport = None
        self.brought_to_front = 0
        self.go_back = AsyncMock()
        self.go_forward = AsyncMock()
        self.fail_evaluate = False

    def is_closed(self):
        return self._closed

    async def title(self):
        return self._title

    async def goto(self, url, wait_until=None):
        self.url = url
        self._title = f"Title of {url}"
        return None

    async def wait_for_load_state(self, state="load", timeout=None):
        return None

    async def bring_to_front(self):
        self.brought_to_front += 1

    async def set_viewport_size(self, size):
        self.viewport = size

    def locator(self, selector):
        return FakeLocator(self)

    async def evaluate(self, script, arg=None):
        if self.fail_evaluate:
            raise RuntimeError("Execution context was destroyed")
        if script == IN_PAGE_WAIT_SCRIPT:
            await asyncio.sleep(arg / 1000)
            return None
        if script == CAPTURE_SESSION_STORAGE_SCRIPT:
            parsed = urlparse(self.url)
            origin = f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else "null"
            return {"origin": origin, "storage": json.dumps(self.session_storage)}
        if script == RESTORE_SESSION_STORAGE_SCRIPT:
            self.session_storage.update(arg)
            return None
        return None

    async def close(self):
        if self._closed:
            return
        self._closed = True
        if self.browser_context is not None and self in self.browser_context.pages:
            self.browser_context.pages.remove(self)
        self.emit("close", self)


class FakeTracing:
    def __init__(self):
        self.start = AsyncMock()
        self.stop = AsyncMock()


class FakeBrowserContext(FakeEmitter):
    def __init__(self, storage_state=None):
        super().__init__()
        self.pages: list[FakePage] = []
        self.closed = False
        self.routes: list[tuple] = []
        self.init_scripts: list[str] = []
        self.cookies: list[dict] = []
        self.tracing = FakeTracing()
        self.created_with_storage_state = storage_state
        self.storage = {"cookies": [{"name": "sid", "value": "42", "domain": "example.com", "path": "/"}], "origins": []}

    async def new_page(self):
        page = FakePage(self)
        self.pages.append(page)
        self.emit("page", page)
        return page

    def open_page_externally(self, url="about:blank"):
        """A page opened by the site itself (window.open, target=_blank)."""
        page = FakePage(self, url=url)
        self.pages.append(page)
        self.emit("page", page)
        return page

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))

    async def storage_state(self, indexed_db=False):
        return self.storage

    async def add_init_script(self, script=None):
        self.init_scripts.append(script)

    async def add_cookies(self, cookies):
        self.cookies.extend(cookies)

    async def close(self):
        self.closed = True
        for page in list(self.pages):
            await page.close()


class FakeDialog:
    def __init__(self, type="alert", message="Hello"):
        self.type = type
        self.message = message
        self.accept = AsyncMock()
        self.dismiss = AsyncMock()


class FakeDownload:
    def __init__(self, suggested_filename="report.pdf", data=b"%PDF-1.7"):
        self.suggested_filename = suggested_filename
        self._data = data

    async def save_as(self, path):
        with open(path, "wb") as f:
            f.write(self._data)


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def config(tmp_path):
    """Isolated session with short quiescence timings."""
    from tabpilot.config import resolve_config
    return resolve_config({
        "browser": {"isolated": True},
        "output_dir": str(tmp_path / "output"),
        "timeouts": {"network_settle_ms": 500, "quiescence_delay_ms": 5},
    })


class FakeEngine:
    """Stands in for create_session_handle; one fresh browser context per call."""

    def __init__(self):
        self.contexts: list[FakeBrowserContext] = []
        self.storage_states: list = []
        self.failures: list[Exception] = []
        self.gate: asyncio.Event | None = None

    @property
    def calls(self) -> int:
        return len(self.storage_states)

    @property
    def current(self) -> FakeBrowserContext:
        return self.contexts[-1]

    async def create(self, config, storage_state=None):
        from tabpilot.engine import SessionHandle

        self.storage_states.append(storage_state)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        browser_context = FakeBrowserContext(storage_state)
        self.contexts.append(browser_context)
        return SessionHandle(context=browser_context)


@pytest.fixture
def engine(monkeypatch):
    fake = FakeEngine()
    monkeypatch.setattr("tabpilot.context.create_session_handle", fake.create)
    return fake


@pytest.fixture
def context(config, engine):
    """Fresh coordinator wired to the fake engine."""
    from tabpilot.context import Context
    from tabpilot.tools import all_tools
    return Context(all_tools(), config)


@pytest.fixture
def registry():
    from tabpilot.tools import create_tool_registry
    return create_tool_registry()


async def _drain(context):
    """Let background work (downloads, teardown after the last tab) finish."""
    for _ in range(3):
        await asyncio.sleep(0)
    pending = list(context._background)
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


@pytest.fixture
def drain():
    return _drain


@pytest.fixture
def fakes():
    """Fake engine classes, for tests that build their own pages and events."""
    return SimpleNamespace(
        Page=FakePage,
        BrowserContext=FakeBrowserContext,
        Frame=FakeFrame,
        Dialog=FakeDialog,
        Download=FakeDownload,
    )
