"""
tabpilot - Session State Capture/Restore

A snapshot holds:
  - storage state (cookies + localStorage, IndexedDB when supported)
  - sessionStorage per origin
  - the ordered tabs (URL + sessionStorage) and which one was current

Capture is best-effort and never raises. Restore runs while a fresh
session handle is being set up, tolerates per-tab failures and always
consumes the pending snapshot.

Snapshot files are JSON with camelCase keys:
  {"storageState": ..., "sessionStorage": ..., "tabs": [...], "currentTabIndex": 0}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tabpilot.errors import best_effort, non_fatal

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Page

    from tabpilot.context import Context

logger = logging.getLogger("tabpilot.state")

BLANK_URL = "about:blank"

CAPTURE_SESSION_STORAGE_SCRIPT = """() => {
  let storage = '{}';
  try { storage = JSON.stringify(window.sessionStorage); } catch (e) {}
  return { origin: window.location.origin, storage };
}"""

RESTORE_SESSION_STORAGE_SCRIPT = """(storage) => {
  for (const [key, value] of Object.entries(storage))
    window.sessionStorage.setItem(key, value);
}"""


# ═══════════════════════════════════════════════════════════════════════════
# Snapshot model
# ═══════════════════════════════════════════════════════════════════════════


class _SnapshotModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SavedTab(_SnapshotModel):
    url: str = BLANK_URL
    session_storage: dict[str, str] = Field(default_factory=dict)


class SavedSessionState(_SnapshotModel):
    storage_state: dict[str, Any] | None = None
    session_storage: dict[str, dict[str, str]] = Field(default_factory=dict)
    tabs: list[SavedTab] = Field(default_factory=list)
    current_tab_index: int = 0


def save_snapshot(path: str | Path, state: SavedSessionState) -> Path:
    path = Path(path)
    path.write_text(state.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    return path


def load_snapshot(path: str | Path) -> SavedSessionState:
    return SavedSessionState.model_validate_json(Path(path).read_text(encoding="utf-8"))


# ═══════════════════════════════════════════════════════════════════════════
# Init scripts
# ═══════════════════════════════════════════════════════════════════════════


def session_storage_init_script(by_origin: dict[str, dict[str, str]]) -> str:
    """Init script replaying sessionStorage for whichever origin the page loads."""
    return f"""(() => {{
  const data = {json.dumps(by_origin)};
  try {{
    const entries = data[window.location.origin];
    if (!entries) return;
    for (const [key, value] of Object.entries(entries)) {{
      if (window.sessionStorage.getItem(key) === null)
        window.sessionStorage.setItem(key, value);
    }}
  }} catch (e) {{}}
}})();"""


def local_storage_init_script(origins: list[dict[str, Any]]) -> str:
    """Init script seeding localStorage from a Playwright storage state's ``origins``."""
    by_origin = {
        o["origin"]: {item["name"]: item["value"] for item in o.get("localStorage", [])}
        for o in origins
        if o.get("origin")
    }
    return f"""(() => {{
  const data = {json.dumps(by_origin)};
  try {{
    const entries = data[window.location.origin];
    if (!entries) return;
    for (const [key, value] of Object.entries(entries)) {{
      if (window.localStorage.getItem(key) === null)
        window.localStorage.setItem(key, value);
    }}
  }} catch (e) {{}}
}})();"""


async def apply_storage_state(browser_context: "BrowserContext", storage_state: dict[str, Any] | str) -> None:
    """
    Seed a context that could not take ``storage_state`` at creation time
    (persistent contexts): cookies directly, localStorage via init script.
    """
    if isinstance(storage_state, str):
        storage_state = json.loads(Path(storage_state).read_text(encoding="utf-8"))
    cookies = storage_state.get("cookies") or []
    if cookies:
        await browser_context.add_cookies(cookies)
    origins = storage_state.get("origins") or []
    if origins:
        await browser_context.add_init_script(script=local_storage_init_script(origins))


# ═══════════════════════════════════════════════════════════════════════════
# Capture
# ═══════════════════════════════════════════════════════════════════════════


async def capture_state(context: "Context", browser_context: "BrowserContext") -> SavedSessionState | None:
    """
    Snapshot storage and tab topology. Returns None instead of raising.
    """
    try:
        state = SavedSessionState()
        state.storage_state = await best_effort(
            "Reading storage state", browser_context.storage_state(indexed_db=True)
        )

        for index, tab in enumerate(context.tabs()):
            if tab is context.current_tab:
                state.current_tab_index = index
            try:
                data = await tab.page.evaluate(CAPTURE_SESSION_STORAGE_SCRIPT)
                entries = json.loads(data.get("storage") or "{}")
                state.tabs.append(SavedTab(url=tab.url, session_storage=entries))
                origin = data.get("origin")
                if origin and origin != "null" and entries:
                    state.session_storage.setdefault(origin, {}).update(entries)
            except Exception as e:
                logger.debug(f"Could not capture tab {index + 1}: {e}")
                state.tabs.append(SavedTab())

        logger.info(f"Captured session state with {len(state.tabs)} tab(s)")
        return state
    except Exception as e:
        logger.warning(f"Session state capture failed: {e}")
        return None


# ═══════════════════════════════════════════════════════════════════════════
# Restore
# ═══════════════════════════════════════════════════════════════════════════


async def _restore_page(page: "Page", saved: SavedTab) -> None:
    if saved.url == BLANK_URL:
        return
    await page.goto(saved.url)
    if saved.session_storage:
        await best_effort(
            f"Replaying sessionStorage for {saved.url}",
            page.evaluate(RESTORE_SESSION_STORAGE_SCRIPT, saved.session_storage),
        )


async def restore_state(context: "Context", browser_context: "BrowserContext", saved: SavedSessionState) -> None:
    """
    Replay ``saved`` into a freshly created context.

    Tabs that fail to open or navigate are skipped; the pending snapshot is
    discarded whatever happens.
    """
    try:
        if saved.session_storage:
            await best_effort(
                "Installing sessionStorage replay",
                browser_context.add_init_script(script=session_storage_init_script(saved.session_storage)),
            )

        if not saved.tabs:
            return

        first, *rest = saved.tabs
        with non_fatal(f"Restoring tab 1 ({first.url})"):
            pages = browser_context.pages
            page = pages[0] if pages else await browser_context.new_page()
            context.on_page_created(page)
            await _restore_page(page, first)

        for number, saved_tab in enumerate(rest, start=2):
            with non_fatal(f"Restoring tab {number} ({saved_tab.url})"):
                page = await browser_context.new_page()
                context.on_page_created(page)
                await _restore_page(page, saved_tab)

        index = saved.current_tab_index
        if 0 <= index < len(context.tabs()):
            with non_fatal(f"Selecting restored tab {index + 1}"):
                await context.select_tab(index + 1)

        logger.info(f"Restored {len(context.tabs())} tab(s)")
    finally:
        context.saved_state = None
