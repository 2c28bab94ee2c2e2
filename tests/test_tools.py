"""
Tests for the tool catalogue and the registry's guarded dispatch.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from tabpilot.state import SavedSessionState, SavedTab, save_snapshot
from tabpilot.tools import ToolRegistry, all_tools
from tabpilot.tools.wait import WaitParams, wait_for


EXPECTED_TOOLS = [
    "browser_navigate",
    "browser_navigate_back",
    "browser_navigate_forward",
    "browser_tab_list",
    "browser_tab_new",
    "browser_tab_select",
    "browser_tab_close",
    "browser_handle_dialog",
    "browser_wait_for",
    "browser_close",
    "browser_restart",
    "browser_resize",
    "browser_save_state",
    "browser_load_state",
]


# ═══════════════════════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════════════════════


class TestRegistry:
    def test_catalogue(self, registry):
        assert [tool.name for tool in registry] == EXPECTED_TOOLS
        assert len(registry) == len(EXPECTED_TOOLS)

    def test_only_dialog_tool_clears_modal_state(self):
        clearing = [t.name for t in all_tools() if t.clears_modal_state]
        assert clearing == ["browser_handle_dialog"]

    def test_tools_not_requiring_a_tab(self):
        names = {t.name for t in all_tools() if not t.requires_tab}
        assert names == {"browser_close", "browser_restart", "browser_save_state", "browser_load_state"}

    def test_duplicate_registration_rejected(self, registry):
        with pytest.raises(ValueError, match="already registered"):
            registry.register(registry.get("browser_close"))

    def test_input_schema(self, registry):
        schema = registry.get("browser_handle_dialog").input_schema()
        assert schema["required"] == ["accept"]
        assert "prompt_text" in schema["properties"]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, context, registry):
        response = await registry.call(context, "browser_teleport", {})
        assert response.is_error
        assert response.text() == "### Error\nUnknown tool: browser_teleport"

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, context, registry):
        response = await registry.call(context, "browser_navigate", {"url": "https://example.com", "bogus": 1})
        assert response.is_error
        assert "Invalid arguments for browser_navigate" in response.text()

    @pytest.mark.asyncio
    async def test_failures_become_error_responses(self, context, registry):
        response = await registry.call(context, "browser_navigate_back", {})
        assert response.is_error
        assert response.text().startswith("### Error\nNo current snapshot available.")

    @pytest.mark.asyncio
    async def test_empty_registry(self, context):
        assert len(ToolRegistry()) == 0
        response = await ToolRegistry().call(context, "browser_close")
        assert response.is_error


# ═══════════════════════════════════════════════════════════════════════════
# Modal-state gate
# ═══════════════════════════════════════════════════════════════════════════


class TestModalGate:
    @pytest.mark.asyncio
    async def test_dialog_tool_needs_a_dialog(self, context, registry):
        await context.ensure_tab()
        response = await registry.call(context, "browser_handle_dialog", {"accept": True})
        assert response.is_error
        assert 'The tool "browser_handle_dialog" can only be used when there is related modal state present.' in response.text()

    @pytest.mark.asyncio
    async def test_other_tools_blocked_by_dialog(self, context, registry, fakes):
        tab = await context.ensure_tab()
        tab.page.emit("dialog", fakes.Dialog("alert", "Hi"))

        response = await registry.call(context, "browser_navigate", {"url": "https://example.com"})
        text = response.text()
        assert response.is_error
        assert 'Tool "browser_navigate" does not handle the modal state.' in text
        assert '- ["alert" dialog with message "Hi"]: can be handled by the "browser_handle_dialog" tool' in text
        assert tab.url == "about:blank"

    @pytest.mark.asyncio
    async def test_dismiss(self, context, registry, fakes):
        tab = await context.ensure_tab()
        dialog = fakes.Dialog("confirm", "Leave?")
        tab.page.emit("dialog", dialog)

        response = await registry.call(context, "browser_handle_dialog", {"accept": False})
        dialog.dismiss.assert_awaited_once()
        dialog.accept.assert_not_awaited()
        assert '// <internal code to handle "confirm" dialog>' in response.text()
        assert not context.is_script_blocked()


# ═══════════════════════════════════════════════════════════════════════════
# Navigation & tabs
# ═══════════════════════════════════════════════════════════════════════════


class TestNavigation:
    @pytest.mark.asyncio
    async def test_navigate_opens_tab(self, context, registry):
        response = await registry.call(context, "browser_navigate", {"url": "https://example.com/"})
        text = response.text()
        assert "await page.goto('https://example.com/');" in text
        assert "- Page URL: https://example.com/" in text
        assert "- Page Title: Title of https://example.com/" in text
        assert "- Page Snapshot:" in text

    @pytest.mark.asyncio
    async def test_back_and_forward(self, context, registry):
        tab = await context.ensure_tab()
        await registry.call(context, "browser_navigate_back", {})
        await registry.call(context, "browser_navigate_forward", {})
        tab.page.go_back.assert_awaited_once()
        tab.page.go_forward.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_resize(self, context, registry):
        tab = await context.ensure_tab()
        response = await registry.call(context, "browser_resize", {"width": 800, "height": 600})
        assert tab.page.viewport == {"width": 800, "height": 600}
        assert "await page.setViewportSize({ width: 800, height: 600 });" in response.text()

    @pytest.mark.asyncio
    async def test_wait_is_capped(self, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr(asyncio, "sleep", sleep)
        result = await wait_for.handle(None, WaitParams(time=120))
        sleep.assert_awaited_once_with(30)
        assert result.code == ["// Waited for 120.0 seconds"]


class TestTabs:
    @pytest.mark.asyncio
    async def test_list_returns_listing_only(self, context, registry):
        response = await registry.call(context, "browser_tab_list", {})
        assert response.text() == "### Open tabs\n- 1: (current) [] (about:blank)"

    @pytest.mark.asyncio
    async def test_select_out_of_range(self, context, registry):
        await context.ensure_tab()
        response = await registry.call(context, "browser_tab_select", {"index": 3})
        assert response.is_error
        assert response.text() == "### Error\nTab 3 not found, there are 1 open tab(s)"

    @pytest.mark.asyncio
    async def test_select(self, context, registry):
        first = await context.ensure_tab()
        await context.new_tab()
        response = await registry.call(context, "browser_tab_select", {"index": 1})
        assert context.current_tab is first
        assert "// <internal code to select tab 1>" in response.text()

    @pytest.mark.asyncio
    async def test_close_by_index(self, context, registry):
        first = await context.ensure_tab()
        await context.new_tab()
        response = await registry.call(context, "browser_tab_close", {"index": 2})
        assert context.tabs() == [first]
        assert "// <internal code to close tab 2>" in response.text()

    @pytest.mark.asyncio
    async def test_close_index_zero_rejected(self, context, registry):
        await context.ensure_tab()
        response = await registry.call(context, "browser_tab_close", {"index": 0})
        assert response.is_error
        assert len(context.tabs()) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Session lifecycle tools
# ═══════════════════════════════════════════════════════════════════════════


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_restart(self, context, registry, engine):
        tab = await context.ensure_tab()
        await tab.navigate("https://example.com/")

        response = await registry.call(context, "browser_restart", {})
        assert "// Restarted browser with preserved session state and reset all internal state" in response.text()
        assert context.saved_state.tabs[0].url == "https://example.com/"

    @pytest.mark.asyncio
    async def test_restart_clean(self, context, registry):
        await context.ensure_tab()
        response = await registry.call(context, "browser_restart", {"clean_profile": True, "preserve_state": False})
        assert "// Restarted browser and cleaned profile directory with clean state" in response.text()
        assert context.saved_state is None

    @pytest.mark.asyncio
    async def test_restart_failure_reported_in_comment(self, context, registry, monkeypatch):
        monkeypatch.setattr(context, "reset_browser_context", AsyncMock(side_effect=RuntimeError("driver gone")))
        response = await registry.call(context, "browser_restart", {})
        assert not response.is_error
        assert "// Error restarting browser: driver gone" in response.text()

    @pytest.mark.asyncio
    async def test_save_state(self, context, registry, tmp_path):
        tab = await context.ensure_tab()
        await tab.navigate("https://example.com/")
        path = tmp_path / "session.json"

        response = await registry.call(context, "browser_save_state", {"filename": str(path)})
        assert f"// Saved browser state to {path}" in response.text()
        data = json.loads(path.read_text())
        assert data["tabs"] == [{"url": "https://example.com/", "sessionStorage": {}}]
        assert data["currentTabIndex"] == 0

    @pytest.mark.asyncio
    async def test_save_state_without_session(self, context, registry):
        response = await registry.call(context, "browser_save_state", {})
        assert "// No browser context available to save state from" in response.text()

    @pytest.mark.asyncio
    async def test_load_state_missing_file(self, context, registry, tmp_path):
        missing = tmp_path / "nope.json"
        response = await registry.call(context, "browser_load_state", {"filename": str(missing)})
        assert f"// State file '{missing}' not found" in response.text()

    @pytest.mark.asyncio
    async def test_load_state_without_restart(self, context, registry, tmp_path):
        path = save_snapshot(tmp_path / "s.json", SavedSessionState(tabs=[SavedTab(url="https://example.com/")]))
        response = await registry.call(context, "browser_load_state", {"filename": str(path), "restart": False})
        assert "Use browser_restart to apply it." in response.text()
        assert context.saved_state.tabs[0].url == "https://example.com/"

    @pytest.mark.asyncio
    async def test_loaded_state_survives_restart_without_session(self, context, registry, tmp_path):
        path = save_snapshot(tmp_path / "s.json", SavedSessionState(tabs=[SavedTab(url="https://example.com/")]))
        await registry.call(context, "browser_load_state", {"filename": str(path), "restart": False})

        await registry.call(context, "browser_restart", {})
        listing = (await registry.call(context, "browser_tab_list", {})).text()
        assert "(https://example.com/)" in listing

    @pytest.mark.asyncio
    async def test_load_state_applied_on_next_session(self, context, registry, engine, tmp_path):
        await context.ensure_tab()
        path = save_snapshot(tmp_path / "s.json", SavedSessionState(
            storage_state={"cookies": [], "origins": []},
            tabs=[SavedTab(url="https://example.com/"), SavedTab(url="https://example.org/")],
            current_tab_index=1,
        ))

        response = await registry.call(context, "browser_load_state", {"filename": str(path)})
        assert f"// Loaded and applied browser state from {path}" in response.text()
        assert not context.has_handle

        listing = (await registry.call(context, "browser_tab_list", {})).text()
        assert listing.splitlines() == [
            "### Open tabs",
            "- 1: [Title of https://example.com/] (https://example.com/)",
            "- 2: (current) [Title of https://example.org/] (https://example.org/)",
        ]
        assert engine.storage_states[-1] == {"cookies": [], "origins": []}

    @pytest.mark.asyncio
    async def test_load_state_bad_file(self, context, registry, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        response = await registry.call(context, "browser_load_state", {"filename": str(path)})
        assert "// Error loading browser state:" in response.text()

    @pytest.mark.asyncio
    async def test_close(self, context, registry, engine):
        await context.ensure_tab()
        browser_context = engine.current
        response = await registry.call(context, "browser_close", {})
        assert browser_context.closed
        assert not context.has_handle
        assert "await page.close()" in response.text()
