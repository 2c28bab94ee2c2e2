"""
Tests for MCP Server - server creation, tool registration and dispatch.

Tests the MCP integration layer WITHOUT starting a transport.
Validates that create_mcp_server() wires every browser tool to one Context.
"""

import pytest
from mcp.server.fastmcp import FastMCP

from tabpilot.context import Context

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
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def mcp_server(config, engine):
    """MCP server over the fake engine."""
    from tabpilot.mcp_server import create_mcp_server
    return create_mcp_server(config)


def _tool(mcp_server, name):
    return mcp_server._tool_manager._tools[name]


# ═══════════════════════════════════════════════════════════════════════════
# Server Creation
# ═══════════════════════════════════════════════════════════════════════════


class TestMCPServerCreation:
    def test_creates_fastmcp_instance(self, mcp_server):
        assert isinstance(mcp_server, FastMCP)

    def test_server_name(self, mcp_server):
        assert mcp_server.name == "tabpilot"

    def test_version_exists(self):
        from tabpilot import __version__
        assert __version__ == "1.0.0"

    def test_owns_one_context(self, mcp_server):
        assert isinstance(mcp_server.browser_context, Context)
        assert [t.name for t in mcp_server.browser_context.tools] == EXPECTED_TOOLS


# ═══════════════════════════════════════════════════════════════════════════
# Tool Registration
# ═══════════════════════════════════════════════════════════════════════════


class TestMCPToolRegistration:
    def test_tool_count(self, mcp_server):
        tools = mcp_server._tool_manager._tools
        assert len(tools) == len(EXPECTED_TOOLS), f"Got {list(tools.keys())}"

    @pytest.mark.parametrize("tool_name", EXPECTED_TOOLS)
    def test_tool_registered(self, mcp_server, tool_name):
        tools = mcp_server._tool_manager._tools
        assert tool_name in tools, f"Tool '{tool_name}' not registered. Available: {list(tools.keys())}"

    @pytest.mark.parametrize("tool_name", EXPECTED_TOOLS)
    def test_tool_has_description(self, mcp_server, tool_name):
        assert _tool(mcp_server, tool_name).description

    def test_navigate_requires_url(self, mcp_server):
        schema = _tool(mcp_server, "browser_navigate").parameters
        assert "url" in schema["properties"]
        assert schema["required"] == ["url"]

    def test_handle_dialog_parameters(self, mcp_server):
        props = _tool(mcp_server, "browser_handle_dialog").parameters["properties"]
        assert set(props) == {"accept", "prompt_text"}

    def test_restart_parameters_optional(self, mcp_server):
        schema = _tool(mcp_server, "browser_restart").parameters
        assert set(schema["properties"]) == {"clean_profile", "preserve_state"}
        assert not schema.get("required")

    def test_read_only_hints(self, mcp_server):
        assert _tool(mcp_server, "browser_tab_list").annotations.readOnlyHint is True
        assert _tool(mcp_server, "browser_navigate").annotations.readOnlyHint is False
        assert _tool(mcp_server, "browser_tab_close").annotations.destructiveHint is True


# ═══════════════════════════════════════════════════════════════════════════
# Dispatch
# ═══════════════════════════════════════════════════════════════════════════


class TestMCPDispatch:
    @pytest.mark.asyncio
    async def test_navigate_through_server(self, mcp_server, engine):
        text = await _tool(mcp_server, "browser_navigate").fn(url="https://example.com/")
        assert "- Page URL: https://example.com/" in text
        assert engine.calls == 1

    @pytest.mark.asyncio
    async def test_optional_arguments_use_tool_defaults(self, mcp_server):
        text = await _tool(mcp_server, "browser_tab_new").fn()
        assert "// <internal code to open a new tab>" in text

    @pytest.mark.asyncio
    async def test_errors_returned_as_text(self, mcp_server):
        text = await _tool(mcp_server, "browser_tab_select").fn(index=4)
        assert text.startswith("### Error\nTab 4 not found")

    @pytest.mark.asyncio
    async def test_lifespan_closes_session(self, mcp_server, engine):
        async with mcp_server.settings.lifespan(mcp_server):
            await _tool(mcp_server, "browser_tab_new").fn()
            assert mcp_server.browser_context.has_handle
        assert not mcp_server.browser_context.has_handle
        assert engine.current.closed
