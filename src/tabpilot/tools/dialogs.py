"""
tabpilot - Dialog handling

The only tool allowed to run while a dialog blocks the page.
"""

from __future__ import annotations

from pydantic import Field

from tabpilot.errors import ToolError
from tabpilot.tools.base import Tool, ToolParams, ToolResult


class HandleDialogParams(ToolParams):
    accept: bool = Field(description="Whether to accept the dialog.")
    prompt_text: str | None = Field(
        default=None,
        description="The text of the prompt in case of a prompt dialog.",
    )


async def _handle_dialog(context, params: HandleDialogParams) -> ToolResult:
    state = next((s for s in context.modal_states() if s.kind == "dialog"), None)
    if state is None:
        raise ToolError("No dialog visible")

    # Cleared before answering so a follow-up dialog is not swallowed
    context.clear_modal_state(state)
    if params.accept:
        await state.dialog.accept(params.prompt_text)
    else:
        await state.dialog.dismiss()

    return ToolResult(
        code=[f'// <internal code to handle "{state.dialog.type}" dialog>'],
        capture_snapshot=True,
        wait_for_network=False,
    )


handle_dialog = Tool(
    name="browser_handle_dialog",
    title="Handle a dialog",
    description="Handle a dialog",
    params=HandleDialogParams,
    handle=_handle_dialog,
    clears_modal_state="dialog",
)


TOOLS = [handle_dialog]
