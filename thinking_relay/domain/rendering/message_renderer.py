"""
Renders accumulated thinking state into the HTML subset understood by the
messaging transport: bold heading, <code> tool names, one <blockquote>.
"""

from typing import List, Mapping, Optional

from thinking_relay.domain.models.display_config import ToolDisplayConfig
from thinking_relay.domain.models.thinking_state import CompletedToolEntry, ToolEntry
from .tool_args import ELLIPSIS, escape_html, extract_tool_args


MAX_MESSAGE_LENGTH = 4096
THINKING_LENGTH_RESERVE = 200
COMPLETED_TOOLS_SHOWN = 10

THINKING_HEADING = "🧠 <b>Thinking</b>"
THINKING_PLACEHOLDER = "🧠 <b>Thinking…</b>"

ICON_SUCCESS = "✅"
ICON_FAILURE = "❌"
ICON_RUNNING = "⏳"


def _tool_line(icon: str, entry: ToolEntry, tool_display: ToolDisplayConfig) -> str:
    arg_str = ""
    if tool_display.show_args:
        arg_str = extract_tool_args(
            entry.name,
            entry.args,
            tool_display.max_args_length,
            tool_display.arg_keys
        )

    line = f"{icon} <code>{escape_html(entry.name)}</code>"
    if arg_str:
        line += f" {escape_html(arg_str)}"
    return line


def _tail(text: str, limit: int) -> str:
    """Keep the most recent part of the thinking text"""
    if len(text) <= limit:
        return text
    return ELLIPSIS + (text[-limit:] if limit > 0 else "")


def render_message(
    thinking_text: Optional[str],
    active_tools: Mapping[str, ToolEntry],
    completed_tools: List[CompletedToolEntry],
    tool_display: ToolDisplayConfig,
    max_length: int
) -> str:
    """Build the full message text for the current state"""

    parts: List[str] = []

    if thinking_text:
        parts.append(THINKING_HEADING)
        parts.append("")
        trimmed = _tail(thinking_text, max_length - THINKING_LENGTH_RESERVE)
        parts.append(f"<blockquote>{escape_html(trimmed)}</blockquote>")

    if tool_display.enabled and (active_tools or completed_tools):
        if parts:
            parts.append("")

        for completed in completed_tools[-COMPLETED_TOOLS_SHOWN:]:
            icon = ICON_FAILURE if completed.failed else ICON_SUCCESS
            parts.append(_tool_line(icon, completed, tool_display))

        # Active tools keep their start order
        for entry in active_tools.values():
            parts.append(_tool_line(ICON_RUNNING, entry, tool_display))

    if not parts:
        parts.append(THINKING_PLACEHOLDER)

    result = "\n".join(parts)
    if len(result) > MAX_MESSAGE_LENGTH:
        return result[:MAX_MESSAGE_LENGTH - 3] + ELLIPSIS
    return result


def render_collapse_summary(completed_count: int) -> str:
    """Default text for a collapsed thinking message"""
    suffix = "s" if completed_count != 1 else ""
    return f"🧠 <b>Thinking complete</b> — {completed_count} tool{suffix} used"
