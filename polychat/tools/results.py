"""Tool-result construction and error serialization."""

from __future__ import annotations

import json

from polychat.llm.types import ToolResult


def format_tool_error_json(message: str) -> str:
    """Render a tool failure as the canonical ``{"error": ...}`` payload."""
    if not message:
        return "{}"
    return json.dumps({"error": message})


def parse_tool_error_json(content: str) -> str | None:
    """Return the message inside an ``{"error": ...}`` payload, else None."""
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        return None
    if isinstance(data, dict) and set(data) == {"error"} and isinstance(data["error"], str):
        return data["error"]
    return None


def build_tool_result(
    name: str, call_id: str, raw: str = "", error: str = ""
) -> ToolResult:
    if error:
        return ToolResult(tool_call_id=call_id, name=name, content="", error=error)
    return ToolResult(tool_call_id=call_id, name=name, content=raw)


def wire_content(result: ToolResult) -> str:
    """The string a provider receives for *result*; never empty."""
    if result.error:
        return format_tool_error_json(result.error)
    return result.content or "{}"
