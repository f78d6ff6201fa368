"""Tool definitions, registry, argument validation and result helpers."""

from polychat.tools.base import Tool, ToolHandler
from polychat.tools.registry import ToolRegistry
from polychat.tools.results import build_tool_result, format_tool_error_json
from polychat.tools.validation import ToolValidator

__all__ = [
    "Tool",
    "ToolHandler",
    "ToolRegistry",
    "ToolValidator",
    "build_tool_result",
    "format_tool_error_json",
]
