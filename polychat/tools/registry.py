from __future__ import annotations

import logging
import threading

from polychat.llm.errors import ToolNotFoundError
from polychat.llm.types import ToolDef
from polychat.tools.base import Tool, ToolHandler

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Insertion-ordered, thread-safe set of tools.

    Re-registering a name replaces its handler in place; iteration order is
    the order names were first registered.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}
        self._lock = threading.Lock()

    def register(self, definition: ToolDef | Tool, handler: ToolHandler | None = None) -> None:
        if isinstance(definition, Tool):
            tool = definition
        else:
            if handler is None:
                raise ValueError(f"No handler given for tool: {definition.name}")
            tool = Tool(definition=definition, handler=handler)
        if not tool.name:
            raise ValueError("Tool name must not be empty")
        with self._lock:
            replaced = tool.name in self._tools
            self._tools[tool.name] = tool
        logger.debug("%s tool %s", "Replaced" if replaced else "Registered", tool.name)

    def deregister(self, name: str) -> None:
        with self._lock:
            self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        with self._lock:
            return self._tools.get(name)

    def require(self, name: str) -> Tool:
        t = self.get(name)
        if not t:
            raise ToolNotFoundError(name)
        return t

    def list(self) -> list[str]:
        with self._lock:
            return list(self._tools)

    def definitions(self) -> list[ToolDef]:
        with self._lock:
            return [t.definition for t in self._tools.values()]

    def count(self) -> int:
        with self._lock:
            return len(self._tools)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    async def execute(self, name: str, arguments: str) -> str:
        """Run the named tool.  Raises ``ToolNotFoundError`` for unknown names."""
        return await self.require(name).execute(arguments)
