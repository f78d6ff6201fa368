"""The per-conversation chat handle."""

from __future__ import annotations

import logging
from dataclasses import replace

from polychat.conversation import ConversationState
from polychat.llm.providers.base import ProviderAdapter
from polychat.llm.types import ChatOptions, Message, TokenUsage, ToolDef, user_message
from polychat.orchestrator.core import DEFAULT_MAX_ROUNDS, Orchestrator
from polychat.tools.base import ToolHandler
from polychat.tools.registry import ToolRegistry


class Chat:
    """
    One conversation with one model.

    ``message()`` may be awaited by one task at a time; ``history()``,
    ``token_usage()`` and the tool methods are safe from other threads
    while a message streams.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        system_prompt: str = "",
        initial_messages: list[Message] | None = None,
        *,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        tool_timeout: float | None = None,
        defaults: ChatOptions | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._adapter = adapter
        self._state = ConversationState(system_prompt, initial_messages)
        self._registry = ToolRegistry()
        self._defaults = defaults or ChatOptions()
        self._log = logger or logging.getLogger(__name__)
        self._orchestrator = Orchestrator(
            adapter,
            self._state,
            self._registry,
            max_rounds=max_rounds,
            tool_timeout=tool_timeout,
            log=logger,
        )

    @property
    def adapter(self) -> ProviderAdapter:
        return self._adapter

    async def message(
        self, message: Message | str, options: ChatOptions | None = None
    ) -> Message:
        """
        Send *message* and return the final assistant reply.

        Tool calls requested by the model are executed between rounds.  On
        error the history is left unchanged.
        """
        if isinstance(message, str):
            message = user_message(message)
        if options is None:
            options = replace(self._defaults)
        else:
            options = options.with_defaults(self._defaults)
        self._log.debug(
            "message: provider=%s model=%s", self._adapter.name, self._adapter.model
        )
        return await self._orchestrator.run(message, options)

    def history(self) -> tuple[str, list[Message]]:
        return self._state.history()

    def token_usage(self) -> TokenUsage:
        return self._state.token_usage()

    def max_tokens(self) -> int:
        return self._adapter.max_output_tokens

    def register_tool(self, definition: ToolDef, handler: ToolHandler) -> None:
        self._registry.register(definition, handler)

    def deregister_tool(self, name: str) -> None:
        self._registry.deregister(name)

    def list_tools(self) -> list[str]:
        return self._registry.list()
