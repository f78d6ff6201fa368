"""
Orchestrator core -- the round loop shared by every provider family.

The orchestrator:
1. Snapshots conversation state (no lock held afterwards)
2. Renders history + pending messages through the provider adapter
3. Streams the response through a StreamNormalizer
4. Executes finalized tool calls sequentially, in finalization order
5. Re-issues follow-up requests until a round carries no tool calls
6. Commits the whole exchange to conversation state on success only
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing

from polychat.conversation import ConversationState
from polychat.llm.errors import (
    RoundLimitExceeded,
    ToolNotFoundError,
    TransportError,
    UnsupportedParameterError,
)
from polychat.llm.normalizer import RoundResult, StreamNormalizer, emit
from polychat.llm.providers.base import ProviderAdapter
from polychat.llm.types import (
    ChatOptions,
    Message,
    Role,
    StreamEvent,
    StreamEventType,
    TokenUsageDetails,
    ToolCall,
    ToolResult,
)
from polychat.tools.registry import ToolRegistry
from polychat.tools.results import build_tool_result
from polychat.tools.validation import ToolValidator

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 10


class Orchestrator:
    """
    Drives one ``Chat.message`` exchange.

    Parameters
    ----------
    adapter : ProviderAdapter
        Provider family strategy.
    state : ConversationState
        Conversation the exchange is committed to.
    registry : ToolRegistry
        Registered tools.
    max_rounds : int
        Max streaming rounds per exchange.  A model still requesting tools
        on the last round raises ``RoundLimitExceeded``.
    tool_timeout : float | None
        Max seconds for a single tool execution; ``None`` for no limit.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        state: ConversationState,
        registry: ToolRegistry,
        *,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        tool_timeout: float | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.adapter = adapter
        self.state = state
        self.registry = registry
        self.max_rounds = max_rounds
        self.tool_timeout = tool_timeout
        self._log = log or logger

    async def run(self, message: Message, options: ChatOptions | None = None) -> Message:
        """
        Send *message* and return the final assistant message.

        On any raised error the conversation state is left exactly as it
        was before the call.
        """
        options = options or ChatOptions()
        system_prompt, history = self.state.snapshot()
        pending: list[Message] = [message]
        usage = TokenUsageDetails()
        reminder = ""

        for round_no in range(1, self.max_rounds + 1):
            result, options = await self._stream_round(
                system_prompt, history + pending, options, reminder
            )
            usage = usage + result.usage
            assistant = result.to_message()

            if not result.tool_calls:
                if assistant.is_empty():
                    raise TransportError("provider returned an empty response")
                pending.append(assistant)
                self.state.append(pending, usage)
                await emit(
                    options.on_event,
                    StreamEvent(
                        type=StreamEventType.DONE,
                        finish_reason=result.finish_reason,
                    ),
                )
                return assistant

            if round_no == self.max_rounds:
                break

            self._log.debug(
                "round %d requested %d tool call(s)", round_no, len(result.tool_calls)
            )
            pending.append(assistant)
            tool_message = Message(role=Role.TOOL)
            for call in result.tool_calls:
                tool_result = await self._execute_tool_call(call, options)
                tool_message.add_tool_result(tool_result)
                await emit(
                    options.on_event,
                    StreamEvent(
                        type=StreamEventType.TOOL_RESULT, tool_results=[tool_result]
                    ),
                )
            pending.append(tool_message)

            reminder = ""
            if options.system_reminder is not None:
                reminder = options.system_reminder() or ""

        raise RoundLimitExceeded(self.max_rounds)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _stream_round(
        self,
        system_prompt: str,
        messages: list[Message],
        options: ChatOptions,
        reminder: str,
    ) -> tuple[RoundResult, ChatOptions]:
        """
        Run one streaming round, retrying once without temperature if the
        model rejects it.  Returns the round and the options it ran with.
        """
        tools = self.registry.definitions()
        retried = False
        while True:
            request = self.adapter.build_request(
                system_prompt, messages, tools, options, reminder
            )
            normalizer = StreamNormalizer(options.on_event, self._log)
            try:
                return await self._consume(request, normalizer), options
            except UnsupportedParameterError as exc:
                if (
                    retried
                    or normalizer.events_seen
                    or exc.parameter != "temperature"
                    or options.temperature is None
                ):
                    raise
                self._log.warning(
                    "Model %s rejected temperature; retrying without it",
                    self.adapter.model,
                )
                options = options.without("temperature")
                retried = True

    async def _consume(self, request, normalizer: StreamNormalizer) -> RoundResult:
        decoder = self.adapter.new_decoder()
        async with aclosing(self.adapter.open_stream(request)) as events:
            async for raw in events:
                chunk = decoder.classify(raw)
                if chunk is None:
                    continue
                await normalizer.feed(chunk)
                if chunk.done:
                    break
        return await normalizer.finish()

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_tool_call(
        self, tool_call: ToolCall, options: ChatOptions
    ) -> ToolResult:
        """
        Execute a single tool call.  Never raises for tool failures.

        Steps:
        1. Registry lookup
        2. Validate args
        3. Execute with timeout
        """
        tool = self.registry.get(tool_call.name)
        if tool is None:
            error = str(ToolNotFoundError(tool_call.name))
            self._log.warning("Model called unknown tool %s", tool_call.name)
            return build_tool_result(tool_call.name, tool_call.id, error=error)

        valid, error_msg = ToolValidator.validate(tool, tool_call.arguments)
        if not valid:
            self._log.warning("Invalid arguments for %s: %s", tool_call.name, error_msg)
            return build_tool_result(
                tool_call.name, tool_call.id, error=f"invalid arguments: {error_msg}"
            )

        timeout = options.tool_timeout if options.tool_timeout is not None else self.tool_timeout
        self._log.debug("executing tool %s id=%s", tool_call.name, tool_call.id)
        try:
            raw = await asyncio.wait_for(tool.execute(tool_call.arguments), timeout=timeout)
        except asyncio.TimeoutError:
            self._log.warning("Tool %s timed out after %ss", tool_call.name, timeout)
            return build_tool_result(
                tool_call.name, tool_call.id, error=f"tool timed out after {timeout}s"
            )
        except Exception as e:
            self._log.warning("Tool %s failed: %s", tool_call.name, e)
            return build_tool_result(
                tool_call.name, tool_call.id, error=str(e) or type(e).__name__
            )
        self._log.debug("tool %s returned %d chars", tool_call.name, len(raw))
        return build_tool_result(tool_call.name, tool_call.id, raw)
