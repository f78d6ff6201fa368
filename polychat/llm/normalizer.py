"""
Stream normalization -- turns classified provider chunks into canonical events.

A ``StreamNormalizer`` lives for exactly one streaming round.  Provider
decoders translate raw wire events into ``StreamChunk`` objects; the
normalizer consumes those chunks and:

  1. Emits canonical ``StreamEvent`` objects to the caller's callback, in
     order, one call per event.
  2. Buffers reasoning text until its span closes, then emits a single
     ``thinking_summary`` carrying the text and any signature.
  3. Feeds tool-call fragments into a ``ToolCallAssembler`` and emits exactly
     one ``tool_call`` event per finalized call.
  4. Merges usage observations, never letting a zero overwrite a non-zero.

``finish()`` closes any open span, flushes pending tool calls, emits the
round's ``usage`` event and returns a ``RoundResult``.
"""

from __future__ import annotations

import enum
import inspect
import logging
from dataclasses import dataclass, field

from polychat.llm.tool_call_assembler import ToolCallAssembler
from polychat.llm.types import (
    Content,
    Message,
    Role,
    StreamCallback,
    StreamChunk,
    StreamEvent,
    StreamEventType,
    ThinkingContent,
    ThinkingStatus,
    TokenUsageDetails,
    ToolCall,
)

logger = logging.getLogger(__name__)


class StreamState(enum.Enum):
    IDLE = "idle"
    STREAM_OPEN = "stream_open"
    CONTENT_RUN = "content_run"
    THINKING_RUN = "thinking_run"
    TOOL_CALL_RUN = "tool_call_run"
    STREAM_CLOSED = "stream_closed"


@dataclass
class RoundResult:
    """Everything one streaming round produced."""

    content: str = ""
    thinking: list[ThinkingContent] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsageDetails = field(default_factory=TokenUsageDetails)
    finish_reason: str = ""
    assembler_errors: list[str] = field(default_factory=list)

    def to_message(self) -> Message:
        """
        Build the assistant message for this round.

        Thinking blocks come first, then text, then tool calls.  An empty
        text buffer produces no text content.
        """
        msg = Message(role=Role.ASSISTANT)
        for block in self.thinking:
            msg.contents.append(Content(thinking=block))
        if self.content:
            msg.add_text(self.content)
        for call in self.tool_calls:
            msg.add_tool_call(call)
        return msg


async def emit(callback: StreamCallback | None, event: StreamEvent) -> None:
    """Invoke a sync or async streaming callback."""
    if callback is None:
        return
    result = callback(event)
    if inspect.isawaitable(result):
        await result


class StreamNormalizer:
    """Per-round state machine over classified ``StreamChunk`` objects."""

    def __init__(
        self,
        callback: StreamCallback | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._callback = callback
        self._log = log or logger
        self._state = StreamState.IDLE
        self._text: list[str] = []
        self._thinking: list[str] = []
        self._signature: list[str] = []
        self._in_thinking = False
        self._blocks: list[ThinkingContent] = []
        self._assembler = ToolCallAssembler()
        self._tool_calls: list[ToolCall] = []
        self._usage = TokenUsageDetails()
        self._finish_reason = ""

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def events_seen(self) -> bool:
        return self._state is not StreamState.IDLE

    # ------------------------------------------------------------------
    # Feeding
    # ------------------------------------------------------------------

    async def feed(self, chunk: StreamChunk) -> None:
        if self._state is StreamState.STREAM_CLOSED:
            raise RuntimeError("stream already finished")
        if self._state is StreamState.IDLE:
            self._state = StreamState.STREAM_OPEN

        if chunk.thinking_delta:
            await self._thinking_fragment(chunk.thinking_delta)

        if chunk.signature_delta:
            self._signature.append(chunk.signature_delta)

        if chunk.redacted_thinking:
            await self._redacted(chunk.redacted_thinking)

        if chunk.thinking_done:
            await self._close_thinking()

        if chunk.delta:
            await self._close_thinking()
            self._state = StreamState.CONTENT_RUN
            self._text.append(chunk.delta)
            await emit(
                self._callback,
                StreamEvent(type=StreamEventType.CONTENT, content=chunk.delta),
            )

        if chunk.tool_deltas:
            await self._close_thinking()
            self._state = StreamState.TOOL_CALL_RUN
            for delta in chunk.tool_deltas:
                for call in self._assembler.feed(delta):
                    await self._tool_call(call)

        if chunk.usage is not None:
            self._merge_usage(chunk.usage)

        if chunk.finish_reason:
            self._finish_reason = chunk.finish_reason

    async def finish(self) -> RoundResult:
        """Close the round and return what it produced."""
        await self._close_thinking()

        for call in self._assembler.flush():
            await self._tool_call(call)

        if self._assembler.errors:
            self._log.warning(
                "Tool-call assembly errors: %s", self._assembler.errors
            )

        if self._usage.total_tokens <= 0:
            self._usage.total_tokens = (
                self._usage.input_tokens + self._usage.output_tokens
            )
        if self._usage.total_tokens > 0:
            await emit(
                self._callback,
                StreamEvent(type=StreamEventType.USAGE, usage=self._usage),
            )

        self._state = StreamState.STREAM_CLOSED
        return RoundResult(
            content="".join(self._text),
            thinking=list(self._blocks),
            tool_calls=list(self._tool_calls),
            usage=self._usage,
            finish_reason=self._finish_reason,
            assembler_errors=list(self._assembler.errors),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _thinking_fragment(self, text: str) -> None:
        if not self._in_thinking:
            self._in_thinking = True
            await emit(
                self._callback,
                StreamEvent(
                    type=StreamEventType.THINKING,
                    thinking=ThinkingStatus(is_thinking=True),
                ),
            )
        self._state = StreamState.THINKING_RUN
        self._thinking.append(text)
        await emit(
            self._callback,
            StreamEvent(
                type=StreamEventType.THINKING,
                content=text,
                thinking=ThinkingStatus(is_thinking=True),
            ),
        )

    async def _close_thinking(self) -> None:
        if not self._in_thinking:
            # A signature can arrive for a span that carried no text.
            if self._signature and self._blocks:
                self._blocks[-1].signature += "".join(self._signature)
                self._signature.clear()
            return
        self._in_thinking = False
        text = "".join(self._thinking)
        signature = "".join(self._signature)
        self._thinking.clear()
        self._signature.clear()
        self._blocks.append(ThinkingContent(text=text, signature=signature))
        await emit(
            self._callback,
            StreamEvent(
                type=StreamEventType.THINKING_SUMMARY,
                thinking=ThinkingStatus(
                    is_thinking=False, summary=text, signature=signature
                ),
            ),
        )

    async def _redacted(self, data: str) -> None:
        await self._close_thinking()
        self._blocks.append(ThinkingContent(redacted_data=data))
        await emit(
            self._callback,
            StreamEvent(
                type=StreamEventType.REDACTED_THINKING,
                thinking=ThinkingStatus(redacted_data=data),
            ),
        )

    async def _tool_call(self, call: ToolCall) -> None:
        self._log.debug(
            "tool call finalized id=%s name=%s args=%s",
            call.id,
            call.name,
            call.arguments,
        )
        self._tool_calls.append(call)
        await emit(
            self._callback,
            StreamEvent(type=StreamEventType.TOOL_CALL, tool_calls=[call]),
        )

    def _merge_usage(self, observed: TokenUsageDetails) -> None:
        if observed.input_tokens > 0:
            self._usage.input_tokens = observed.input_tokens
        if observed.output_tokens > 0:
            self._usage.output_tokens = observed.output_tokens
        if observed.cached_tokens > 0:
            self._usage.cached_tokens = observed.cached_tokens
        if observed.total_tokens > 0:
            self._usage.total_tokens = observed.total_tokens
        elif observed.input_tokens > 0 or observed.output_tokens > 0:
            self._usage.total_tokens = (
                self._usage.input_tokens + self._usage.output_tokens
            )
        self._log.debug(
            "usage observed input=%d output=%d total=%d",
            self._usage.input_tokens,
            self._usage.output_tokens,
            self._usage.total_tokens,
        )
