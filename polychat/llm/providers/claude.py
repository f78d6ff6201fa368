"""
Claude-like provider (Anthropic Messages API).

Speaks ``POST {base_url}/v1/messages`` with ``stream: true`` over plain
``httpx``.  Tool results travel in a user-role message whose content is made
of ``tool_result`` blocks only; assistant messages carry thinking, text and
``tool_use`` blocks.
"""

from __future__ import annotations

import json
import logging

from polychat.llm.errors import ConversionError, TransportError
from polychat.llm.providers.base import (
    ProviderAdapter,
    StreamDecoder,
    WireRequest,
    check_message,
    content_from_text,
    wrap_reminder,
)
from polychat.llm.types import (
    ChatOptions,
    Message,
    RawToolDelta,
    Role,
    StreamChunk,
    TokenUsageDetails,
    ToolCall,
    ToolDef,
    ToolResult,
)
from polychat.tools.results import parse_tool_error_json, wire_content

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

_THINKING_BUDGETS = {"low": 1024, "medium": 4096, "high": 16384}


class ClaudeAdapter(ProviderAdapter):
    output_token_limits = (
        ("claude-opus-4-1", 32000),
        ("claude-opus-4", 32000),
        ("claude-sonnet-4-5", 64000),
        ("claude-sonnet-4", 64000),
        ("claude-3-7-sonnet", 64000),
        ("claude-3-5-haiku", 8192),
        ("claude-3-haiku", 4096),
    )
    default_base_url = "https://api.anthropic.com"

    @property
    def name(self) -> str:
        return "claude"

    def endpoint(self) -> str:
        return f"{self._base_url}/v1/messages"

    def request_headers(self) -> dict[str, str]:
        return {"x-api-key": self._api_key, "anthropic-version": ANTHROPIC_VERSION}

    def new_decoder(self) -> ClaudeStreamDecoder:
        return ClaudeStreamDecoder()

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_request(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[ToolDef],
        options: ChatOptions,
        reminder: str = "",
    ) -> WireRequest:
        system_texts = [system_prompt] if system_prompt else []
        # Claude has no system role inside the message list.
        system_texts.extend(m.text for m in messages if m.role is Role.SYSTEM and m.text)
        wire = self.render_messages([m for m in messages if m.role is not Role.SYSTEM])

        if options.response_format is not None:
            hint = (
                "You must respond with valid JSON that conforms to the schema "
                f"named: {options.response_format.name}\n"
                f"{json.dumps(options.response_format.schema)}"
            )
            if system_texts:
                system_texts[0] = f"{system_texts[0]}\n\n{hint}"
            else:
                system_texts.append(hint)
        if reminder:
            system_texts.append(reminder)

        max_tokens = options.max_tokens or self.max_output_tokens
        body: dict = {
            "model": self._model,
            "messages": wire,
            "max_tokens": max_tokens,
            "stream": True,
        }
        if system_texts:
            body["system"] = [{"type": "text", "text": t} for t in system_texts]
        if tools:
            body["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameters,
                }
                for t in tools
            ]

        sampling: list[str] = []
        if options.temperature is not None:
            body["temperature"] = options.temperature
            sampling.append("temperature")
        if options.reasoning_effort:
            budget = _THINKING_BUDGETS.get(options.reasoning_effort, 4096)
            body["thinking"] = {
                "type": "enabled",
                "budget_tokens": min(budget, max(1024, max_tokens - 1)),
            }
            sampling.append("thinking")
        return WireRequest(body=body, sampling=tuple(sampling))

    # ------------------------------------------------------------------
    # Message conversion
    # ------------------------------------------------------------------

    def to_wire(self, message: Message) -> list[dict]:
        check_message(message)
        if message.role is Role.ASSISTANT:
            return [{"role": "assistant", "content": self._assistant_blocks(message)}]

        results = [
            {
                "type": "tool_result",
                "tool_use_id": r.tool_call_id,
                "content": wire_content(r),
                "is_error": bool(r.error),
            }
            for r in message.tool_results
        ]
        text_blocks = []
        for c in message.contents:
            if c.text:
                text_blocks.append({"type": "text", "text": c.text})
            elif c.system_reminder:
                text_blocks.append({"type": "text", "text": wrap_reminder(c.system_reminder)})

        wire: list[dict] = []
        if results:
            # A tool-result message carries tool_result blocks and nothing else.
            wire.append({"role": "user", "content": results})
        if text_blocks:
            wire.append({"role": "user", "content": text_blocks})
        return wire

    def _assistant_blocks(self, message: Message) -> list[dict]:
        thinking: list[dict] = []
        blocks: list[dict] = []
        for c in message.contents:
            if c.thinking is not None:
                if c.thinking.redacted_data:
                    thinking.append(
                        {"type": "redacted_thinking", "data": c.thinking.redacted_data}
                    )
                elif c.thinking.signature:
                    thinking.append(
                        {
                            "type": "thinking",
                            "thinking": c.thinking.text,
                            "signature": c.thinking.signature,
                        }
                    )
                else:
                    logger.debug("Dropping unsigned thinking block")
            elif c.text:
                if c.text.strip():
                    blocks.append({"type": "text", "text": c.text})
            elif c.system_reminder:
                blocks.append({"type": "text", "text": wrap_reminder(c.system_reminder)})
            elif c.tool_call is not None:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": c.tool_call.id,
                        "name": c.tool_call.name,
                        "input": _parse_input(c.tool_call),
                    }
                )
        blocks = thinking + blocks
        if not blocks:
            raise ConversionError("assistant message has no renderable content")
        return blocks

    def from_wire(self, items: list[dict]) -> list[Message]:
        messages: list[Message] = []
        for item in items:
            content = item.get("content", [])
            if isinstance(content, str):
                content = [{"type": "text", "text": content}]
            role = Role.ASSISTANT if item.get("role") == "assistant" else Role.USER
            if role is Role.USER and content and all(
                b.get("type") == "tool_result" for b in content
            ):
                role = Role.TOOL
            msg = Message(role=role)
            for block in content:
                kind = block.get("type")
                if kind == "text":
                    msg.contents.append(content_from_text(block.get("text", "")))
                elif kind == "thinking":
                    msg.add_thinking(block.get("thinking", ""), block.get("signature", ""))
                elif kind == "redacted_thinking":
                    msg.add_thinking("", redacted_data=block.get("data", ""))
                elif kind == "tool_use":
                    msg.add_tool_call(
                        ToolCall(
                            id=block.get("id", ""),
                            name=block.get("name", ""),
                            arguments=json.dumps(block.get("input") or {}),
                        )
                    )
                elif kind == "tool_result":
                    msg.add_tool_result(_tool_result_from_block(block))
                else:
                    logger.debug("Ignoring unknown content block type %r", kind)
            messages.append(msg)
        return messages


def _parse_input(call: ToolCall) -> dict:
    try:
        value = json.loads(call.arguments or "{}")
    except ValueError as exc:
        raise ConversionError(
            f"tool call {call.id!r} arguments are not valid JSON: {exc}"
        ) from exc
    if not isinstance(value, dict):
        raise ConversionError(f"tool call {call.id!r} arguments must be a JSON object")
    return value


def _tool_result_from_block(block: dict) -> ToolResult:
    content = block.get("content", "")
    if isinstance(content, list):
        content = "".join(p.get("text", "") for p in content if isinstance(p, dict))
    call_id = block.get("tool_use_id", "")
    if block.get("is_error"):
        error = parse_tool_error_json(content)
        return ToolResult(tool_call_id=call_id, name="", error=error or content)
    return ToolResult(tool_call_id=call_id, name="", content=content)


class ClaudeStreamDecoder(StreamDecoder):
    """Classifies Anthropic ``message_*`` and ``content_block_*`` events."""

    def __init__(self) -> None:
        self._block_types: dict[int, str] = {}
        # Seed input from content_block_start, per tool block.
        self._seeds: dict[int, dict] = {}
        self._streamed_args: set[int] = set()

    def classify(self, raw: dict) -> StreamChunk | None:
        kind = raw.get("type")

        if kind == "message_start":
            usage = raw.get("message", {}).get("usage") or {}
            return StreamChunk(
                usage=TokenUsageDetails(
                    input_tokens=usage.get("input_tokens", 0) or 0,
                    output_tokens=usage.get("output_tokens", 0) or 0,
                    cached_tokens=usage.get("cache_read_input_tokens", 0) or 0,
                )
            )

        if kind == "content_block_start":
            return self._block_start(raw.get("index", 0), raw.get("content_block") or {})

        if kind == "content_block_delta":
            return self._block_delta(raw.get("index", 0), raw.get("delta") or {})

        if kind == "content_block_stop":
            return self._block_stop(raw.get("index", 0))

        if kind == "message_delta":
            usage = raw.get("usage") or {}
            return StreamChunk(
                usage=TokenUsageDetails(
                    input_tokens=usage.get("input_tokens", 0) or 0,
                    output_tokens=usage.get("output_tokens", 0) or 0,
                ),
                finish_reason=(raw.get("delta") or {}).get("stop_reason") or "",
            )

        if kind == "message_stop":
            return StreamChunk(done=True)

        if kind == "ping":
            return None

        if kind == "error":
            err = raw.get("error") or {}
            raise TransportError(
                f"stream error: {err.get('type', 'error')}: {err.get('message', '')}",
                body=json.dumps(raw),
            )

        logger.debug("Ignoring unknown Claude event type %r", kind)
        return None

    def _block_start(self, index: int, block: dict) -> StreamChunk | None:
        block_type = block.get("type", "")
        self._block_types[index] = block_type

        if block_type == "text":
            return StreamChunk(delta=block.get("text", "")) if block.get("text") else None
        if block_type == "thinking":
            if block.get("thinking"):
                return StreamChunk(thinking_delta=block["thinking"])
            return None
        if block_type == "redacted_thinking":
            return StreamChunk(redacted_thinking=block.get("data", ""))
        if block_type == "tool_use":
            self._seeds[index] = block.get("input") or {}
            return StreamChunk(
                tool_deltas=[
                    RawToolDelta(
                        call_index=index,
                        id=block.get("id"),
                        name_delta=block.get("name", ""),
                    )
                ]
            )
        logger.debug("Ignoring unknown Claude content block %r", block_type)
        return None

    def _block_delta(self, index: int, delta: dict) -> StreamChunk | None:
        kind = delta.get("type")
        if kind == "text_delta":
            return StreamChunk(delta=delta.get("text", ""))
        if kind == "thinking_delta":
            return StreamChunk(thinking_delta=delta.get("thinking", ""))
        if kind == "signature_delta":
            return StreamChunk(signature_delta=delta.get("signature", ""))
        if kind == "input_json_delta":
            partial = delta.get("partial_json", "")
            if not partial:
                return None
            self._streamed_args.add(index)
            return StreamChunk(
                tool_deltas=[RawToolDelta(call_index=index, args_delta=partial)]
            )
        logger.debug("Ignoring unknown Claude delta type %r", kind)
        return None

    def _block_stop(self, index: int) -> StreamChunk | None:
        block_type = self._block_types.pop(index, "")
        if block_type == "thinking":
            return StreamChunk(thinking_done=True)
        if block_type == "tool_use":
            seed = self._seeds.pop(index, {})
            # Streamed fragments supersede the seed input.
            args = "" if index in self._streamed_args or not seed else json.dumps(seed)
            return StreamChunk(
                tool_deltas=[RawToolDelta(call_index=index, args_delta=args, done=True)]
            )
        return None
