"""
OpenAI-compatible chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/chat/completions`` wire
protocol -- OpenAI itself, Ollama, vLLM, LM Studio, etc.

Each tool result becomes its own ``tool``-role wire message.  Reasoning text
is read from whichever of the known reasoning delta fields the server uses;
thinking is not sent back on follow-up requests.
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

OLLAMA_BASE_URL = "http://localhost:11434/v1"

# Models that reject an explicit temperature.
_NO_TEMPERATURE_PREFIXES = ("gpt-5", "o1-", "o3")
_REASONING_PREFIXES = ("gpt-5", "o1", "o3", "o4")
_REASONING_FIELDS = ("reasoning_content", "reasoning", "thinking_content", "thinking")


class OpenAICompatAdapter(ProviderAdapter):
    """
    Adapter for any OpenAI-API-compatible endpoint.

    Pass ``api_key=""`` for unauthenticated local endpoints.
    """

    output_token_limits = (
        ("gpt-5-mini", 128000),
        ("gpt-5-nano", 128000),
        ("gpt-5", 128000),
        ("gpt-4.5-preview", 16384),
        ("gpt-4.1-mini", 32768),
        ("gpt-4.1", 32768),
        ("gpt-4o-mini", 16384),
        ("gpt-4o", 16384),
        ("gpt-4-turbo", 4096),
        ("gpt-4", 8192),
        ("o4-mini", 100000),
        ("o3-mini", 100000),
        ("o3", 100000),
        ("gpt-3.5-turbo", 4096),
    )
    default_base_url = "https://api.openai.com/v1"

    def __init__(self, model: str, api_key: str = "", *, provider_name: str = "openai", **kwargs) -> None:
        super().__init__(model, api_key, **kwargs)
        self._provider_name = provider_name

    @property
    def name(self) -> str:
        return self._provider_name

    @property
    def accepts_temperature(self) -> bool:
        return not self._model.lower().startswith(_NO_TEMPERATURE_PREFIXES)

    @property
    def is_reasoning_model(self) -> bool:
        return self._model.lower().startswith(_REASONING_PREFIXES)

    def endpoint(self) -> str:
        return f"{self._base_url}/chat/completions"

    def request_headers(self) -> dict[str, str]:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    def new_decoder(self) -> OpenAIStreamDecoder:
        return OpenAIStreamDecoder()

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
        wire: list[dict] = []
        if system_prompt:
            wire.append({"role": "system", "content": system_prompt})
        wire.extend(self.render_messages(messages))
        if reminder:
            wire.append({"role": "system", "content": reminder})

        body: dict = {
            "model": self._model,
            "messages": wire,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
            body["tool_choice"] = "auto"

        sampling: list[str] = []
        if options.temperature is not None:
            if self.accepts_temperature:
                body["temperature"] = options.temperature
                sampling.append("temperature")
            else:
                logger.debug("Model %s does not accept temperature; omitting it", self._model)
        if options.max_tokens:
            key = "max_completion_tokens" if self.is_reasoning_model else "max_tokens"
            body[key] = options.max_tokens
            sampling.append(key)
        if options.reasoning_effort and self.is_reasoning_model:
            body["reasoning_effort"] = options.reasoning_effort
            sampling.append("reasoning_effort")
        if options.response_format is not None:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": options.response_format.name,
                    "schema": options.response_format.schema,
                    "strict": options.response_format.strict,
                },
            }

        logger.debug(
            "REQUEST: model=%s tools=%d messages=%d",
            self._model,
            len(tools),
            len(wire),
        )
        return WireRequest(body=body, sampling=tuple(sampling))

    # ------------------------------------------------------------------
    # Message conversion
    # ------------------------------------------------------------------

    def to_wire(self, message: Message) -> list[dict]:
        check_message(message)
        text = _joined_text(message)

        if message.role is Role.ASSISTANT:
            calls = message.tool_calls
            if not text and not calls:
                raise ConversionError("assistant message has neither text nor tool calls")
            m: dict = {"role": "assistant", "content": text or None}
            if calls:
                m["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": tc.arguments or "{}"},
                    }
                    for tc in calls
                ]
            return [m]

        if message.role is Role.SYSTEM:
            return [{"role": "system", "content": text}]

        wire = [
            {"role": "tool", "tool_call_id": r.tool_call_id, "content": wire_content(r)}
            for r in message.tool_results
        ]
        if text:
            # Free text cannot ride on a tool message.
            wire.append({"role": "user", "content": text})
        return wire

    def from_wire(self, items: list[dict]) -> list[Message]:
        messages: list[Message] = []
        for item in items:
            role = item.get("role")
            content = item.get("content") or ""
            if role == "tool":
                result = _tool_result(item)
                # Consecutive tool messages belong to one canonical message.
                if messages and messages[-1].role is Role.TOOL:
                    messages[-1].add_tool_result(result)
                else:
                    messages.append(Message(role=Role.TOOL).add_tool_result(result))
                continue

            msg = Message(role=Role(role) if role in ("user", "assistant", "system") else Role.USER)
            for part in _split_text(content):
                msg.contents.append(content_from_text(part))
            for tc in item.get("tool_calls") or []:
                func = tc.get("function", {})
                msg.add_tool_call(
                    ToolCall(
                        id=tc.get("id", ""),
                        name=func.get("name", ""),
                        arguments=func.get("arguments") or "{}",
                    )
                )
            messages.append(msg)
        return messages


def _joined_text(message: Message) -> str:
    parts = []
    for c in message.contents:
        if c.text:
            parts.append(c.text)
        elif c.system_reminder:
            parts.append(wrap_reminder(c.system_reminder))
    return "\n".join(parts)


def _split_text(content) -> list[str]:
    if isinstance(content, list):
        return [p.get("text", "") for p in content if isinstance(p, dict) and p.get("text")]
    return [content] if content else []


def _tool_result(item: dict) -> ToolResult:
    content = item.get("content") or ""
    error = parse_tool_error_json(content)
    if error is not None:
        return ToolResult(tool_call_id=item.get("tool_call_id", ""), name="", error=error)
    return ToolResult(tool_call_id=item.get("tool_call_id", ""), name="", content=content)


class OpenAIStreamDecoder(StreamDecoder):
    """Classifies ``chat.completion.chunk`` payloads."""

    def classify(self, raw: dict) -> StreamChunk | None:
        if "error" in raw:
            err = raw["error"] if isinstance(raw["error"], dict) else {"message": raw["error"]}
            raise TransportError(f"stream error: {err.get('message', '')}", body=json.dumps(raw))

        usage = _usage(raw.get("usage"))
        choices = raw.get("choices") or []
        if not choices:
            if usage is not None:
                return StreamChunk(usage=usage)
            logger.debug("Ignoring OpenAI chunk without choices: %s", raw.get("object"))
            return None

        choice = choices[0]
        delta = choice.get("delta") or {}

        thinking = ""
        for field_name in _REASONING_FIELDS:
            value = delta.get(field_name)
            if isinstance(value, str) and value:
                thinking = value
                break

        tool_deltas: list[RawToolDelta] | None = None
        raw_tcs = delta.get("tool_calls")
        if raw_tcs:
            tool_deltas = []
            for raw_tc in raw_tcs:
                func = raw_tc.get("function") or {}
                tool_deltas.append(
                    RawToolDelta(
                        call_index=raw_tc.get("index", 0),
                        id=raw_tc.get("id"),
                        name_delta=func.get("name") or "",
                        args_delta=func.get("arguments") or "",
                    )
                )

        return StreamChunk(
            delta=delta.get("content") or "",
            thinking_delta=thinking,
            tool_deltas=tool_deltas,
            usage=usage,
            finish_reason=choice.get("finish_reason") or "",
        )


def _usage(raw: dict | None) -> TokenUsageDetails | None:
    if not raw:
        return None
    details = raw.get("prompt_tokens_details") or {}
    return TokenUsageDetails(
        input_tokens=raw.get("prompt_tokens", 0) or 0,
        output_tokens=raw.get("completion_tokens", 0) or 0,
        total_tokens=raw.get("total_tokens", 0) or 0,
        cached_tokens=details.get("cached_tokens", 0) or 0,
    )
