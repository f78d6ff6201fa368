"""
Gemini-like provider (Generative Language API).

Speaks ``POST {base_url}/models/{model}:streamGenerateContent?alt=sse``.
Tool calls and tool results are typed parts (``functionCall`` /
``functionResponse``) inside ``contents`` rather than separate roles.
"""

from __future__ import annotations

import json
import logging
import uuid

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

logger = logging.getLogger(__name__)

_THINKING_BUDGETS = {"low": 1024, "medium": 8192, "high": 24576}


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def function_response_payload(result: ToolResult) -> dict:
    if result.error:
        return {"error": result.error}
    if not result.content:
        return {"result": "success"}
    try:
        value = json.loads(result.content)
    except ValueError:
        return {"result": result.content}
    if isinstance(value, dict):
        return value
    return {"result": result.content}


def tool_result_from_payload(call_id: str, name: str, payload: dict) -> ToolResult:
    if set(payload) == {"error"}:
        return ToolResult(tool_call_id=call_id, name=name, error=str(payload["error"]))
    if set(payload) == {"result"}:
        value = payload["result"]
        content = value if isinstance(value, str) else json.dumps(value)
        return ToolResult(tool_call_id=call_id, name=name, content=content)
    return ToolResult(tool_call_id=call_id, name=name, content=json.dumps(payload))


class GeminiAdapter(ProviderAdapter):
    output_token_limits = (
        ("gemini-2.5-pro", 65536),
        ("gemini-2.5-flash-lite", 65536),
        ("gemini-2.5-flash", 65536),
        ("gemini-2.0-flash-lite", 8192),
        ("gemini-2.0-flash", 8192),
        ("gemini-1.5-pro", 8192),
        ("gemini-1.5-flash-8b", 8192),
        ("gemini-1.5-flash", 8192),
    )
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    @property
    def name(self) -> str:
        return "gemini"

    def endpoint(self) -> str:
        return f"{self._base_url}/models/{self._model}:streamGenerateContent?alt=sse"

    def request_headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key}

    def new_decoder(self) -> GeminiStreamDecoder:
        return GeminiStreamDecoder()

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
        system_texts.extend(m.text for m in messages if m.role is Role.SYSTEM and m.text)
        if reminder:
            system_texts.append(reminder)

        body: dict = {
            "contents": self.render_messages(
                [m for m in messages if m.role is not Role.SYSTEM]
            ),
        }
        if system_texts:
            body["systemInstruction"] = {"parts": [{"text": t} for t in system_texts]}
        if tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": t.name,
                            "description": t.description,
                            "parameters": t.parameters,
                        }
                        for t in tools
                    ]
                }
            ]

        config: dict = {}
        sampling: list[str] = []
        if options.temperature is not None:
            config["temperature"] = options.temperature
            sampling.append("temperature")
        if options.max_tokens:
            config["maxOutputTokens"] = options.max_tokens
        if options.response_format is not None:
            config["responseMimeType"] = "application/json"
            config["responseSchema"] = options.response_format.schema
        if options.reasoning_effort:
            config["thinkingConfig"] = {
                "includeThoughts": True,
                "thinkingBudget": _THINKING_BUDGETS.get(options.reasoning_effort, 8192),
            }
        if config:
            body["generationConfig"] = config
        return WireRequest(body=body, sampling=tuple(sampling))

    # ------------------------------------------------------------------
    # Message conversion
    # ------------------------------------------------------------------

    def to_wire(self, message: Message) -> list[dict]:
        check_message(message)
        parts: list[dict] = []
        for c in message.contents:
            if c.text:
                parts.append({"text": c.text})
            elif c.system_reminder:
                parts.append({"text": wrap_reminder(c.system_reminder)})
            elif c.thinking is not None:
                if c.thinking.text or c.thinking.signature:
                    part: dict = {"text": c.thinking.text, "thought": True}
                    if c.thinking.signature:
                        part["thoughtSignature"] = c.thinking.signature
                    parts.append(part)
            elif c.tool_call is not None:
                parts.append(
                    {
                        "functionCall": {
                            "id": c.tool_call.id,
                            "name": c.tool_call.name,
                            "args": _parse_args(c.tool_call),
                        }
                    }
                )
            elif c.tool_result is not None:
                parts.append(
                    {
                        "functionResponse": {
                            "id": c.tool_result.tool_call_id,
                            "name": c.tool_result.name,
                            "response": function_response_payload(c.tool_result),
                        }
                    }
                )
        if not parts:
            raise ConversionError(f"{message.role.value} message has no renderable content")

        if message.role is Role.ASSISTANT:
            role = "model"
        elif message.has_tool_results():
            role = "function"
        else:
            role = "user"
        return [{"role": role, "parts": parts}]

    def from_wire(self, items: list[dict]) -> list[Message]:
        messages: list[Message] = []
        for item in items:
            role = {"model": Role.ASSISTANT, "function": Role.TOOL}.get(
                item.get("role", "user"), Role.USER
            )
            msg = Message(role=role)
            for part in item.get("parts", []):
                if "functionCall" in part:
                    fc = part["functionCall"]
                    msg.add_tool_call(
                        ToolCall(
                            id=fc.get("id") or new_call_id(),
                            name=fc.get("name", ""),
                            arguments=json.dumps(fc.get("args") or {}),
                        )
                    )
                elif "functionResponse" in part:
                    fr = part["functionResponse"]
                    msg.add_tool_result(
                        tool_result_from_payload(
                            fr.get("id", ""), fr.get("name", ""), fr.get("response") or {}
                        )
                    )
                elif part.get("thought"):
                    msg.add_thinking(part.get("text", ""), part.get("thoughtSignature", ""))
                elif "text" in part:
                    msg.contents.append(content_from_text(part["text"]))
            messages.append(msg)
        return messages


def _parse_args(call: ToolCall) -> dict:
    try:
        value = json.loads(call.arguments or "{}")
    except ValueError as exc:
        raise ConversionError(
            f"tool call {call.id!r} arguments are not valid JSON: {exc}"
        ) from exc
    if not isinstance(value, dict):
        raise ConversionError(f"tool call {call.id!r} arguments must be a JSON object")
    return value


class GeminiStreamDecoder(StreamDecoder):
    """
    Classifies ``GenerateContentResponse`` chunks.

    Gemini sends each function call whole, so every call is emitted as a
    single finished delta under the next free call index.
    """

    def __init__(self) -> None:
        self._next_index = 0

    def classify(self, raw: dict) -> StreamChunk | None:
        if "error" in raw:
            err = raw["error"] if isinstance(raw["error"], dict) else {"message": raw["error"]}
            raise TransportError(f"stream error: {err.get('message', '')}", body=json.dumps(raw))

        chunk = StreamChunk(usage=_usage(raw.get("usageMetadata")))
        candidates = raw.get("candidates") or []
        if not candidates:
            if chunk.usage is None:
                logger.debug("Ignoring Gemini chunk without candidates")
                return None
            return chunk

        candidate = candidates[0]
        text: list[str] = []
        thinking: list[str] = []
        signature: list[str] = []
        tool_deltas: list[RawToolDelta] = []
        for part in (candidate.get("content") or {}).get("parts") or []:
            if part.get("thoughtSignature"):
                signature.append(part["thoughtSignature"])
            if "functionCall" in part:
                fc = part["functionCall"]
                tool_deltas.append(
                    RawToolDelta(
                        call_index=self._next_index,
                        id=fc.get("id") or new_call_id(),
                        name_delta=fc.get("name", ""),
                        args_delta=json.dumps(fc.get("args") or {}),
                        done=True,
                    )
                )
                self._next_index += 1
            elif part.get("thought"):
                thinking.append(part.get("text", ""))
            elif part.get("text"):
                text.append(part["text"])
            elif "thoughtSignature" not in part:
                logger.debug("Ignoring unknown Gemini part keys %s", sorted(part))

        chunk.delta = "".join(text)
        chunk.thinking_delta = "".join(thinking)
        chunk.signature_delta = "".join(signature)
        chunk.tool_deltas = tool_deltas or None
        chunk.finish_reason = candidate.get("finishReason") or ""
        return chunk


def _usage(raw: dict | None) -> TokenUsageDetails | None:
    if not raw:
        return None
    return TokenUsageDetails(
        input_tokens=raw.get("promptTokenCount", 0) or 0,
        output_tokens=(raw.get("candidatesTokenCount", 0) or 0)
        + (raw.get("thoughtsTokenCount", 0) or 0),
        total_tokens=raw.get("totalTokenCount", 0) or 0,
        cached_tokens=raw.get("cachedContentTokenCount", 0) or 0,
    )
