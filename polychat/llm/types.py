"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Awaitable, Callable, Union


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


@dataclass
class ToolCall:
    """A model-issued request to invoke a tool.

    *arguments* is the raw JSON text of the call's arguments exactly as the
    provider produced it.
    """

    id: str
    name: str
    arguments: str = "{}"


@dataclass
class ToolResult:
    """The outcome of one tool invocation, addressed to its originating call."""

    tool_call_id: str
    name: str
    content: str = ""
    error: str = ""


@dataclass
class ThinkingContent:
    text: str = ""
    signature: str = ""
    redacted_data: str = ""


@dataclass
class Content:
    """
    One piece of a message.  Exactly one field is populated.

    ``system_reminder`` carries ephemeral context injected by tooling; it is
    rendered to the provider as text but never treated as model output.
    """

    text: str = ""
    tool_call: ToolCall | None = None
    tool_result: ToolResult | None = None
    thinking: ThinkingContent | None = None
    system_reminder: str = ""

    def is_populated(self) -> bool:
        return bool(
            self.text
            or self.tool_call is not None
            or self.tool_result is not None
            or self.thinking is not None
            or self.system_reminder
        )


@dataclass
class Message:
    """A single message in a conversation."""

    role: Role
    contents: list[Content] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def add_text(self, text: str) -> Message:
        self.contents.append(Content(text=text))
        return self

    def add_tool_call(self, call: ToolCall) -> Message:
        self.contents.append(Content(tool_call=call))
        return self

    def add_tool_result(self, result: ToolResult) -> Message:
        self.contents.append(Content(tool_result=result))
        return self

    def add_thinking(
        self, text: str, signature: str = "", redacted_data: str = ""
    ) -> Message:
        self.contents.append(
            Content(
                thinking=ThinkingContent(
                    text=text, signature=signature, redacted_data=redacted_data
                )
            )
        )
        return self

    def add_system_reminder(self, text: str) -> Message:
        self.contents.append(Content(system_reminder=text))
        return self

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def text(self) -> str:
        """All text contents joined with newlines."""
        return "\n".join(c.text for c in self.contents if c.text)

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [c.tool_call for c in self.contents if c.tool_call is not None]

    @property
    def tool_results(self) -> list[ToolResult]:
        return [c.tool_result for c in self.contents if c.tool_result is not None]

    @property
    def thinking(self) -> list[ThinkingContent]:
        return [c.thinking for c in self.contents if c.thinking is not None]

    @property
    def system_reminders(self) -> list[str]:
        return [c.system_reminder for c in self.contents if c.system_reminder]

    def has_text(self) -> bool:
        return any(c.text for c in self.contents)

    def has_tool_calls(self) -> bool:
        return any(c.tool_call is not None for c in self.contents)

    def has_tool_results(self) -> bool:
        return any(c.tool_result is not None for c in self.contents)

    def is_empty(self) -> bool:
        return not any(c.is_populated() for c in self.contents)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict, omitting unset fields."""
        contents: list[dict[str, Any]] = []
        for c in self.contents:
            entry: dict[str, Any] = {}
            if c.text:
                entry["text"] = c.text
            if c.tool_call is not None:
                entry["tool_call"] = {
                    "id": c.tool_call.id,
                    "name": c.tool_call.name,
                    "arguments": c.tool_call.arguments,
                }
            if c.tool_result is not None:
                tr = {
                    "tool_call_id": c.tool_result.tool_call_id,
                    "name": c.tool_result.name,
                    "content": c.tool_result.content,
                }
                if c.tool_result.error:
                    tr["error"] = c.tool_result.error
                entry["tool_result"] = tr
            if c.thinking is not None:
                entry["thinking"] = {
                    k: v
                    for k, v in (
                        ("text", c.thinking.text),
                        ("signature", c.thinking.signature),
                        ("redacted_data", c.thinking.redacted_data),
                    )
                    if v
                }
            if c.system_reminder:
                entry["system_reminder"] = c.system_reminder
            contents.append(entry)
        return {"role": self.role.value, "contents": contents}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        """Reconstruct a Message from a dict produced by ``to_dict``."""
        contents: list[Content] = []
        for entry in data.get("contents", []):
            tc = entry.get("tool_call")
            tr = entry.get("tool_result")
            th = entry.get("thinking")
            contents.append(
                Content(
                    text=entry.get("text", ""),
                    tool_call=ToolCall(**tc) if tc else None,
                    tool_result=ToolResult(**tr) if tr else None,
                    thinking=ThinkingContent(**th) if th is not None else None,
                    system_reminder=entry.get("system_reminder", ""),
                )
            )
        return cls(role=Role(data["role"]), contents=contents)


def user_message(text: str) -> Message:
    return Message(role=Role.USER, contents=[Content(text=text)])


def assistant_message(text: str) -> Message:
    return Message(role=Role.ASSISTANT, contents=[Content(text=text)])


def system_message(text: str) -> Message:
    return Message(role=Role.SYSTEM, contents=[Content(text=text)])


# ---------------------------------------------------------------------------
# Usage accounting
# ---------------------------------------------------------------------------


@dataclass
class TokenUsageDetails:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int = 0

    def __add__(self, other: TokenUsageDetails) -> TokenUsageDetails:
        return TokenUsageDetails(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            cached_tokens=self.cached_tokens + other.cached_tokens,
        )

    def is_zero(self) -> bool:
        return (
            self.input_tokens <= 0
            and self.output_tokens <= 0
            and self.total_tokens <= 0
        )


@dataclass
class TokenUsage:
    """Usage for the most recent exchange and for the whole conversation."""

    last_message: TokenUsageDetails = field(default_factory=TokenUsageDetails)
    cumulative: TokenUsageDetails = field(default_factory=TokenUsageDetails)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class StreamEventType(str, Enum):
    CONTENT = "content"
    THINKING = "thinking"
    THINKING_SUMMARY = "thinking_summary"
    REDACTED_THINKING = "redacted_thinking"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    USAGE = "usage"
    DONE = "done"


@dataclass
class ThinkingStatus:
    is_thinking: bool = False
    summary: str = ""
    signature: str = ""
    redacted_data: str = ""


@dataclass
class StreamEvent:
    """One canonical, provider-independent increment of a response."""

    type: StreamEventType
    content: str = ""
    thinking: ThinkingStatus | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    usage: TokenUsageDetails | None = None
    finish_reason: str = ""


StreamCallback = Callable[[StreamEvent], Union[None, Awaitable[None]]]


@dataclass
class RawToolDelta:
    """
    An incremental delta for a streaming tool call.

    Providers emit these as tool-call fragments arrive.  The ToolCallAssembler
    accumulates them, keyed by the provider's own ``call_index``, and produces
    finished ToolCall objects.
    """

    call_index: int
    id: str | None = None
    name_delta: str = ""
    args_delta: str = ""
    done: bool = False


@dataclass
class StreamChunk:
    """
    One provider event, classified into provider-independent pieces.

    *delta* carries new answer text.
    *thinking_delta* / *signature_delta* carry reasoning fragments.
    *thinking_done* marks the end of a reasoning span.
    *redacted_thinking* carries opaque safety-redacted reasoning data.
    *tool_deltas* carries incremental tool-call fragments.
    *usage* carries token counts observed on this event, if any.
    *done* is ``True`` on the terminal event of the stream.
    """

    delta: str = ""
    thinking_delta: str = ""
    signature_delta: str = ""
    thinking_done: bool = False
    redacted_thinking: str = ""
    tool_deltas: list[RawToolDelta] | None = None
    usage: TokenUsageDetails | None = None
    finish_reason: str = ""
    done: bool = False


# ---------------------------------------------------------------------------
# Tools and request options
# ---------------------------------------------------------------------------


@dataclass
class ToolDef:
    """A tool as advertised to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass
class ResponseFormat:
    """A JSON schema the response should conform to."""

    name: str
    schema: dict[str, Any]
    strict: bool = False


@dataclass
class ChatOptions:
    """
    Per-call options for ``Chat.message``.

    *on_event* receives every canonical ``StreamEvent`` in order; raising from
    it aborts the call.  *system_reminder* is called after each tool round and
    any non-empty text it returns is added to the follow-up request.
    """

    temperature: float | None = None
    max_tokens: int = 0
    reasoning_effort: str = ""
    response_format: ResponseFormat | None = None
    on_event: StreamCallback | None = None
    system_reminder: Callable[[], str] | None = None
    tool_timeout: float | None = None

    def without(self, parameter: str) -> ChatOptions:
        """Return a copy with the named sampling parameter cleared."""
        defaults = {"temperature": None, "max_tokens": 0, "reasoning_effort": ""}
        if parameter not in defaults:
            raise ValueError(f"Unknown sampling parameter: {parameter!r}")
        kwargs = {**self.__dict__, parameter: defaults[parameter]}
        return ChatOptions(**kwargs)

    def with_defaults(self, defaults: ChatOptions) -> ChatOptions:
        """Return a copy with every unset field taken from *defaults*."""
        merged = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value == f.default:
                value = getattr(defaults, f.name)
            merged[f.name] = value
        return ChatOptions(**merged)
