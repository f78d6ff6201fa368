"""Message conversion tests for every provider family."""

from __future__ import annotations

import json

import pytest

from polychat.llm.errors import ConversionError
from polychat.llm.providers import ClaudeAdapter, GeminiAdapter, OpenAICompatAdapter
from polychat.llm.types import (
    ChatOptions,
    Content,
    Message,
    ResponseFormat,
    Role,
    ToolCall,
    ToolDef,
    ToolResult,
    assistant_message,
    system_message,
    user_message,
)


def _claude():
    return ClaudeAdapter("claude-sonnet-4-5", "k")


def _openai():
    return OpenAICompatAdapter("gpt-4o", "k")


def _gemini():
    return GeminiAdapter("gemini-2.5-flash", "k")


ALL_ADAPTERS = [_claude, _openai, _gemini]


def canonical(messages: list[Message], *, keep_thinking: bool = True) -> list[tuple]:
    """Comparable form: arguments parsed, tool-result names ignored."""
    out = []
    for m in messages:
        out.append(
            (
                m.role,
                m.text,
                m.system_reminders,
                [(c.id, c.name, json.loads(c.arguments)) for c in m.tool_calls],
                [(r.tool_call_id, r.content, r.error) for r in m.tool_results],
                [(t.text, t.signature, t.redacted_data) for t in m.thinking] if keep_thinking else [],
            )
        )
    return out


def conversation() -> list[Message]:
    assistant = Message(role=Role.ASSISTANT)
    assistant.add_text("Let me check.")
    assistant.add_tool_call(ToolCall(id="call_1", name="echo", arguments='{"message": "hi"}'))
    assistant.add_tool_call(ToolCall(id="call_2", name="lookup", arguments="{}"))

    results = Message(role=Role.TOOL)
    results.add_tool_result(ToolResult(tool_call_id="call_1", name="echo", content="Echo: hi"))
    results.add_tool_result(ToolResult(tool_call_id="call_2", name="lookup", error="not found"))

    return [
        user_message("use echo to say hi"),
        assistant,
        results,
        assistant_message("It said hi."),
    ]


class TestRoundTrip:
    @pytest.mark.parametrize("make", ALL_ADAPTERS)
    def test_conversation_round_trips(self, make):
        adapter = make()
        original = conversation()
        wire = adapter.render_messages(original)
        assert canonical(adapter.from_wire(wire)) == canonical(original)

    @pytest.mark.parametrize("make", ALL_ADAPTERS)
    def test_system_reminder_round_trips(self, make):
        adapter = make()
        msg = Message(role=Role.USER).add_system_reminder("stay on task")
        back = adapter.from_wire(adapter.to_wire(msg))
        assert back[0].system_reminders == ["stay on task"]

    def test_claude_thinking_round_trips(self):
        adapter = _claude()
        msg = Message(role=Role.ASSISTANT)
        msg.add_thinking("pondering", signature="sig")
        msg.add_thinking("", redacted_data="blob")
        msg.add_text("Answer")
        back = adapter.from_wire(adapter.to_wire(msg))
        assert canonical(back) == canonical([msg])

    def test_gemini_thinking_round_trips(self):
        adapter = _gemini()
        msg = Message(role=Role.ASSISTANT)
        msg.add_thinking("pondering", signature="sig")
        msg.add_text("Answer")
        back = adapter.from_wire(adapter.to_wire(msg))
        assert canonical(back) == canonical([msg])

    def test_openai_round_trip_drops_thinking(self):
        adapter = _openai()
        msg = Message(role=Role.ASSISTANT)
        msg.add_thinking("pondering", signature="sig")
        msg.add_text("Answer")
        back = adapter.from_wire(adapter.to_wire(msg))
        assert back[0].thinking == []
        assert canonical(back, keep_thinking=False) == canonical([msg], keep_thinking=False)


class TestStructuralErrors:
    @pytest.mark.parametrize("make", ALL_ADAPTERS)
    def test_tool_message_without_results(self, make):
        with pytest.raises(ConversionError, match="no tool results|no contents"):
            make().to_wire(Message(role=Role.TOOL))

    @pytest.mark.parametrize("make", ALL_ADAPTERS)
    def test_tool_message_with_empty_content_only(self, make):
        msg = Message(role=Role.TOOL, contents=[Content()])
        with pytest.raises(ConversionError):
            make().to_wire(msg)

    @pytest.mark.parametrize("make", ALL_ADAPTERS)
    def test_blank_user_text(self, make):
        with pytest.raises(ConversionError, match="blank"):
            make().to_wire(user_message("   \n"))

    @pytest.mark.parametrize("make", ALL_ADAPTERS)
    def test_empty_user_message(self, make):
        with pytest.raises(ConversionError, match="no contents"):
            make().to_wire(user_message(""))

    @pytest.mark.parametrize("make", ALL_ADAPTERS)
    def test_history_error_names_message_index(self, make):
        history = [user_message("hello"), Message(role=Role.TOOL)]
        with pytest.raises(ConversionError, match="converting message 1"):
            make().build_request("", history, [], ChatOptions())

    @pytest.mark.parametrize("make", ALL_ADAPTERS)
    def test_invalid_tool_call_arguments(self, make):
        msg = Message(role=Role.ASSISTANT).add_tool_call(
            ToolCall(id="c", name="t", arguments="{not json")
        )
        if make is _openai:
            # Arguments are forwarded as a raw string.
            assert make().to_wire(msg)[0]["tool_calls"][0]["function"]["arguments"] == "{not json"
        else:
            with pytest.raises(ConversionError, match="not valid JSON"):
                make().to_wire(msg)


class TestClaudeWire:
    def test_tool_results_only_in_user_message(self):
        wire = _claude().to_wire(conversation()[2])
        assert len(wire) == 1
        assert wire[0]["role"] == "user"
        assert [b["type"] for b in wire[0]["content"]] == ["tool_result", "tool_result"]
        assert wire[0]["content"][0] == {
            "type": "tool_result",
            "tool_use_id": "call_1",
            "content": "Echo: hi",
            "is_error": False,
        }
        assert wire[0]["content"][1]["is_error"] is True
        assert json.loads(wire[0]["content"][1]["content"]) == {"error": "not found"}

    def test_text_beside_results_goes_in_separate_message(self):
        msg = Message(role=Role.TOOL)
        msg.add_tool_result(ToolResult(tool_call_id="c", name="t", content="ok"))
        msg.add_text("note")
        wire = _claude().to_wire(msg)
        assert [b["type"] for b in wire[0]["content"]] == ["tool_result"]
        assert wire[1] == {"role": "user", "content": [{"type": "text", "text": "note"}]}

    def test_empty_result_content_becomes_empty_object(self):
        msg = Message(role=Role.TOOL).add_tool_result(ToolResult(tool_call_id="c", name="t"))
        assert _claude().to_wire(msg)[0]["content"][0]["content"] == "{}"

    def test_assistant_blocks(self):
        msg = Message(role=Role.ASSISTANT)
        msg.add_text("Calling")
        msg.add_thinking("why", signature="s")
        msg.add_tool_call(ToolCall(id="c1", name="echo", arguments='{"message": "x"}'))
        blocks = _claude().to_wire(msg)[0]["content"]
        # Thinking leads the turn.
        assert [b["type"] for b in blocks] == ["thinking", "text", "tool_use"]
        assert blocks[2]["input"] == {"message": "x"}

    def test_blank_text_beside_tool_call_omitted(self):
        msg = Message(role=Role.ASSISTANT)
        msg.add_text("  \n")
        msg.add_tool_call(ToolCall(id="c1", name="echo", arguments="{}"))
        blocks = _claude().to_wire(msg)[0]["content"]
        assert [b["type"] for b in blocks] == ["tool_use"]

    def test_blank_only_assistant_message_rejected(self):
        msg = Message(role=Role.ASSISTANT).add_text(" ")
        with pytest.raises(ConversionError):
            _claude().to_wire(msg)

    def test_unsigned_thinking_dropped(self):
        msg = Message(role=Role.ASSISTANT).add_thinking("draft").add_text("Hi")
        blocks = _claude().to_wire(msg)[0]["content"]
        assert [b["type"] for b in blocks] == ["text"]

    def test_assistant_with_tool_results_rejected(self):
        msg = Message(role=Role.ASSISTANT).add_tool_result(
            ToolResult(tool_call_id="c", name="t", content="x")
        )
        with pytest.raises(ConversionError, match="must not carry tool results"):
            _claude().to_wire(msg)

    def test_build_request(self):
        tools = [ToolDef(name="echo", description="Echo", parameters={"type": "object"})]
        options = ChatOptions(
            temperature=0.2,
            max_tokens=500,
            response_format=ResponseFormat(name="answer", schema={"type": "object"}),
        )
        history = [system_message("Be brief."), user_message("hi")]
        req = _claude().build_request("You are helpful.", history, tools, options, reminder="remember")
        body = req.body

        assert body["model"] == "claude-sonnet-4-5"
        assert body["stream"] is True
        assert body["max_tokens"] == 500
        assert body["temperature"] == 0.2
        assert req.sampling == ("temperature",)
        assert body["messages"] == [{"role": "user", "content": [{"type": "text", "text": "hi"}]}]
        assert body["tools"] == [
            {"name": "echo", "description": "Echo", "input_schema": {"type": "object"}}
        ]
        system = [b["text"] for b in body["system"]]
        assert system[0].startswith("You are helpful.\n\nYou must respond with valid JSON")
        assert "answer" in system[0]
        assert system[1:] == ["Be brief.", "remember"]

    def test_default_max_tokens_from_model_table(self):
        body = _claude().build_request("", [user_message("hi")], [], ChatOptions()).body
        assert body["max_tokens"] == 64000
        assert "temperature" not in body
        assert "system" not in body


class TestOpenAIWire:
    def test_each_result_is_separate_tool_message(self):
        wire = _openai().to_wire(conversation()[2])
        assert wire == [
            {"role": "tool", "tool_call_id": "call_1", "content": "Echo: hi"},
            {"role": "tool", "tool_call_id": "call_2", "content": '{"error": "not found"}'},
        ]

    def test_assistant_with_calls_and_no_text(self):
        msg = Message(role=Role.ASSISTANT).add_tool_call(ToolCall(id="c", name="t", arguments="{}"))
        wire = _openai().to_wire(msg)[0]
        assert wire["content"] is None
        assert wire["tool_calls"][0]["function"] == {"name": "t", "arguments": "{}"}

    def test_assistant_with_neither_text_nor_calls(self):
        msg = Message(role=Role.ASSISTANT).add_thinking("only thoughts", signature="s")
        with pytest.raises(ConversionError, match="neither text nor tool calls"):
            _openai().to_wire(msg)

    def test_build_request(self):
        options = ChatOptions(
            temperature=0.5,
            max_tokens=100,
            response_format=ResponseFormat(name="answer", schema={"type": "object"}, strict=True),
        )
        req = _openai().build_request(
            "sys", [user_message("hi")], [ToolDef(name="echo")], options, reminder="note"
        )
        body = req.body
        assert body["messages"][0] == {"role": "system", "content": "sys"}
        assert body["messages"][-1] == {"role": "system", "content": "note"}
        assert body["stream_options"] == {"include_usage": True}
        assert body["temperature"] == 0.5
        assert body["max_tokens"] == 100
        assert body["tools"][0]["type"] == "function"
        assert body["response_format"] == {
            "type": "json_schema",
            "json_schema": {"name": "answer", "schema": {"type": "object"}, "strict": True},
        }
        assert "temperature" in req.sampling

    @pytest.mark.parametrize("model", ["gpt-5", "gpt-5-mini", "o1-preview", "o3-mini"])
    def test_temperature_omitted_for_reasoning_models(self, model):
        adapter = OpenAICompatAdapter(model, "k")
        options = ChatOptions(temperature=0.7, max_tokens=50, reasoning_effort="low")
        req = adapter.build_request("", [user_message("hi")], [], options)
        assert "temperature" not in req.body
        assert "temperature" not in req.sampling
        assert req.body["max_completion_tokens"] == 50
        assert req.body["reasoning_effort"] == "low"


class TestGeminiWire:
    def test_roles_and_parts(self):
        wire = _gemini().render_messages(conversation())
        assert [w["role"] for w in wire] == ["user", "model", "function", "model"]
        assert wire[1]["parts"][1] == {
            "functionCall": {"id": "call_1", "name": "echo", "args": {"message": "hi"}}
        }

    @pytest.mark.parametrize(
        "result, payload",
        [
            (ToolResult(tool_call_id="c", name="t", error="boom"), {"error": "boom"}),
            (ToolResult(tool_call_id="c", name="t", content='{"temp": 21}'), {"temp": 21}),
            (ToolResult(tool_call_id="c", name="t", content="plain text"), {"result": "plain text"}),
            (ToolResult(tool_call_id="c", name="t", content="[1, 2]"), {"result": "[1, 2]"}),
            (ToolResult(tool_call_id="c", name="t"), {"result": "success"}),
        ],
    )
    def test_function_response_payloads(self, result, payload):
        msg = Message(role=Role.TOOL).add_tool_result(result)
        part = _gemini().to_wire(msg)[0]["parts"][0]
        assert part["functionResponse"]["response"] == payload
        assert part["functionResponse"]["name"] == "t"

    def test_build_request(self):
        options = ChatOptions(
            temperature=0.1,
            max_tokens=256,
            response_format=ResponseFormat(name="a", schema={"type": "object"}),
        )
        req = _gemini().build_request(
            "sys", [user_message("hi")], [ToolDef(name="echo")], options, reminder="r"
        )
        body = req.body
        assert body["systemInstruction"] == {"parts": [{"text": "sys"}, {"text": "r"}]}
        assert body["contents"] == [{"role": "user", "parts": [{"text": "hi"}]}]
        assert body["tools"][0]["functionDeclarations"][0]["name"] == "echo"
        assert body["generationConfig"] == {
            "temperature": 0.1,
            "maxOutputTokens": 256,
            "responseMimeType": "application/json",
            "responseSchema": {"type": "object"},
        }

    def test_endpoint(self):
        assert _gemini().endpoint() == (
            "https://generativelanguage.googleapis.com/v1beta/models/"
            "gemini-2.5-flash:streamGenerateContent?alt=sse"
        )


class TestMaxOutputTokens:
    @pytest.mark.parametrize(
        "adapter, expected",
        [
            (ClaudeAdapter("claude-opus-4-1-20250805"), 32000),
            (ClaudeAdapter("claude-3-5-haiku-latest"), 8192),
            (OpenAICompatAdapter("gpt-4o-mini"), 16384),
            (OpenAICompatAdapter("gpt-4-0613"), 8192),
            (OpenAICompatAdapter("o3-mini"), 100000),
            (GeminiAdapter("gemini-2.5-pro"), 65536),
            (GeminiAdapter("gemini-1.5-flash-8b"), 8192),
        ],
    )
    def test_prefix_lookup(self, adapter, expected):
        assert adapter.max_output_tokens == expected

    def test_unknown_model_gets_default(self, caplog):
        adapter = OpenAICompatAdapter("mystery-model")
        with caplog.at_level("WARNING", logger="polychat"):
            assert adapter.max_output_tokens == 4096
        assert "Unknown model" in caplog.text
