"""Tests for provider detection and the client factory."""

from __future__ import annotations

import pytest

from polychat.chat import Chat
from polychat.client import detect_provider, new_client
from polychat.config import ChatConfig, LLMConfig, PolychatConfig
from polychat.llm.providers import (
    OLLAMA_BASE_URL,
    ClaudeAdapter,
    GeminiAdapter,
    OpenAICompatAdapter,
)


@pytest.fixture(autouse=True)
def clean_keys(monkeypatch):
    for var in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"):
        monkeypatch.delenv(var, raising=False)


class TestDetectProvider:
    @pytest.mark.parametrize(
        "model,provider",
        [
            ("gpt-4o", "openai"),
            ("gpt-5-mini", "openai"),
            ("o1-preview", "openai"),
            ("o3-mini", "openai"),
            ("o4-mini", "openai"),
            ("claude-sonnet-4-5", "claude"),
            ("Claude-3-haiku", "claude"),
            ("gemini-2.5-pro", "gemini"),
            ("llama3.1:8b", "ollama"),
            ("qwen2.5-coder", "ollama"),
            ("deepseek-r1", "ollama"),
            ("mistral-nemo", "ollama"),
        ],
    )
    def test_prefixes(self, model, provider):
        assert detect_provider(model) == provider

    def test_unknown_model(self):
        with pytest.raises(ValueError, match="Unknown model"):
            detect_provider("grok-2")


class TestNewClient:
    def test_claude_from_env_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        client = new_client("claude-sonnet-4-5")
        assert client.provider == "claude"
        assert isinstance(client.new_chat().adapter, ClaudeAdapter)
        assert client.base_url == "https://api.anthropic.com"

    def test_openai_explicit_key(self):
        client = new_client(LLMConfig(model="gpt-4o", api_key="sk-test"))
        assert client.provider == "openai"
        assert client.model == "gpt-4o"

    def test_gemini_google_key_fallback(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
        client = new_client("gemini-2.5-flash")
        assert isinstance(client.new_chat().adapter, GeminiAdapter)

    def test_custom_key_env(self, monkeypatch):
        monkeypatch.setenv("MY_PROXY_KEY", "proxy")
        client = new_client(LLMConfig(model="gpt-4o", api_key_env="MY_PROXY_KEY"))
        assert client.provider == "openai"

    def test_missing_key(self):
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            new_client("gpt-4o")

    def test_ollama_needs_no_key(self):
        client = new_client("llama3.1")
        adapter = client.new_chat().adapter
        assert isinstance(adapter, OpenAICompatAdapter)
        assert adapter.name == "ollama"
        assert client.base_url == OLLAMA_BASE_URL

    def test_base_url_override(self):
        client = new_client(
            LLMConfig(model="gpt-4o", api_key="k", base_url="http://proxy:8080/v1/")
        )
        assert client.base_url == "http://proxy:8080/v1"

    def test_no_model(self):
        with pytest.raises(ValueError, match="No model"):
            new_client(PolychatConfig())

    def test_unknown_model(self):
        with pytest.raises(ValueError, match="Unknown model"):
            new_client(LLMConfig(model="grok-2", api_key="k"))


class TestNewChat:
    def test_chat_settings_from_config(self):
        cfg = PolychatConfig(
            llm=LLMConfig(model="gpt-4o", api_key="k", temperature=0.4, max_tokens=512),
            chat=ChatConfig(max_tool_rounds=3, tool_timeout_seconds=2.0),
        )
        chat = new_client(cfg).new_chat("be brief")
        assert isinstance(chat, Chat)
        assert chat.history() == ("be brief", [])
        assert chat.max_tokens() == 16384
        orch = chat._orchestrator
        assert orch.max_rounds == 3
        assert orch.tool_timeout == 2.0
        assert chat._defaults.temperature == 0.4
        assert chat._defaults.max_tokens == 512

    def test_chats_are_independent(self):
        client = new_client(LLMConfig(model="gpt-4o", api_key="k"))
        a = client.new_chat("a")
        b = client.new_chat("b")
        assert a.history()[0] == "a"
        assert b.history()[0] == "b"
        assert a._registry is not b._registry
