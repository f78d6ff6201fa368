"""
Client factory -- picks a provider family from the model name.

``new_client()`` builds the matching ``ProviderAdapter`` and returns a
``Client`` whose ``new_chat()`` hands out ``Chat`` handles.
"""

from __future__ import annotations

import logging
import os

import httpx

from polychat.chat import Chat
from polychat.config import LLMConfig, PolychatConfig
from polychat.llm.providers import (
    OLLAMA_BASE_URL,
    ClaudeAdapter,
    GeminiAdapter,
    OpenAICompatAdapter,
    ProviderAdapter,
)
from polychat.llm.types import ChatOptions, Message

_PROVIDER_PREFIXES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("openai", ("gpt-", "o1-", "o3", "o4")),
    ("claude", ("claude-",)),
    ("gemini", ("gemini-",)),
    ("ollama", ("llama", "mistral", "mixtral", "qwen", "phi", "deepseek", "codellama")),
)

_API_KEY_ENVS: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "claude": ("ANTHROPIC_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "ollama": (),
}


def detect_provider(model: str) -> str:
    """Return ``openai``, ``claude``, ``gemini`` or ``ollama`` for *model*."""
    lower = model.lower()
    for provider, prefixes in _PROVIDER_PREFIXES:
        if lower.startswith(prefixes):
            return provider
    raise ValueError(f"Unknown model {model!r}: cannot determine provider")


def resolve_api_key(provider: str, llm: LLMConfig) -> str:
    if llm.api_key:
        return llm.api_key
    names = (llm.api_key_env,) if llm.api_key_env else _API_KEY_ENVS[provider]
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    if provider == "ollama":
        return ""
    raise ValueError(
        f"No API key for {provider}: set {' or '.join(names)}"
    )


class Client:
    def __init__(
        self,
        adapter: ProviderAdapter,
        config: PolychatConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._adapter = adapter
        self._config = config or PolychatConfig()
        self._logger = logger

    @property
    def provider(self) -> str:
        return self._adapter.name

    @property
    def model(self) -> str:
        return self._adapter.model

    @property
    def base_url(self) -> str:
        return self._adapter.base_url

    def new_chat(
        self, system_prompt: str = "", initial_messages: list[Message] | None = None
    ) -> Chat:
        llm = self._config.llm
        chat_cfg = self._config.chat
        return Chat(
            self._adapter,
            system_prompt,
            initial_messages,
            max_rounds=chat_cfg.max_tool_rounds,
            tool_timeout=chat_cfg.tool_timeout_seconds,
            defaults=ChatOptions(temperature=llm.temperature, max_tokens=llm.max_tokens),
            logger=self._logger,
        )


def new_client(
    config: PolychatConfig | LLMConfig | str,
    *,
    http_client: httpx.AsyncClient | None = None,
    logger: logging.Logger | None = None,
) -> Client:
    """
    Build a client for the configured model.

    *config* may be a full ``PolychatConfig``, just its ``LLMConfig`` or a
    bare model name.  Raises ``ValueError`` for an unknown model family or
    a missing API key.
    """
    if isinstance(config, str):
        config = LLMConfig(model=config)
    if isinstance(config, LLMConfig):
        config = PolychatConfig(llm=config)
    llm = config.llm
    if not llm.model:
        raise ValueError("No model configured")

    provider = detect_provider(llm.model)
    api_key = resolve_api_key(provider, llm)
    kwargs = dict(
        base_url=llm.base_url or None,
        timeout=llm.timeout_seconds,
        headers=llm.headers,
        http_client=http_client,
    )
    if provider == "claude":
        adapter: ProviderAdapter = ClaudeAdapter(llm.model, api_key, **kwargs)
    elif provider == "gemini":
        adapter = GeminiAdapter(llm.model, api_key, **kwargs)
    elif provider == "ollama":
        kwargs["base_url"] = llm.base_url or OLLAMA_BASE_URL
        adapter = OpenAICompatAdapter(llm.model, api_key, provider_name="ollama", **kwargs)
    else:
        adapter = OpenAICompatAdapter(llm.model, api_key, **kwargs)

    (logger or logging.getLogger(__name__)).info(
        "Created %s client for model %s at %s", adapter.name, adapter.model, adapter.base_url
    )
    return Client(adapter, config, logger)
