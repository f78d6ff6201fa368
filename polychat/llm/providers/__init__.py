from polychat.llm.providers.base import (
    ProviderAdapter,
    StreamDecoder,
    WireRequest,
    lookup_max_output_tokens,
)
from polychat.llm.providers.claude import ClaudeAdapter
from polychat.llm.providers.gemini import GeminiAdapter
from polychat.llm.providers.openai_compat import OLLAMA_BASE_URL, OpenAICompatAdapter

__all__ = [
    "ClaudeAdapter",
    "GeminiAdapter",
    "OLLAMA_BASE_URL",
    "OpenAICompatAdapter",
    "ProviderAdapter",
    "StreamDecoder",
    "WireRequest",
    "lookup_max_output_tokens",
]
