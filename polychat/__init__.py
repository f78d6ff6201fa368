"""polychat -- one streaming chat engine over Claude, OpenAI and Gemini style APIs."""

import logging

from polychat.chat import Chat
from polychat.client import Client, detect_provider, new_client
from polychat.config import ChatConfig, LLMConfig, PolychatConfig, configure_logging, load_config
from polychat.conversation import ConversationState
from polychat.llm.errors import (
    ChatError,
    ConversionError,
    RoundLimitExceeded,
    StructuralError,
    ToolExecutionError,
    ToolNotFoundError,
    TransportError,
    UnsupportedParameterError,
)
from polychat.llm.types import (
    ChatOptions,
    Message,
    ResponseFormat,
    Role,
    StreamEvent,
    StreamEventType,
    TokenUsage,
    TokenUsageDetails,
    ToolCall,
    ToolDef,
    ToolResult,
    assistant_message,
    system_message,
    user_message,
)
from polychat.tools import Tool, ToolRegistry

logging.getLogger("polychat").addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "Chat",
    "ChatConfig",
    "ChatError",
    "ChatOptions",
    "Client",
    "ConversationState",
    "ConversionError",
    "LLMConfig",
    "Message",
    "PolychatConfig",
    "ResponseFormat",
    "Role",
    "RoundLimitExceeded",
    "StreamEvent",
    "StreamEventType",
    "StructuralError",
    "TokenUsage",
    "TokenUsageDetails",
    "Tool",
    "ToolCall",
    "ToolDef",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolResult",
    "TransportError",
    "UnsupportedParameterError",
    "assistant_message",
    "configure_logging",
    "detect_provider",
    "load_config",
    "new_client",
    "system_message",
    "user_message",
]
