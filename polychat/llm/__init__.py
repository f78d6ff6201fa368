"""LLM subsystem -- canonical types, provider adapters and stream normalization."""

from polychat.llm.normalizer import RoundResult, StreamNormalizer
from polychat.llm.tool_call_assembler import ToolCallAssembler
from polychat.llm.types import (
    Message,
    RawToolDelta,
    StreamChunk,
    StreamEvent,
    ToolCall,
)

__all__ = [
    "Message",
    "RawToolDelta",
    "RoundResult",
    "StreamChunk",
    "StreamEvent",
    "StreamNormalizer",
    "ToolCall",
    "ToolCallAssembler",
]
