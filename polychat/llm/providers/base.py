"""Abstract base classes for provider adapters."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from polychat.llm.errors import ConversionError
from polychat.llm.providers.sse import stream_events
from polychat.llm.types import (
    ChatOptions,
    Content,
    Message,
    Role,
    StreamChunk,
    ToolDef,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 4096

REMINDER_OPEN = "<system-reminder>"
REMINDER_CLOSE = "</system-reminder>"


def lookup_max_output_tokens(
    model: str, table: tuple[tuple[str, int], ...]
) -> int:
    """
    Look up a model's output ceiling by name prefix.

    *table* is ordered most specific first.  Unknown models get a
    conservative default instead of an error.
    """
    lower = model.lower()
    for prefix, limit in table:
        if lower.startswith(prefix):
            return limit
    logger.warning(
        "Unknown model %r; using default max output tokens %d",
        model,
        DEFAULT_MAX_OUTPUT_TOKENS,
    )
    return DEFAULT_MAX_OUTPUT_TOKENS


def wrap_reminder(text: str) -> str:
    return f"{REMINDER_OPEN}{text}{REMINDER_CLOSE}"


def content_from_text(text: str) -> Content:
    """Inverse of rendering a text or reminder piece."""
    if text.startswith(REMINDER_OPEN) and text.endswith(REMINDER_CLOSE):
        return Content(system_reminder=text[len(REMINDER_OPEN):-len(REMINDER_CLOSE)])
    return Content(text=text)


def check_message(message: Message) -> None:
    """Reject messages no provider can represent."""
    if message.is_empty():
        raise ConversionError(f"{message.role.value} message has no contents")
    populated = [c for c in message.contents if c.is_populated()]
    if all(c.text for c in populated) and not any(c.text.strip() for c in populated):
        raise ConversionError(f"{message.role.value} message text is blank")
    if message.role is Role.TOOL and not message.has_tool_results() and not message.has_text():
        raise ConversionError("tool message has no tool results")
    if message.role is Role.ASSISTANT and message.has_tool_results():
        raise ConversionError("assistant message must not carry tool results")


@dataclass
class WireRequest:
    """A rendered request body plus the sampling parameters it sets."""

    body: dict
    sampling: tuple[str, ...] = ()


class StreamDecoder(ABC):
    """Per-round classifier of a provider's raw stream events."""

    @abstractmethod
    def classify(self, raw: dict) -> StreamChunk | None:
        """
        Translate one raw event.

        Returns ``None`` for events that carry nothing for the canonical
        model, including tags this decoder does not recognise.
        """
        ...


class ProviderAdapter(ABC):
    """
    Capability set the orchestrator needs from a provider family.

    Subclasses render canonical messages into the provider's wire format,
    name the endpoint and headers, and supply a decoder for its stream.
    """

    output_token_limits: tuple[tuple[str, int], ...] = ()
    default_base_url: str = ""

    def __init__(
        self,
        model: str,
        api_key: str = "",
        *,
        base_url: str | None = None,
        timeout: float = 120.0,
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = (base_url or self.default_base_url).rstrip("/")
        self._timeout = timeout
        self._extra_headers = dict(headers or {})
        self._http_client = http_client

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    def model(self) -> str:
        return self._model

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def max_output_tokens(self) -> int:
        return lookup_max_output_tokens(self._model, self.output_token_limits)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    @abstractmethod
    def to_wire(self, message: Message) -> list[dict]:
        """Render one canonical message as one or more wire messages."""
        ...

    @abstractmethod
    def from_wire(self, items: list[dict]) -> list[Message]:
        """Parse wire messages back into canonical messages."""
        ...

    @abstractmethod
    def build_request(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[ToolDef],
        options: ChatOptions,
        reminder: str = "",
    ) -> WireRequest: ...

    def render_messages(self, messages: list[Message]) -> list[dict]:
        wire: list[dict] = []
        for i, message in enumerate(messages):
            try:
                wire.extend(self.to_wire(message))
            except ConversionError as exc:
                raise ConversionError(exc.detail, index=i) from exc
        return wire

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @abstractmethod
    def endpoint(self) -> str: ...

    @abstractmethod
    def request_headers(self) -> dict[str, str]: ...

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        headers.update(self.request_headers())
        headers.update(self._extra_headers)
        return headers

    async def open_stream(self, request: WireRequest) -> AsyncIterator[dict]:
        """Yield the raw events of one streaming request."""
        logger.debug(
            "REQUEST: provider=%s model=%s url=%s",
            self.name,
            self._model,
            self.endpoint(),
        )
        async with aclosing(
            stream_events(
                self.endpoint(),
                request.body,
                self._headers(),
                timeout=self._timeout,
                sampling=request.sampling,
                client=self._http_client,
            )
        ) as events:
            async for event in events:
                yield event

    @abstractmethod
    def new_decoder(self) -> StreamDecoder: ...
