"""
Conversation state -- the system prompt, message log and usage counters.

Readers copy state out with ``snapshot()``; the only mutator is ``append()``,
which merges one completed exchange in atomically.  Neither holds the lock
across I/O.
"""

from __future__ import annotations

import copy
import logging
import threading

from polychat.llm.types import Message, TokenUsage, TokenUsageDetails

logger = logging.getLogger(__name__)


class ConversationState:
    def __init__(
        self, system_prompt: str = "", messages: list[Message] | None = None
    ) -> None:
        self._system_prompt = system_prompt
        self._messages: list[Message] = copy.deepcopy(list(messages or []))
        self._last_usage = TokenUsageDetails()
        self._cumulative = TokenUsageDetails()
        self._lock = threading.Lock()

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    def snapshot(self) -> tuple[str, list[Message]]:
        """Return the system prompt and an independent copy of the history."""
        with self._lock:
            return self._system_prompt, copy.deepcopy(self._messages)

    def history(self) -> tuple[str, list[Message]]:
        return self.snapshot()

    def append(
        self, messages: list[Message], usage: TokenUsageDetails | None = None
    ) -> None:
        """
        Append one completed exchange and fold in its usage.

        A zero usage total leaves both counters untouched.
        """
        added = copy.deepcopy(list(messages))
        if usage is not None and usage.total_tokens <= 0:
            usage = copy.copy(usage)
            usage.total_tokens = usage.input_tokens + usage.output_tokens
        with self._lock:
            self._messages.extend(added)
            if usage is not None and not usage.is_zero():
                self._last_usage = copy.copy(usage)
                self._cumulative = self._cumulative + usage
        logger.debug(
            "appended %d messages; cumulative tokens=%d",
            len(added),
            self._cumulative.total_tokens,
        )

    def token_usage(self) -> TokenUsage:
        with self._lock:
            return TokenUsage(
                last_message=copy.copy(self._last_usage),
                cumulative=copy.copy(self._cumulative),
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)
