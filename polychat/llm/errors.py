"""Error taxonomy for the chat engine."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for every error raised by polychat."""


class ConversionError(ChatError):
    """
    A message cannot be rendered into a provider's wire format.

    Raised before any network call is made.  *index* is the position of the
    offending message within the rendered history, when known.
    """

    def __init__(self, message: str, *, index: int | None = None) -> None:
        self.detail = message
        if index is not None:
            message = f"converting message {index}: {message}"
        super().__init__(message)
        self.index = index


StructuralError = ConversionError


class TransportError(ChatError):
    """The provider request failed or its stream broke mid-flight."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UnsupportedParameterError(TransportError):
    """The selected model rejected a sampling parameter that was set."""

    def __init__(
        self,
        parameter: str,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.parameter = parameter


class RoundLimitExceeded(ChatError):
    def __init__(self, rounds: int) -> None:
        super().__init__(
            f"model still requested tools after {rounds} tool-call rounds"
        )
        self.rounds = rounds


class ToolExecutionError(ChatError):
    """A tool handler failed.  Always folded into a tool result."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class ToolNotFoundError(ToolExecutionError, KeyError):
    def __init__(self, tool_name: str) -> None:
        ToolExecutionError.__init__(self, tool_name, f"tool {tool_name!r} not found")

    def __str__(self) -> str:
        return self.args[0]
