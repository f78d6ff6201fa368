"""
Server-Sent Events transport shared by every provider adapter.

Opens a streaming POST with ``httpx``, maps error statuses onto the
``TransportError`` hierarchy and yields each ``data:`` payload as a parsed
JSON object.  The stream ends on ``data: [DONE]`` or when the server closes
the connection.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Iterable

import httpx

from polychat.llm.errors import TransportError, UnsupportedParameterError

logger = logging.getLogger(__name__)

_UNSUPPORTED_MARKERS = ("not supported", "does not support", "unsupported")


def detect_unsupported_parameter(
    message: str, parameters: Iterable[str]
) -> str | None:
    """
    Return the sampling parameter a provider error message rejects, if any.

    The message must name the parameter and say it is unsupported.
    """
    lower = message.lower()
    if not any(marker in lower for marker in _UNSUPPORTED_MARKERS):
        return None
    for param in parameters:
        if param.lower() in lower:
            return param
    return None


def error_message(body: str) -> str:
    """Pull the human-readable message out of a provider error body."""
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip()
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        err = data.get("error", data)
        if isinstance(err, dict):
            return str(err.get("message") or err)
        return str(err)
    return body.strip()


def raise_for_status(status_code: int, body: str, sampling: Iterable[str]) -> None:
    if status_code < 400:
        return
    message = error_message(body)
    if status_code == 400:
        param = detect_unsupported_parameter(message, sampling)
        if param is not None:
            raise UnsupportedParameterError(
                param,
                f"HTTP 400: {message}",
                status_code=status_code,
                body=body,
            )
    raise TransportError(
        f"HTTP {status_code}: {message}", status_code=status_code, body=body
    )


async def stream_events(
    url: str,
    body: dict,
    headers: dict[str, str],
    *,
    timeout: float = 120.0,
    sampling: Iterable[str] = (),
    client: httpx.AsyncClient | None = None,
) -> AsyncIterator[dict]:
    """
    POST *body* to *url* and yield every SSE ``data`` payload as a dict.

    *sampling* names the sampling parameters set on the request, so an HTTP
    400 rejecting one of them surfaces as ``UnsupportedParameterError``.
    """
    sampling = tuple(sampling)
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout)
    try:
        async with client.stream("POST", url, json=body, headers=headers) as response:
            if response.status_code >= 400:
                # Read the body so the connection is released.
                raw = await response.aread()
                raise_for_status(
                    response.status_code,
                    raw.decode("utf-8", errors="replace"),
                    sampling,
                )
            async for data in _parse_sse(response):
                yield data
    except httpx.HTTPError as exc:
        raise TransportError(f"{type(exc).__name__}: {exc}") from exc
    finally:
        if owns_client:
            await client.aclose()


async def _parse_sse(response: httpx.Response) -> AsyncIterator[dict]:
    # Decoded incrementally; characters may span network reads.
    async for line in response.aiter_lines():
        line = line.rstrip("\r")

        if not line or not line.startswith("data:"):
            # Event boundaries, ``event:`` names and comments.
            continue

        data_str = line[len("data:"):].strip()
        if data_str == "[DONE]":
            return

        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            logger.warning("Failed to parse SSE data: %s", data_str[:200])
            continue

        logger.debug("SSE event: %s", data_str[:500])
        if isinstance(data, dict):
            yield data
