"""
Assembles streaming tool-call deltas into complete ToolCall objects.

Design goals:
  - Accumulate ``RawToolDelta`` fragments into ``PendingToolCall`` records
    keyed by the provider's own ``call_index``.
  - Finalize a call as soon as its argument buffer is a complete JSON object,
    or when the provider signals ``done=True`` (or at an explicit
    ``flush()``).  Whichever comes first wins; each index is finalized at
    most once per stream.
  - If parsing fails at a done/flush boundary the call is *dropped* and an
    error is recorded -- the caller can inspect ``self.errors`` and surface
    the failure to the user or log it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from polychat.llm.types import RawToolDelta, ToolCall

logger = logging.getLogger(__name__)


@dataclass
class PendingToolCall:
    """A tool call whose arguments are still streaming in."""

    call_index: int
    id: str | None = None
    name: str = ""
    args: str = ""


def _parse_object(raw: str) -> dict | None:
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


class ToolCallAssembler:
    """Buffers raw tool-call deltas and emits finished ``ToolCall`` objects."""

    def __init__(self) -> None:
        self._pending: dict[int, PendingToolCall] = {}
        self._finalized: set[int] = set()
        self.errors: list[str] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, delta: RawToolDelta) -> list[ToolCall]:
        """
        Feed a single ``RawToolDelta`` into the assembler.

        Returns a (possibly empty) list of completed ``ToolCall`` objects.
        """
        idx = delta.call_index
        if idx in self._finalized:
            if delta.args_delta or delta.name_delta:
                logger.debug(
                    "ignoring fragment for finalized tool call idx=%d", idx
                )
            return []

        pending = self._pending.setdefault(idx, PendingToolCall(call_index=idx))

        if delta.id and not pending.id:
            pending.id = delta.id

        if delta.name_delta:
            pending.name += delta.name_delta

        if delta.args_delta:
            pending.args += delta.args_delta

        if delta.done:
            return self._finalize(idx)

        if pending.name.strip() and pending.args.strip():
            if _parse_object(pending.args) is not None:
                return self._finalize(idx)

        return []

    def flush(self) -> list[ToolCall]:
        """
        Finalize *all* remaining buffers, regardless of whether a ``done``
        delta was received.  Useful at stream end.

        Returns any successfully assembled ``ToolCall`` objects, in
        ``call_index`` order.
        """
        calls: list[ToolCall] = []
        for idx in sorted(self._pending):
            calls.extend(self._finalize(idx))
        return calls

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._pending.clear()
        self._finalized.clear()
        self.errors.clear()

    @property
    def pending(self) -> list[PendingToolCall]:
        return [self._pending[idx] for idx in sorted(self._pending)]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finalize(self, idx: int) -> list[ToolCall]:
        pending = self._pending.pop(idx, None)
        if pending is None:
            return []
        self._finalized.add(idx)

        raw_args = pending.args.strip() or "{}"
        if _parse_object(raw_args) is None:
            self.errors.append(
                f"tool_call_json_parse_failed idx={idx} args={raw_args[:200]!r}"
            )
            return []

        name = pending.name.strip()
        if not name:
            self.errors.append(f"tool_call_missing_name idx={idx}")
            return []

        call_id = pending.id or f"call_{idx}"
        return [ToolCall(id=call_id, name=name, arguments=raw_args)]
