"""Streaming primitives for provider responses.

Providers yield :class:`StreamChunk` objects.  The
:class:`ToolCallAccumulator` reassembles tool calls whose id, name and
arguments arrive in fragments across multiple chunks, keyed by the
position ``index`` the provider assigns to each call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from toolloop.errors import MalformedStreamError
from toolloop.message import ToolCallRequest

logger = logging.getLogger(__name__)


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class StreamChunk:
    """Normalised streaming chunk from any provider.

    ``usage`` and ``model`` are only set on the trailing usage chunk.
    """

    content_delta: str | None = None
    tool_call_fragments: list[ToolCallFragment] | None = None
    finish_reason: str | None = None
    usage: Any = None
    model: str | None = None


@dataclass
class _PendingCall:
    id: str | None = None
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments.

    The first id seen for an index wins; name and argument deltas are
    appended in the order they arrive.
    """

    def __init__(self) -> None:
        self._pending: dict[int, _PendingCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def feed(self, fragment: ToolCallFragment) -> None:
        if fragment.index not in self._pending:
            self._pending[fragment.index] = _PendingCall()
        tc = self._pending[fragment.index]
        if fragment.call_id and tc.id is None:
            tc.id = fragment.call_id
        if fragment.name:
            tc.name += fragment.name
        if fragment.arguments_delta:
            tc.arguments += fragment.arguments_delta

    def finalize(self) -> list[ToolCallRequest]:
        """Return completed tool calls in index order and reset.

        Raises:
            MalformedStreamError: If a call never received a name.
        """
        pending, self._pending = self._pending, {}
        calls = []
        for index in sorted(pending):
            tc = pending[index]
            if not tc.name:
                raise MalformedStreamError(
                    f"Stream ended with unnamed tool call at index {index} "
                    f"(id={tc.id!r}, arguments={tc.arguments!r})",
                    index=index,
                )
            if tc.id is None:
                logger.warning(
                    f"Tool call {tc.name} at index {index} has no id"
                )
            calls.append(ToolCallRequest(
                id=tc.id or f"call_{index}",
                name=tc.name,
                arguments=tc.arguments,
            ))
        return calls

    def discard(self) -> None:
        """Drop any partially assembled calls."""
        self._pending.clear()
