"""Events yielded by :meth:`Orchestrator.iter`.

A successful turn yields, in order: any :class:`TextDeltaEvent` for the
assistant text, a :class:`ToolCallEvent` / :class:`ToolResultEvent` pair
per executed call, and finally one :class:`MessageEvent` followed by a
:class:`RunCompleteEvent`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from toolloop.message import AssistantMessage, ToolCallRequest

if TYPE_CHECKING:
    from toolloop.orchestrator import RunResult


@dataclass
class StreamEvent:
    """Base for all events."""


@dataclass
class TextDeltaEvent(StreamEvent):
    """Assistant text, forwarded as soon as it arrives.

    In whole-response mode the complete text arrives as one delta.
    """

    content: str = ""


@dataclass
class ToolCallEvent(StreamEvent):
    """``call`` is about to be dispatched."""

    call: ToolCallRequest


@dataclass
class ToolResultEvent(StreamEvent):
    """``call`` finished and its result was appended to the history.

    ``is_error`` is set when ``output`` is an error payload.
    """

    call: ToolCallRequest
    output: str
    is_error: bool = False


@dataclass
class MessageEvent(StreamEvent):
    """The assistant message that ends the turn was appended.

    ``dropped_tool_calls`` counts calls the model sent after the tool
    round limit; they were removed from ``message``.
    """

    message: AssistantMessage
    dropped_tool_calls: int = 0


@dataclass
class RunCompleteEvent(StreamEvent):
    """Final event of a successful turn."""

    result: RunResult
