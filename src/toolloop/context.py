from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from toolloop.history import ConversationHistory
    from toolloop.message import ToolCallRequest


@dataclass
class Context:
    """Runtime context injected into tools that declare a ``context`` parameter.

    The orchestrator builds one per tool call, so a tool can read the
    conversation so far and the call it is answering. Tools must treat the
    history as read-only.

    Args:
        history: The conversation history, up to and including the
            assistant message that issued this call.
        tool_call: The tool call being executed.
    """

    history: ConversationHistory
    tool_call: ToolCallRequest
