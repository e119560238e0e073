from toolloop.dispatcher import ToolDispatcher, ToolOutcome
from toolloop.errors import (
    ArgumentParseError,
    ArgumentValidationError,
    DuplicateToolError,
    HistoryError,
    MalformedStreamError,
    ToolCallError,
    ToolLoopError,
    TransportError,
    UnknownToolError,
)
from toolloop.events import (
    MessageEvent,
    RunCompleteEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from toolloop.history import ConversationHistory
from toolloop.instrumentation import instrument, uninstrument
from toolloop.message import (
    AssistantMessage,
    Message,
    MessageRole,
    SystemMessage,
    ToolCallRequest,
    ToolResultMessage,
    UserMessage,
)
from toolloop.orchestrator import ConversationState, Orchestrator, RunResult
from toolloop.provider import (
    Completion,
    ModelProvider,
    OpenAICompatibleProvider,
    OpenAIProvider,
    OpenRouter,
)
from toolloop.registry import ToolRegistry
from toolloop.streaming import StreamChunk, ToolCallAccumulator, ToolCallFragment
from toolloop.tools import Tool, ToolDescriptor, tool

__all__ = [
    "ArgumentParseError",
    "ArgumentValidationError",
    "AssistantMessage",
    "Completion",
    "ConversationHistory",
    "ConversationState",
    "DuplicateToolError",
    "HistoryError",
    "MalformedStreamError",
    "Message",
    "MessageEvent",
    "MessageRole",
    "ModelProvider",
    "OpenAICompatibleProvider",
    "OpenAIProvider",
    "OpenRouter",
    "Orchestrator",
    "RunCompleteEvent",
    "RunResult",
    "StreamChunk",
    "StreamEvent",
    "SystemMessage",
    "TextDeltaEvent",
    "Tool",
    "ToolCallAccumulator",
    "ToolCallError",
    "ToolCallEvent",
    "ToolCallFragment",
    "ToolCallRequest",
    "ToolDescriptor",
    "ToolDispatcher",
    "ToolLoopError",
    "ToolOutcome",
    "ToolRegistry",
    "ToolResultEvent",
    "ToolResultMessage",
    "TransportError",
    "UnknownToolError",
    "UserMessage",
    "instrument",
    "tool",
    "uninstrument",
]
