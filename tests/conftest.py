import json
from dataclasses import dataclass

import pytest

from toolloop.context import Context
from toolloop.orchestrator import Orchestrator
from toolloop.provider import Completion, ModelProvider
from toolloop.registry import ToolRegistry
from toolloop.streaming import StreamChunk, ToolCallFragment
from toolloop.tools import tool


# ---------------------------------------------------------------------------
# Mock response dataclasses (mirrors OpenAI response shape)
# ---------------------------------------------------------------------------

@dataclass
class MockFunction:
    name: str
    arguments: str


@dataclass
class MockToolCall:
    id: str
    type: str
    function: MockFunction


@dataclass
class MockResponse:
    content: str | None = None
    tool_calls: list[MockToolCall] | None = None


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

def response_to_chunks(response: MockResponse) -> list[StreamChunk]:
    """Split a whole response into stream chunks.

    Text arrives in two deltas; each tool call arrives as three fragments
    (id + first half of the name, rest of the name + first half of the
    arguments, rest of the arguments).
    """
    chunks = []
    if response.content:
        half = len(response.content) // 2
        chunks.append(StreamChunk(content_delta=response.content[:half]))
        chunks.append(StreamChunk(content_delta=response.content[half:]))
    for index, tc in enumerate(response.tool_calls or []):
        name, args = tc.function.name, tc.function.arguments
        n, a = len(name) // 2, len(args) // 2
        chunks.append(StreamChunk(tool_call_fragments=[
            ToolCallFragment(index=index, call_id=tc.id, name=name[:n]),
        ]))
        chunks.append(StreamChunk(tool_call_fragments=[
            ToolCallFragment(
                index=index, name=name[n:], arguments_delta=args[:a],
            ),
        ]))
        chunks.append(StreamChunk(tool_call_fragments=[
            ToolCallFragment(index=index, arguments_delta=args[a:]),
        ]))
    chunks.append(StreamChunk(
        finish_reason="tool_calls" if response.tool_calls else "stop",
    ))
    return chunks


class MockProvider(ModelProvider):
    """Provider that returns pre-queued responses. No network calls.

    Each queued item is a :class:`MockResponse`, a list of
    :class:`StreamChunk` (streaming only) or an exception to raise.
    Exceptions inside a chunk list are raised mid-stream.
    """

    name = "mock"

    def __init__(self):
        self.responses: list = []
        self.call_log: list[dict] = []

    def _next(self, messages, tools, stream):
        self.call_log.append(
            {"messages": messages, "tools": tools, "stream": stream}
        )
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def complete(self, model, messages, tools=None):
        response = self._next(messages, tools, stream=False)
        return Completion(
            message=response,
            finish_reason="tool_calls" if response.tool_calls else "stop",
            model=model,
        )

    async def stream_complete(self, model, messages, tools=None):
        response = self._next(messages, tools, stream=True)
        if isinstance(response, MockResponse):
            response = response_to_chunks(response)
        for chunk in response:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


# ---------------------------------------------------------------------------
# Response builder helpers
# ---------------------------------------------------------------------------

def make_text_response(content: str) -> MockResponse:
    """Fake provider response with text only (no tool calls)."""
    return MockResponse(content=content)


def make_tool_call_response(
    name: str,
    args: dict | str,
    call_id: str = "call_1",
    content: str | None = None,
) -> MockResponse:
    """Fake provider response containing a single tool call.

    A ``str`` *args* is sent verbatim, which allows malformed JSON.
    """
    return make_multi_tool_call_response([(name, args, call_id)], content)


def make_multi_tool_call_response(
    calls: list[tuple[str, dict | str, str]],
    content: str | None = None,
) -> MockResponse:
    """Fake provider response containing multiple tool calls.

    Each item in *calls* is ``(func_name, args, call_id)``.
    """
    tool_calls = [
        MockToolCall(
            id=call_id,
            type="function",
            function=MockFunction(
                name=name,
                arguments=args if isinstance(args, str) else json.dumps(args),
            ),
        )
        for name, args, call_id in calls
    ]
    return MockResponse(content=content, tool_calls=tool_calls)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@tool
def echo(text: str):
    """Echo text back."""
    return text


@tool
def get_data():
    """Return structured data."""
    return {"items": [1, 2, 3]}


@tool
async def async_echo(text: str):
    """Async echo."""
    return f"async: {text}"


@tool
def explode(reason: str):
    """Always fails."""
    raise RuntimeError(reason)


@tool
def history_size(context: Context):
    """Report how many messages the conversation holds."""
    return f"{len(context.history)} messages, answering {context.tool_call.id}"


@tool
def get_current_weather(location: str, unit: str = "fahrenheit"):
    """Fake weather lookup."""
    return {"location": location, "temperature": 31, "condition": "Sunny"}


@tool
def calculate_total_price(price: float, quantity: int, tax_rate: float = 0.0):
    """Fake price arithmetic."""
    subtotal = round(price * quantity, 2)
    return {"total": round(subtotal * (1 + tax_rate), 2)}


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def registry():
    return ToolRegistry([
        echo, get_data, async_echo, explode, history_size,
        get_current_weather, calculate_total_price,
    ])


@pytest.fixture
def make_orchestrator(mock_provider, registry):
    """Factory fixture to build orchestrators on the mock provider."""
    def _make(**kwargs):
        kwargs.setdefault("provider", mock_provider)
        kwargs.setdefault("model", "mock-model")
        kwargs.setdefault("registry", registry)
        return Orchestrator(**kwargs)
    return _make
