"""Tests for the streamed mode of Orchestrator.iter()."""

import json
from unittest.mock import MagicMock

import pytest

from toolloop.errors import MalformedStreamError, TransportError
from toolloop.events import (
    MessageEvent,
    RunCompleteEvent,
    TextDeltaEvent,
    ToolResultEvent,
)
from toolloop.message import AssistantMessage, ToolResultMessage, UserMessage
from toolloop.orchestrator import ConversationState
from toolloop.streaming import StreamChunk, ToolCallFragment

from tests.conftest import (
    make_multi_tool_call_response,
    make_text_response,
    make_tool_call_response,
)


def _fragment(index, call_id=None, name=None, arguments=None):
    return StreamChunk(tool_call_fragments=[ToolCallFragment(
        index=index, call_id=call_id, name=name, arguments_delta=arguments,
    )])


# ---------------------------------------------------------------------------
# Event stream
# ---------------------------------------------------------------------------

class TestStreamedEvents:
    @pytest.mark.asyncio
    async def test_text_deltas_forwarded(self, make_orchestrator, mock_provider):
        mock_provider.responses = [make_text_response("Hello!")]
        conversation = make_orchestrator()

        events = [e async for e in conversation.iter("Hi")]

        assert [type(e) for e in events] == [
            TextDeltaEvent,
            TextDeltaEvent,
            MessageEvent,
            RunCompleteEvent,
        ]
        assert "".join(e.content for e in events[:2]) == "Hello!"
        assert events[2].message.content == "Hello!"
        assert events[-1].result.finish_reason == "stop"
        assert mock_provider.call_log[0]["stream"] is True

    @pytest.mark.asyncio
    async def test_deltas_arrive_before_stream_ends(
        self, make_orchestrator, mock_provider
    ):
        seen = []

        class RecordingProvider(type(mock_provider)):
            async def stream_complete(self, model, messages, tools=None):
                async for chunk in super().stream_complete(
                    model, messages, tools,
                ):
                    seen.append(chunk)
                    yield chunk

        provider = RecordingProvider()
        provider.responses = [make_text_response("Hello there")]
        conversation = make_orchestrator(provider=provider)

        events = conversation.iter("Hi")
        first = await events.__anext__()
        assert isinstance(first, TextDeltaEvent)
        # Only the first chunk has been pulled from the provider.
        assert len(seen) == 1
        await events.aclose()

    @pytest.mark.asyncio
    async def test_tool_round_events(self, make_orchestrator, mock_provider):
        mock_provider.responses = [
            make_tool_call_response("echo", {"text": "hi"}, content="Checking"),
            make_text_response("Done"),
        ]
        conversation = make_orchestrator()

        events = [e async for e in conversation.iter("go")]
        names = [type(e).__name__ for e in events]

        assert names == [
            "TextDeltaEvent", "TextDeltaEvent",
            "ToolCallEvent", "ToolResultEvent",
            "TextDeltaEvent", "TextDeltaEvent",
            "MessageEvent", "RunCompleteEvent",
        ]
        assert conversation.history[1].content == "Checking"


# ---------------------------------------------------------------------------
# Reassembly
# ---------------------------------------------------------------------------

class TestReassembly:
    @pytest.mark.asyncio
    async def test_split_name_and_arguments(
        self, make_orchestrator, mock_provider
    ):
        mock_provider.responses = [
            [
                _fragment(0, call_id="call_w", name="get_cur"),
                _fragment(0, name="rent_weather", arguments='{"location": "Lag'),
                _fragment(0, arguments='os, Nigeria"}'),
                StreamChunk(finish_reason="tool_calls"),
            ],
            make_text_response("Sunny, 31 degrees."),
        ]
        conversation = make_orchestrator()

        result = await conversation.run("weather in Lagos", stream=True)

        call = conversation.history[1].tool_calls[0]
        assert call.id == "call_w"
        assert call.name == "get_current_weather"
        assert json.loads(call.arguments) == {"location": "Lagos, Nigeria"}
        assert json.loads(conversation.history[2].content)["location"] == (
            "Lagos, Nigeria"
        )
        assert result.text == "Sunny, 31 degrees."

    @pytest.mark.asyncio
    async def test_interleaved_calls_keep_index_order(
        self, make_orchestrator, mock_provider
    ):
        mock_provider.responses = [
            [
                _fragment(1, call_id="c_b", name="async_"),
                _fragment(0, call_id="c_a", name="ec"),
                _fragment(1, name="echo", arguments='{"text": '),
                _fragment(0, name="ho", arguments='{"text": "a"}'),
                _fragment(1, arguments='"b"}'),
                StreamChunk(finish_reason="tool_calls"),
            ],
            make_text_response("Done"),
        ]
        conversation = make_orchestrator()

        await conversation.run("go", stream=True)

        results = [
            m for m in conversation.history if isinstance(m, ToolResultMessage)
        ]
        assert [(r.tool_call_id, r.content) for r in results] == [
            ("c_a", "a"), ("c_b", "async: b"),
        ]

    @pytest.mark.asyncio
    async def test_streamed_history_matches_whole_response(
        self, make_orchestrator, mock_provider
    ):
        def script():
            return [
                make_multi_tool_call_response([
                    ("echo", {"text": "x"}, "c1"),
                    ("get_data", {}, "c2"),
                ], content="Let me check"),
                make_text_response("All done"),
            ]

        mock_provider.responses = script()
        whole = make_orchestrator()
        await whole.run("go", stream=False)

        mock_provider.responses = script()
        streamed = make_orchestrator()
        await streamed.run("go", stream=True)

        assert streamed.history.dump() == whole.history.dump()

    @pytest.mark.asyncio
    async def test_repeated_ids_across_indexes_made_unique(
        self, make_orchestrator, mock_provider
    ):
        mock_provider.responses = [
            [
                _fragment(0, call_id="same", name="echo", arguments='{"text": "a"}'),
                _fragment(1, call_id="same", name="echo", arguments='{"text": "b"}'),
                StreamChunk(finish_reason="tool_calls"),
            ],
            make_text_response("Done"),
        ]
        conversation = make_orchestrator()

        result = await conversation.run("go", stream=True)

        assert result.text == "Done"
        results = [
            m for m in conversation.history if isinstance(m, ToolResultMessage)
        ]
        assert [(r.tool_call_id, r.content) for r in results] == [
            ("same", "a"), ("call_1", "b"),
        ]

    @pytest.mark.asyncio
    async def test_trailing_usage_recorded(
        self, make_orchestrator, mock_provider, monkeypatch
    ):
        recorded = MagicMock()
        monkeypatch.setattr("toolloop.orchestrator.record_usage", recorded)
        usage = MagicMock(prompt_tokens=12, completion_tokens=3)
        mock_provider.responses = [
            [
                StreamChunk(content_delta="Hi"),
                StreamChunk(finish_reason="stop"),
                StreamChunk(usage=usage, model="mock-model-0613"),
            ],
        ]

        result = await make_orchestrator().run("Hi", stream=True)

        assert result.text == "Hi"
        recorded.assert_called_once_with(None, usage, "mock-model-0613")


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestStreamFailures:
    @pytest.mark.asyncio
    async def test_unnamed_call_aborts_round(
        self, make_orchestrator, mock_provider
    ):
        mock_provider.responses = [
            [
                _fragment(0, call_id="c1", arguments='{"text": "hi"}'),
                StreamChunk(finish_reason="tool_calls"),
            ],
            make_text_response("Recovered"),
        ]
        conversation = make_orchestrator()

        with pytest.raises(MalformedStreamError):
            await conversation.run("go", stream=True)

        assert len(conversation.history) == 1
        assert isinstance(conversation.history[0], UserMessage)
        assert conversation.state is ConversationState.AWAITING_USER_INPUT

        result = await conversation.run(stream=True)
        assert result.text == "Recovered"
        assert len(conversation.history) == 2

    @pytest.mark.asyncio
    async def test_mid_stream_failure_appends_nothing(
        self, make_orchestrator, mock_provider
    ):
        mock_provider.responses = [
            [StreamChunk(content_delta="Hel"), ConnectionError("reset")],
        ]
        conversation = make_orchestrator()
        received = []

        with pytest.raises(TransportError):
            async for event in conversation.iter("Hi"):
                received.append(event)

        assert [e.content for e in received] == ["Hel"]
        assert len(conversation.history) == 1

    @pytest.mark.asyncio
    async def test_transport_error_passes_through(
        self, make_orchestrator, mock_provider
    ):
        error = TransportError("rate limited", provider="mock", model="m")
        mock_provider.responses = [error]

        with pytest.raises(TransportError) as excinfo:
            await make_orchestrator().run("Hi", stream=True)

        assert excinfo.value is error


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class TestCancellation:
    @pytest.mark.asyncio
    async def test_close_mid_stream_appends_nothing(
        self, make_orchestrator, mock_provider
    ):
        closed = []

        class ClosingProvider(type(mock_provider)):
            async def stream_complete(self, model, messages, tools=None):
                try:
                    async for chunk in super().stream_complete(
                        model, messages, tools,
                    ):
                        yield chunk
                finally:
                    closed.append(True)

        provider = ClosingProvider()
        provider.responses = [
            make_text_response("A long answer"),
            make_text_response("Second try"),
        ]
        conversation = make_orchestrator(provider=provider)

        events = conversation.iter("Hi")
        await events.__anext__()
        await events.aclose()

        assert closed == [True]
        assert len(conversation.history) == 1
        assert conversation.state is ConversationState.AWAITING_USER_INPUT

        result = await conversation.run(stream=True)
        assert result.text == "Second try"
        assert closed == [True, True]

    @pytest.mark.asyncio
    async def test_unanswered_calls_resumed(
        self, make_orchestrator, mock_provider
    ):
        mock_provider.responses = [
            make_multi_tool_call_response([
                ("echo", {"text": "one"}, "c1"),
                ("echo", {"text": "two"}, "c2"),
            ]),
            make_text_response("Done"),
        ]
        conversation = make_orchestrator()

        events = conversation.iter("go")
        async for event in events:
            if isinstance(event, ToolResultEvent):
                break
        await events.aclose()

        assert [c.id for c in conversation.history.pending_tool_calls()] == [
            "c2",
        ]

        result = await conversation.run(stream=True)

        assert result.text == "Done"
        assert result.tool_rounds == 1
        assert [type(m) for m in conversation.history] == [
            UserMessage, AssistantMessage,
            ToolResultMessage, ToolResultMessage,
            AssistantMessage,
        ]
        assert conversation.history[3].content == "two"
        assert len(mock_provider.call_log) == 2
