import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum

from toolloop.context import Context
from toolloop.dispatcher import ToolDispatcher
from toolloop.errors import ToolLoopError, TransportError
from toolloop.events import (
    MessageEvent,
    RunCompleteEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from toolloop.history import ConversationHistory
from toolloop.instrumentation import (
    completion_span,
    conversation_span,
    record_error,
    record_finish_reason,
    record_usage,
)
from toolloop.message import (
    AssistantMessage,
    SystemMessage,
    ToolCallRequest,
    ToolResultMessage,
    UserMessage,
)
from toolloop.provider import Completion, ModelProvider
from toolloop.registry import ToolRegistry
from toolloop.streaming import StreamChunk, ToolCallAccumulator

logger = logging.getLogger(__name__)


class ConversationState(Enum):
    AWAITING_USER_INPUT = "awaiting_user_input"
    REQUESTING_COMPLETION = "requesting_completion"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


@dataclass
class RunResult:
    """The result of a single Orchestrator.run() invocation.

    ``dropped_tool_calls`` counts tool calls the model sent after the
    tool round limit. They were not executed.
    """

    last_message: AssistantMessage
    tool_rounds: int
    finish_reason: str | None = None
    dropped_tool_calls: int = 0

    @property
    def text(self) -> str:
        return self.last_message.content or ""


def _unique_call_ids(calls: list[ToolCallRequest]) -> list[ToolCallRequest]:
    """Replace empty or repeated call ids with ``call_<position>``.

    Each tool result answers exactly one call, so ids must be distinct
    within one assistant message.
    """
    taken = {tc.id for tc in calls}
    seen: set[str] = set()
    result = []
    for position, tc in enumerate(calls):
        if tc.id and tc.id not in seen:
            seen.add(tc.id)
            result.append(tc)
            continue
        new_id = f"call_{position}"
        suffix = 0
        while new_id in taken or new_id in seen:
            suffix += 1
            new_id = f"call_{position}_{suffix}"
        logger.warning(
            f"Tool call {tc.name} at position {position} has "
            f"{'a repeated' if tc.id else 'no'} id, using {new_id}"
        )
        seen.add(new_id)
        result.append(tc.model_copy(update={"id": new_id}))
    return result


class Orchestrator:
    """Drives one conversation between a user, a model and local tools.

    Each turn appends the user message, asks the model for a completion
    with the registry's tools attached, runs every requested tool in the
    order it was issued, appends the results and asks again. The turn
    ends when the model answers without tool calls.

    Tools are offered for at most ``max_tool_rounds`` rounds per turn,
    counted from the history since the latest user message. With the
    default of 1 the follow-up request that carries the tool results
    offers no tools, so a turn makes at most two requests. Tool calls
    the model sends anyway are dropped and counted in
    ``RunResult.dropped_tool_calls``.

    ``run()`` drains ``iter()``. ``iter()`` is the streaming entry point;
    both accept ``stream`` to choose between whole and streamed
    completions.

    Args:
        provider: Completion transport.
        model: Model name sent with every request.
        registry: Tools the model may call.
        system_prompt: Stored as the first history message when the
            history is empty.
        max_tool_rounds: Maximum tool-execution rounds per turn.
        history: Existing history to continue.
    """

    def __init__(
        self,
        provider: ModelProvider,
        model: str,
        registry: ToolRegistry | None = None,
        system_prompt: str | None = None,
        max_tool_rounds: int = 1,
        history: ConversationHistory | None = None,
    ):
        if max_tool_rounds < 0:
            raise ValueError("max_tool_rounds must be >= 0")
        self.provider = provider
        self.model = model
        self.registry = registry or ToolRegistry()
        self.dispatcher = ToolDispatcher(self.registry)
        self.max_tool_rounds = max_tool_rounds
        self.history = history if history is not None else ConversationHistory()
        self.state = ConversationState.AWAITING_USER_INPUT
        self._running = False
        if system_prompt and not self.history.messages:
            self.history.append(SystemMessage(content=system_prompt))

    async def run(
        self, user_message: str | None = None, stream: bool = False,
    ) -> RunResult:
        """Run one turn to completion and return the final answer.

        Pass ``user_message=None`` to retry the current turn after a
        :class:`TransportError` or :class:`MalformedStreamError`.
        """
        result: RunResult | None = None
        async for event in self.iter(user_message, stream=stream):
            if isinstance(event, RunCompleteEvent):
                result = event.result
        if result is None:
            raise RuntimeError("iter() ended without emitting RunCompleteEvent")
        return result

    async def iter(
        self, user_message: str | None = None, stream: bool = True,
    ) -> AsyncIterator[StreamEvent]:
        """Run one turn, yielding events as execution proceeds.

        Closing the iterator early closes the provider stream and leaves
        the history as it was after the last completed step.
        """
        if self._running:
            raise RuntimeError("A turn is already running on this conversation")
        self._running = True
        try:
            async with conversation_span(
                self.history.conversation_id, self.model,
            ) as span:
                try:
                    async with aclosing(
                        self._turn(user_message, stream),
                    ) as events:
                        async for event in events:
                            yield event
                except ToolLoopError as e:
                    record_error(span, e)
                    raise
        finally:
            self._running = False
            if self.state is not ConversationState.DONE:
                self.state = ConversationState.AWAITING_USER_INPUT

    # ------------------------------------------------------------------
    # Turn state machine
    # ------------------------------------------------------------------

    def _turn_finished(self) -> bool:
        last = self.history.last
        if last is None or isinstance(last, SystemMessage):
            return True
        return isinstance(last, AssistantMessage) and not last.tool_calls

    async def _turn(
        self, user_message: str | None, stream: bool,
    ) -> AsyncIterator[StreamEvent]:
        if user_message is not None:
            self.history.append(UserMessage(content=user_message))
        elif self._turn_finished():
            raise ValueError("Nothing to resume: pass a user message")

        # A cancelled turn can leave calls unanswered.
        pending = self.history.pending_tool_calls()
        if pending:
            logger.info(f"Resuming {len(pending)} unanswered tool call(s)")
            async with aclosing(self._execute_tools(pending)) as events:
                async for event in events:
                    yield event

        while True:
            tool_rounds = self.history.tool_rounds()
            offer_tools = (
                len(self.registry) > 0
                and tool_rounds < self.max_tool_rounds
            )
            tools = self.registry.tool_schemas() if offer_tools else None
            messages = self.history.dump()
            self.state = ConversationState.REQUESTING_COMPLETION

            if stream:
                acc = ToolCallAccumulator()
                parts: list[str] = []
                finish_reason = None
                try:
                    async with completion_span(
                        self.provider.name, self.model, stream=True,
                    ) as span:
                        async with aclosing(
                            self._stream(messages, tools),
                        ) as chunks:
                            async for chunk in chunks:
                                if chunk.content_delta:
                                    parts.append(chunk.content_delta)
                                    yield TextDeltaEvent(
                                        content=chunk.content_delta,
                                    )
                                for fragment in chunk.tool_call_fragments or []:
                                    acc.feed(fragment)
                                if chunk.finish_reason:
                                    finish_reason = chunk.finish_reason
                                if chunk.usage is not None:
                                    record_usage(span, chunk.usage, chunk.model)
                        record_finish_reason(span, finish_reason)
                        tool_calls = acc.finalize()
                finally:
                    acc.discard()
                assistant = AssistantMessage(
                    content="".join(parts) or None, tool_calls=tool_calls,
                )
            else:
                async with completion_span(
                    self.provider.name, self.model,
                ) as span:
                    completion = await self._complete(messages, tools)
                    record_usage(span, completion.usage, completion.model)
                    record_finish_reason(span, completion.finish_reason)
                assistant = AssistantMessage.from_completion(completion.message)
                finish_reason = completion.finish_reason
                if assistant.content:
                    yield TextDeltaEvent(content=assistant.content)

            dropped = 0
            if assistant.tool_calls and not offer_tools:
                dropped = len(assistant.tool_calls)
                logger.warning(
                    f"Ignoring {dropped} tool call(s) "
                    f"requested after the tool round limit"
                )
                assistant = AssistantMessage(content=assistant.content)
            elif assistant.tool_calls:
                assistant = AssistantMessage(
                    content=assistant.content,
                    tool_calls=_unique_call_ids(assistant.tool_calls),
                )

            self.history.append(assistant)

            if not assistant.tool_calls:
                self.state = ConversationState.DONE
                yield MessageEvent(message=assistant, dropped_tool_calls=dropped)
                yield RunCompleteEvent(result=RunResult(
                    last_message=assistant,
                    tool_rounds=tool_rounds,
                    finish_reason=finish_reason,
                    dropped_tool_calls=dropped,
                ))
                return

            async with aclosing(
                self._execute_tools(assistant.tool_calls),
            ) as events:
                async for event in events:
                    yield event

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _wrap_transport_error(self, e: Exception) -> TransportError:
        return TransportError(
            f"{self.provider.name} completion request failed: {e}",
            provider=self.provider.name,
            model=self.model,
        )

    async def _complete(self, messages, tools) -> Completion:
        try:
            return await self.provider.complete(
                self.model, messages, tools=tools,
            )
        except ToolLoopError:
            raise
        except Exception as e:
            raise self._wrap_transport_error(e) from e

    async def _stream(self, messages, tools) -> AsyncIterator[StreamChunk]:
        try:
            async with aclosing(self.provider.stream_complete(
                self.model, messages, tools=tools,
            )) as chunks:
                async for chunk in chunks:
                    yield chunk
        except ToolLoopError:
            raise
        except Exception as e:
            raise self._wrap_transport_error(e) from e

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_tools(
        self, calls: list[ToolCallRequest],
    ) -> AsyncIterator[StreamEvent]:
        self.state = ConversationState.EXECUTING_TOOLS
        for tc in calls:
            yield ToolCallEvent(call=tc)
            outcome = await self.dispatcher.dispatch(
                tc, Context(history=self.history, tool_call=tc),
            )
            self.history.append(ToolResultMessage(
                content=outcome.output, tool_call_id=tc.id,
            ))
            yield ToolResultEvent(
                call=tc, output=outcome.output, is_error=outcome.is_error,
            )
