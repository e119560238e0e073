import uuid

from pydantic import BaseModel, Field

from toolloop.errors import HistoryError
from toolloop.message import (
    AssistantMessage,
    Message,
    ToolCallRequest,
    ToolResultMessage,
    UserMessage,
)


class ConversationHistory(BaseModel):
    """Append-only message log for one conversation.

    Every tool call of an assistant message must be answered by exactly
    one :class:`ToolResultMessage` before any other message is appended.
    """

    conversation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    messages: list[Message] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self):
        return iter(self.messages)

    def __getitem__(self, index):
        return self.messages[index]

    @property
    def last(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def pending_tool_calls(self) -> list[ToolCallRequest]:
        """Tool calls of the latest assistant message still lacking a result."""
        answered: set[str] = set()
        for message in reversed(self.messages):
            if isinstance(message, ToolResultMessage):
                answered.add(message.tool_call_id)
                continue
            if isinstance(message, AssistantMessage):
                return [
                    tc for tc in message.tool_calls if tc.id not in answered
                ]
            break
        return []

    def tool_rounds(self) -> int:
        """Count assistant messages with tool calls since the latest user message."""
        rounds = 0
        for message in reversed(self.messages):
            if isinstance(message, UserMessage):
                break
            if isinstance(message, AssistantMessage) and message.tool_calls:
                rounds += 1
        return rounds

    def append(self, message: Message) -> None:
        pending = self.pending_tool_calls()
        if isinstance(message, ToolResultMessage):
            if message.tool_call_id not in {tc.id for tc in pending}:
                raise HistoryError(
                    f"Tool result for '{message.tool_call_id}' does not answer "
                    f"a pending tool call"
                )
        elif pending:
            raise HistoryError(
                f"{len(pending)} tool call(s) still awaiting results: "
                + ", ".join(tc.id for tc in pending)
            )
        self.messages.append(message)

    def dump(self) -> list[dict]:
        """Render every message as an OpenAI chat message dict."""
        return [m.model_dump() for m in self.messages]
