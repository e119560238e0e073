from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class ToolCallRequest(BaseModel):
    """A tool call issued by the model.

    ``arguments`` is the raw JSON text; it is parsed by the dispatcher.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: str = ""

    @classmethod
    def from_openai(cls, tool_call: Any) -> "ToolCallRequest":
        """Build from a whole-response tool call (``.id``, ``.function``)."""
        return cls(
            id=tool_call.id or "",
            name=tool_call.function.name,
            arguments=tool_call.function.arguments or "",
        )

    def to_openai(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": self.arguments,
            },
        }


class Message(BaseModel):
    role: MessageRole
    content: str | None = None

    @field_serializer("role")
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value


class SystemMessage(Message):
    role: MessageRole = MessageRole.SYSTEM
    content: str


class UserMessage(Message):
    role: MessageRole = MessageRole.USER
    content: str


class AssistantMessage(Message):
    role: MessageRole = MessageRole.ASSISTANT
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)

    @classmethod
    def from_completion(cls, message: Any) -> "AssistantMessage":
        """Convert ``choices[0].message`` of a chat completion."""
        tool_calls = [
            ToolCallRequest.from_openai(tc)
            for tc in (getattr(message, "tool_calls", None) or [])
            if getattr(tc, "type", "function") == "function"
        ]
        return cls(content=message.content, tool_calls=tool_calls)

    @model_serializer(mode="wrap")
    def serialize(self, handler) -> dict:
        data = handler(self)
        if self.tool_calls:
            data["tool_calls"] = [tc.to_openai() for tc in self.tool_calls]
        else:
            data.pop("tool_calls", None)
        return data


class ToolResultMessage(Message):
    role: MessageRole = MessageRole.TOOL
    content: str
    tool_call_id: str
