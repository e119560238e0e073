"""Exception hierarchy for toolloop.

Tool-call errors (:class:`UnknownToolError`, :class:`ArgumentParseError`,
:class:`ArgumentValidationError`) are caught per call by the dispatcher and
turned into tool results. :class:`MalformedStreamError` and
:class:`TransportError` abort the current round and reach the caller.
:class:`DuplicateToolError` is raised at registration time.
"""

from __future__ import annotations


class ToolLoopError(Exception):
    """Base for all toolloop errors."""


class DuplicateToolError(ToolLoopError):
    """A tool with the same name is already registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class HistoryError(ToolLoopError):
    """A message would break the tool-call / tool-result pairing."""


class ToolCallError(ToolLoopError):
    """Base for failures tied to a single tool call.

    Attributes:
        tool_name: Name the model asked for.
        arguments: Raw argument text exactly as the model sent it.
    """

    def __init__(self, message: str, tool_name: str, arguments: str) -> None:
        self.tool_name = tool_name
        self.arguments = arguments
        super().__init__(message)

    def to_payload(self) -> dict:
        """Return the error as a JSON-serialisable tool result."""
        return {
            "error": str(self),
            "type": type(self).__name__,
            "tool": self.tool_name,
            "arguments": self.arguments,
        }


class UnknownToolError(ToolCallError):
    """The requested tool is not registered."""

    def __init__(self, tool_name: str, arguments: str = "") -> None:
        super().__init__(
            f"Unknown tool '{tool_name}'", tool_name, arguments,
        )


class ArgumentParseError(ToolCallError):
    """The argument payload is not a JSON object."""


class ArgumentValidationError(ToolCallError):
    """Parsed arguments do not satisfy the tool's schema.

    Attributes:
        missing: Required fields absent from the payload.
    """

    def __init__(
        self,
        message: str,
        tool_name: str,
        arguments: str,
        missing: list[str] | None = None,
    ) -> None:
        self.missing = missing or []
        super().__init__(message, tool_name, arguments)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.missing:
            payload["missing"] = self.missing
        return payload


class MalformedStreamError(ToolLoopError):
    """A streamed response ended with an incomplete tool call."""

    def __init__(self, message: str, index: int) -> None:
        self.index = index
        super().__init__(message)


class TransportError(ToolLoopError):
    """The completion request or stream failed.

    The original exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        super().__init__(message)
