import logging
from typing import Callable

from toolloop.errors import DuplicateToolError, UnknownToolError
from toolloop.tools import Tool, ToolDescriptor

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Catalog of the tools a model may call.

    Maps each tool name to its :class:`Tool`. Populate it at start-up and
    treat it as read-only afterwards; one registry can back any number of
    orchestrators.

    Example::

        registry = ToolRegistry()
        registry.add(get_current_weather)
        registry.register(
            ToolDescriptor(name="ping", description="Health check."),
            lambda: "pong",
        )
    """

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.add(t)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, descriptor: ToolDescriptor, handler: Callable) -> Tool:
        """Register *handler* under *descriptor*.

        The handler's typed argument model is derived from its signature;
        the descriptor's schema is what the model sees.

        Raises:
            DuplicateToolError: If ``descriptor.name`` is already taken.
        """
        return self.add(Tool.from_function(
            handler,
            name=descriptor.name,
            description=descriptor.description,
            parameters_schema=descriptor.parameters_schema,
        ))

    def add(self, t: Tool) -> Tool:
        """Register a :class:`Tool` built with ``@tool``.

        Raises:
            DuplicateToolError: If a tool with the same name exists.
        """
        if t.name in self._tools:
            raise DuplicateToolError(t.name)
        self._tools[t.name] = t
        logger.debug(f"Registered tool {t.name}")
        return t

    def lookup(self, name: str) -> Tool:
        """Return the tool registered as *name*.

        Raises:
            UnknownToolError: If no such tool exists.
        """
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError(name) from None

    def names(self) -> list[str]:
        return list(self._tools)

    def describe_all(self) -> list[ToolDescriptor]:
        """Descriptors in registration order."""
        return [t.descriptor for t in self._tools.values()]

    def tool_schemas(self) -> list[dict]:
        """OpenAI tool schemas in registration order."""
        return [d.tool_schema() for d in self.describe_all()]
