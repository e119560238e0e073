"""Tool dispatch: resolve a tool call by name, validate, execute."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from pydantic import ValidationError

from toolloop.context import Context
from toolloop.errors import (
    ArgumentParseError,
    ArgumentValidationError,
    ToolCallError,
    UnknownToolError,
)
from toolloop.instrumentation import record_error, tool_span
from toolloop.message import ToolCallRequest
from toolloop.registry import ToolRegistry
from toolloop.tools import CONTEXT_PARAM

logger = logging.getLogger(__name__)


@dataclass
class ToolOutcome:
    """Result of dispatching a single tool call."""

    output: str
    is_error: bool


def _serialize(output) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)


class ToolDispatcher:
    """Executes tool calls against a :class:`ToolRegistry`.

    ``execute`` raises :class:`UnknownToolError`,
    :class:`ArgumentParseError` and :class:`ArgumentValidationError`.
    Exceptions raised by the tool itself never escape: they become a
    ``{"error": ...}`` result so the model always gets an answer.
    ``dispatch`` additionally folds the raised errors into a result.
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def parse_arguments(self, name: str, arguments: str) -> dict:
        if not arguments or not arguments.strip():
            return {}
        try:
            params = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise ArgumentParseError(
                f"Invalid JSON arguments for '{name}': {e}", name, arguments,
            ) from e
        if not isinstance(params, dict):
            raise ArgumentParseError(
                f"Arguments for '{name}' must be a JSON object, "
                f"got {type(params).__name__}",
                name, arguments,
            )
        return params

    async def execute(
        self,
        name: str,
        arguments: str,
        context: Context | None = None,
    ) -> str:
        """Run tool *name* with the raw JSON *arguments* and return its output."""
        outcome = await self._execute(name, arguments, context)
        return outcome.output

    async def _execute(
        self,
        name: str,
        arguments: str,
        context: Context | None,
    ) -> ToolOutcome:
        try:
            tool_obj = self.registry.lookup(name)
        except UnknownToolError:
            raise UnknownToolError(name, arguments) from None
        params = self.parse_arguments(name, arguments)

        missing = [
            key for key in tool_obj.descriptor.required if key not in params
        ]
        if missing:
            raise ArgumentValidationError(
                f"Missing required argument(s) for '{name}': "
                + ", ".join(missing),
                name, arguments, missing=missing,
            )
        try:
            kwargs = tool_obj.validate_arguments(params)
        except ValidationError as e:
            raise ArgumentValidationError(
                f"Invalid arguments for '{name}': {e}", name, arguments,
            ) from e

        if tool_obj.wants_context:
            kwargs[CONTEXT_PARAM] = context

        logger.info(f"Calling {name} with {kwargs}")
        try:
            result = await tool_obj(**kwargs)
        except Exception as e:
            logger.error(f"Tool {name} raised: {e}")
            return ToolOutcome(
                output=json.dumps({"error": str(e)}), is_error=True,
            )
        return ToolOutcome(output=_serialize(result.output), is_error=False)

    async def dispatch(
        self,
        call: ToolCallRequest,
        context: Context | None = None,
    ) -> ToolOutcome:
        """Execute *call*, turning tool-call errors into an error result."""
        async with tool_span(call.name, call.id) as span:
            try:
                outcome = await self._execute(
                    call.name, call.arguments, context,
                )
            except ToolCallError as e:
                logger.warning(
                    f"Tool call {call.id} failed: {e} "
                    f"(arguments: {call.arguments!r})"
                )
                record_error(span, e)
                return ToolOutcome(
                    output=json.dumps(e.to_payload()), is_error=True,
                )
        return outcome
