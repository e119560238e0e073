import inspect
import re
import types
import typing
from typing import Any, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, create_model, field_validator


# Name of the parameter the dispatcher fills with a :class:`Context`.
CONTEXT_PARAM = "context"

_TOOL_NAME = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    set: "array",
    dict: "object",
    type(None): "null",
}


class ToolDescriptor(BaseModel):
    """Name, description and JSON-Schema parameters of a tool.

    Immutable once built; the registry hands out the same instance to
    every orchestrator that shares it.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters_schema: dict = Field(
        default_factory=lambda: {
            "type": "object", "properties": {}, "required": [],
        }
    )

    @field_validator("name")
    @classmethod
    def _check_name(cls, name: str) -> str:
        if not _TOOL_NAME.match(name):
            raise ValueError(
                f"Invalid tool name '{name}': use 1-64 letters, digits, "
                f"underscores or hyphens"
            )
        return name

    @property
    def required(self) -> list[str]:
        return list(self.parameters_schema.get("required", []))

    def tool_schema(self) -> dict:
        """Return an OpenAI-compatible function tool schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }


class ToolCallResult(BaseModel):
    tool_name: str
    output: Any


# ---------------------------------------------------------------------------
# Docstring parsing
# ---------------------------------------------------------------------------

_GOOGLE_HEADER = re.compile(r"^(Args|Arguments|Parameters|Params):\s*$")
_GOOGLE_ENTRY = re.compile(r"^\*{0,2}(\w+)\s*(?:\([^)]*\))?\s*:\s*(.*)$")
_REST_ENTRY = re.compile(r"^:param\s+(?:[^:]+\s+)?(\w+)\s*:\s*(.*)$")
_NUMPY_ENTRY = re.compile(r"^(\w+)\s*(?::.*)?$")
_UNDERLINE = re.compile(r"^\s*-{3,}\s*$")


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def _parse_rest(lines: list[str]) -> dict[str, str]:
    descs: dict[str, str] = {}
    current = None
    for line in lines:
        match = _REST_ENTRY.match(line.strip())
        if match:
            current = match.group(1)
            descs[current] = match.group(2).strip()
        elif current and line.strip() and _indent(line) > 0:
            descs[current] += "\n" + line.strip()
        else:
            current = None
    return descs


def _parse_numpy(lines: list[str]) -> dict[str, str]:
    start = None
    for i, line in enumerate(lines[:-1]):
        if line.strip() == "Parameters" and _UNDERLINE.match(lines[i + 1]):
            start = i + 2
            break
    if start is None:
        return {}

    descs: dict[str, str] = {}
    current = None
    for i in range(start, len(lines)):
        line = lines[i]
        if not line.strip():
            continue
        if _indent(line) == 0:
            if i + 1 < len(lines) and _UNDERLINE.match(lines[i + 1]):
                break
            match = _NUMPY_ENTRY.match(line)
            if match is None:
                break
            current = match.group(1)
            descs[current] = ""
        elif current is not None:
            text = line.strip()
            descs[current] = (
                f"{descs[current]}\n{text}" if descs[current] else text
            )
    return descs


def _parse_google(lines: list[str]) -> dict[str, str]:
    start = None
    for i, line in enumerate(lines):
        if _GOOGLE_HEADER.match(line.strip()):
            start = i + 1
            break
    if start is None:
        return {}

    descs: dict[str, str] = {}
    current = None
    entry_indent = None
    for line in lines[start:]:
        if not line.strip():
            continue
        indent = _indent(line)
        if indent == 0:
            break
        if entry_indent is None:
            entry_indent = indent
        if indent == entry_indent:
            match = _GOOGLE_ENTRY.match(line.strip())
            if match is None:
                current = None
                continue
            current = match.group(1)
            descs[current] = match.group(2).strip()
        elif current is not None:
            descs[current] += "\n" + line.strip()
    return descs


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Extract parameter descriptions from a Google, reST or NumPy docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return {}
    lines = doc.splitlines()
    return _parse_rest(lines) or _parse_numpy(lines) or _parse_google(lines)


def _summary(func: Callable) -> str:
    """First paragraph of the docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return ""
    return doc.split("\n\n", 1)[0].strip()


# ---------------------------------------------------------------------------
# Schema and argument-model generation
# ---------------------------------------------------------------------------

def _type_hints(func: Callable) -> dict[str, Any]:
    try:
        return typing.get_type_hints(func)
    except (NameError, TypeError):
        return {}


def _json_schema_for(annotation: Any) -> dict:
    if annotation is inspect.Parameter.empty or annotation is Any:
        return {"type": "string"}

    origin = typing.get_origin(annotation)
    if origin is Literal:
        values = list(typing.get_args(annotation))
        return {
            "type": _JSON_TYPES.get(type(values[0]), "string"),
            "enum": values,
        }
    if origin in (Union, types.UnionType):
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return _json_schema_for(args[0])
        return {"anyOf": [_json_schema_for(a) for a in args]}
    if origin in (list, tuple, set):
        schema = {"type": "array"}
        args = typing.get_args(annotation)
        if origin is not tuple and args:
            schema["items"] = _json_schema_for(args[0])
        return schema
    if origin is dict:
        return {"type": "object"}
    return {"type": _JSON_TYPES.get(annotation, "string")}


def _tool_params(func: Callable):
    for name, param in inspect.signature(func).parameters.items():
        if name == CONTEXT_PARAM:
            continue
        if param.kind in (
            inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD,
        ):
            continue
        yield name, param


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    """Build the JSON-Schema ``parameters`` object for *func*.

    Returns the schema and the list of required parameter names.
    """
    hints = _type_hints(func)
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for name, param in _tool_params(func):
        prop = _json_schema_for(hints.get(name, param.annotation))
        prop["description"] = descriptions.get(name, "")
        properties[name] = prop
        if param.default is inspect.Parameter.empty:
            required.append(name)

    schema = {
        "type": "object",
        "properties": properties,
        "required": required,
    }
    return schema, required


def _build_arguments_model(func: Callable, tool_name: str) -> type[BaseModel]:
    """Create the pydantic model that validates *func*'s arguments."""
    hints = _type_hints(func)
    fields = {}
    for name, param in _tool_params(func):
        annotation = hints.get(name, Any)
        if param.default is inspect.Parameter.empty:
            fields[name] = (annotation, ...)
        else:
            fields[name] = (annotation, param.default)
    model_name = "".join(p.capitalize() for p in re.split(r"[_-]", tool_name))
    return create_model(
        f"{model_name}Arguments",
        __config__=ConfigDict(extra="ignore", arbitrary_types_allowed=True),
        **fields,
    )


class Tool(BaseModel):
    """A callable paired with its descriptor and typed argument model.

    Usually created with the :func:`tool` decorator or by
    :meth:`ToolRegistry.register`.
    """

    model_config = {"arbitrary_types_allowed": True}

    func: Callable = Field(exclude=True)
    descriptor: ToolDescriptor
    arguments_model: type[BaseModel] = Field(exclude=True)

    @classmethod
    def from_function(
        cls,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
        parameters_schema: dict | None = None,
    ) -> "Tool":
        name = name or func.__name__
        if parameters_schema is None:
            parameters_schema, _ = _build_parameters_schema(func)
        descriptor = ToolDescriptor(
            name=name,
            description=description if description is not None else _summary(func),
            parameters_schema=parameters_schema,
        )
        return cls(
            func=func,
            descriptor=descriptor,
            arguments_model=_build_arguments_model(func, name),
        )

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def description(self) -> str:
        return self.descriptor.description

    @property
    def parameters_schema(self) -> dict:
        return self.descriptor.parameters_schema

    @property
    def wants_context(self) -> bool:
        return CONTEXT_PARAM in inspect.signature(self.func).parameters

    def model_dump(self, **kwargs):
        """Return the OpenAI tool schema instead of internal attributes."""
        return self.descriptor.tool_schema()

    def validate_arguments(self, params: dict) -> dict:
        """Validate *params* against the typed argument model.

        Raises:
            pydantic.ValidationError: If a value has the wrong type.
        """
        validated = self.arguments_model.model_validate(params)
        return {
            name: getattr(validated, name)
            for name in type(validated).model_fields
        }

    async def __call__(self, **kwargs) -> ToolCallResult:
        output = self.func(**kwargs)
        if inspect.isawaitable(output):
            output = await output
        return ToolCallResult(tool_name=self.name, output=output)


def tool(
    func: Callable | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
):
    """Turn a function into a :class:`Tool`.

    Works bare (``@tool``) or with overrides
    (``@tool(name="lookup", description="...")``). The schema comes from
    the signature and the docstring's parameter section.
    """
    def wrap(f: Callable) -> Tool:
        return Tool.from_function(f, name=name, description=description)

    if func is not None:
        return wrap(func)
    return wrap
