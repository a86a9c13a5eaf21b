"""Native tools the model can call during a reply.

A tool always acts for the author of the message being answered. The
scope travels in ``ToolContext`` and never comes from model arguments.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

_TYPE_CHECKS: dict[str, tuple[tuple[type, ...], str]] = {
    "string": ((str,), "a string"),
    "integer": ((int,), "an integer"),
    "number": ((int, float), "a number"),
    "boolean": ((bool,), "a boolean"),
    "array": ((list,), "an array"),
    "object": ((dict,), "an object"),
}


@dataclass
class ToolResult:
    """Outcome of a tool call, fed back to the model as text."""

    success: bool
    output: str
    error: str | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def failure(cls, error: str) -> "ToolResult":
        return cls(success=False, output="", error=error)

    def to_response(self) -> str:
        if self.success:
            return self.output
        return f"Error: {self.error or 'unknown error'}"


@dataclass(frozen=True)
class ToolContext:
    """The user and tenant a tool call acts for."""

    user_id: str
    tenant_id: str | None = None


def _type_error(key: str, expected: str, value: Any) -> str | None:
    check = _TYPE_CHECKS.get(expected)
    if check is None:
        return None
    allowed, noun = check
    # bool is an int subclass
    if (isinstance(value, bool) and expected != "boolean") or not isinstance(value, allowed):
        return f"Argument '{key}' must be {noun}"
    return None


class Tool(ABC):
    """A function the model may call, described by a JSON Schema."""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema object describing the arguments."""
        ...

    @abstractmethod
    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        """Run the tool for ``context``. Expected failures return a failed result."""
        ...

    def get_schema(self) -> dict[str, Any]:
        """Function-calling declaration in chat completions format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def check_args(self, args: dict[str, Any]) -> str | None:
        """Return an error message when ``args`` do not fit the schema."""
        properties = self.parameters.get("properties", {})

        missing = [f for f in self.parameters.get("required", []) if f not in args]
        if missing:
            return f"Missing required argument: {', '.join(missing)}"

        for key, value in args.items():
            spec = properties.get(key)
            if spec is None:
                continue
            error = _type_error(key, spec.get("type", ""), value)
            if error:
                return error
            choices = spec.get("enum")
            if choices is not None and value not in choices:
                return f"Argument '{key}' must be one of: {', '.join(map(str, choices))}"

        return None
