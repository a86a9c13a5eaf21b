"""Tests for tools and the tool registry."""

from typing import Any

import pytest

from mina.tools import Tool, ToolContext, ToolRegistry, ToolResult


class EchoTool(Tool):
    """Echoes the message and who asked."""

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echoes the input message"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "Message to echo"},
                "times": {"type": "integer", "description": "Repetitions"},
            },
            "required": ["message"],
        }

    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        text = kwargs["message"] * kwargs.get("times", 1)
        return ToolResult(success=True, output=f"{context.user_id}: {text}")


class BrokenTool(EchoTool):
    @property
    def name(self) -> str:
        return "broken"

    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        raise RuntimeError("kaput")


@pytest.fixture
def registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(EchoTool())
    return registry


@pytest.fixture
def context() -> ToolContext:
    return ToolContext(user_id="u1", tenant_id="g1")


def test_register_duplicate_raises(registry: ToolRegistry) -> None:
    with pytest.raises(ValueError, match="already registered"):
        registry.register(EchoTool())


def test_list_and_get(registry: ToolRegistry) -> None:
    assert registry.list_tools() == ["echo"]
    assert isinstance(registry.get("echo"), EchoTool)
    assert registry.get("unknown") is None
    assert len(registry) == 1


def test_get_tools_schema(registry: ToolRegistry) -> None:
    schemas = registry.get_tools_schema()
    assert len(schemas) == 1
    assert schemas[0]["type"] == "function"
    assert schemas[0]["function"]["name"] == "echo"
    assert schemas[0]["function"]["parameters"]["required"] == ["message"]


@pytest.mark.asyncio
async def test_dispatch_passes_context(registry: ToolRegistry, context: ToolContext) -> None:
    result = await registry.dispatch("echo", {"message": "hi", "times": 2}, context)

    assert result.success
    assert result.output == "u1: hihi"


@pytest.mark.asyncio
async def test_dispatch_unknown_tool(registry: ToolRegistry, context: ToolContext) -> None:
    result = await registry.dispatch("nope", {}, context)

    assert not result.success
    assert "Unknown tool" in result.error


@pytest.mark.asyncio
async def test_dispatch_missing_argument(registry: ToolRegistry, context: ToolContext) -> None:
    result = await registry.dispatch("echo", {}, context)

    assert not result.success
    assert "Missing required argument: message" in result.error


@pytest.mark.asyncio
async def test_dispatch_wrong_type(registry: ToolRegistry, context: ToolContext) -> None:
    result = await registry.dispatch("echo", {"message": "hi", "times": True}, context)

    assert not result.success
    assert "must be an integer" in result.error


@pytest.mark.asyncio
async def test_dispatch_catches_tool_errors(context: ToolContext) -> None:
    registry = ToolRegistry()
    registry.register(BrokenTool())

    result = await registry.dispatch("broken", {"message": "hi"}, context)

    assert not result.success
    assert "kaput" in result.error


def test_to_response() -> None:
    assert ToolResult(success=True, output="done").to_response() == "done"
    assert ToolResult(success=False, output="", error="bad").to_response() == "Error: bad"


class TestCheckArgs:
    class ModeTool(EchoTool):
        @property
        def parameters(self) -> dict:
            return {
                "type": "object",
                "properties": {
                    "mode": {"type": "string", "enum": ["loud", "quiet"]},
                    "volume": {"type": "number"},
                },
                "required": ["mode"],
            }

    def test_valid(self) -> None:
        assert self.ModeTool().check_args({"mode": "loud", "volume": 0.5}) is None

    def test_enum(self) -> None:
        error = self.ModeTool().check_args({"mode": "shout"})
        assert error == "Argument 'mode' must be one of: loud, quiet"

    def test_number_accepts_int_but_not_bool(self) -> None:
        tool = self.ModeTool()
        assert tool.check_args({"mode": "quiet", "volume": 3}) is None
        assert tool.check_args({"mode": "quiet", "volume": True}) == (
            "Argument 'volume' must be a number"
        )

    def test_unknown_arguments_ignored(self) -> None:
        assert self.ModeTool().check_args({"mode": "loud", "extra": object()}) is None


def test_registry_from_list() -> None:
    registry = ToolRegistry([EchoTool(), BrokenTool()])
    assert [tool.name for tool in registry] == ["echo", "broken"]
