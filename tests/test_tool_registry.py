"""
Tests for the tool registry.

Run with:
$ pytest -q
"""

import asyncio

import pytest

from lmagent.core.schema import ParsedToolCall
from lmagent.tools import (
    ToolRegistry,
    build_tool_function,
    define_tool,
    get_available_tool_names,
    initialize_tools,
    register_tool,
)


@pytest.fixture
def registry() -> ToolRegistry:
    """Fresh registry with the built-in tools."""

    return initialize_tools(ToolRegistry())


@pytest.mark.asyncio
async def test_execute_calculator(registry: ToolRegistry) -> None:
    """A valid calculator call returns the computed value and no error."""

    result = await registry.execute(
        ParsedToolCall(id="c1", name="calculator", arguments={"expression": "2+2"})
    )

    assert result.error is None
    assert result.result["result"] == 4
    assert result.tool_call_id == "c1"
    assert result.execution_time_ms is not None


@pytest.mark.asyncio
async def test_execute_unknown_tool(registry: ToolRegistry) -> None:
    """Unknown tools are reported as a value, not raised."""

    result = await registry.execute(ParsedToolCall(id="c2", name="nonexistent", arguments={}))

    assert result.error == 'Tool "nonexistent" not found'
    assert result.result is None


@pytest.mark.asyncio
async def test_execute_disabled_tool(registry: ToolRegistry) -> None:
    """Disabled tools are rejected without running the handler."""

    assert registry.set_enabled("calculator", False)
    result = await registry.execute(
        ParsedToolCall(id="c3", name="calculator", arguments={"expression": "1"})
    )

    assert result.error == 'Tool "calculator" is disabled'
    assert not registry.is_available("calculator")


@pytest.mark.asyncio
async def test_handler_exception_becomes_error() -> None:
    """Exceptions raised by a handler end up in ``error``."""

    registry = ToolRegistry()

    def boom(args):
        raise RuntimeError("kaput")

    define_tool("boom", "Always fails", {}, boom, registry=registry)
    result = await registry.execute(ParsedToolCall(id="c4", name="boom", arguments={}))

    assert result.error == "kaput"
    assert result.result is None


@pytest.mark.asyncio
async def test_handler_exception_without_message() -> None:
    """An exception with an empty message falls back to a generic error."""

    registry = ToolRegistry()

    def silent(args):
        raise ValueError()

    define_tool("silent", "Fails quietly", {}, silent, registry=registry)
    result = await registry.execute(ParsedToolCall(id="c5", name="silent", arguments={}))

    assert result.error == "Unknown error"


@pytest.mark.asyncio
async def test_async_handler_is_awaited() -> None:
    """Coroutine handlers are awaited."""

    registry = ToolRegistry()

    async def echo(args):
        await asyncio.sleep(0)
        return args["text"]

    define_tool("echo", "Echo text", {"text": {"type": "string"}}, echo, registry=registry)
    result = await registry.execute(ParsedToolCall(id="c6", name="echo", arguments={"text": "hi"}))

    assert result.result == "hi"


def test_register_replaces_and_unregister() -> None:
    """Registering a name twice keeps the last registration; unregister removes it."""

    registry = ToolRegistry()
    define_tool("dup", "First", {}, lambda args: 1, registry=registry)
    define_tool("dup", "Second", {}, lambda args: 2, registry=registry)

    assert len(registry.get_all()) == 1
    assert registry.get("dup").definition.function.description == "Second"
    assert registry.unregister("dup")
    assert not registry.unregister("dup")
    assert registry.get("dup") is None


def test_definitions_only_include_enabled_tools(registry: ToolRegistry) -> None:
    """web_search ships disabled, so it is not offered to the model."""

    names = [d.function.name for d in registry.get_definitions()]

    assert "calculator" in names
    assert "datetime" in names
    assert "web_search" not in names
    assert get_available_tool_names(registry) == names
    assert [t.name for t in registry.get_by_category("web")] == ["web_search"]


def test_initialize_tools_is_idempotent() -> None:
    """Initializing twice does not duplicate anything."""

    registry = ToolRegistry()
    initialize_tools(registry)
    registry.set_enabled("calculator", False)
    initialize_tools(registry)

    assert len(registry.get_all()) == 3
    assert not registry.is_available("calculator")


def test_build_tool_function_collects_required() -> None:
    """``required`` flags become the schema's required list; omitted when none."""

    function = build_tool_function(
        "lookup",
        "Look something up",
        {"key": {"type": "string", "required": True}, "limit": {"type": "number"}},
    )
    bare = build_tool_function("noop", "Nothing", {})

    assert function.parameters.required == ["key"]
    assert set(function.parameters.properties) == {"key", "limit"}
    assert bare.parameters.required is None


def test_register_tool_decorator() -> None:
    """The decorator registers the function and returns it unchanged."""

    registry = ToolRegistry()

    @register_tool("shout", "Upper-case text", {"text": {"type": "string"}}, registry=registry)
    def shout(args):
        return args["text"].upper()

    assert shout({"text": "a"}) == "A"
    tool = registry.get("shout")
    assert tool is not None
    assert tool.describe()["category"] == "utility"
