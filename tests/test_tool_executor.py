"""
Tests for the tool executor.

Run with:
$ pytest -q
"""

import asyncio
from typing import List

import pytest

from lmagent.agent.tool_executor import (
    NOT_EXECUTED_ERROR,
    ExecutionOptions,
    execute_tool_calls,
    execute_tool_calls_as_messages,
    extract_tool_calls,
    has_tool_calls,
    validate_tools_available,
)
from lmagent.core.schema import (
    Message,
    ToolCall,
    ToolCallFunction,
)
from lmagent.tools import (
    ToolRegistry,
    define_tool,
)


def _call(call_id: str, name: str, arguments: str = "{}") -> ToolCall:
    return ToolCall(id=call_id, function=ToolCallFunction(name=name, arguments=arguments))


@pytest.fixture
def registry() -> ToolRegistry:
    """Registry with an instant tool, a slow tool and a failing tool."""

    registry = ToolRegistry()

    async def slow(args):
        await asyncio.sleep(args.get("seconds", 1))
        return "late"

    def fail(args):
        raise RuntimeError("nope")

    define_tool("add", "Add numbers", {}, lambda args: args["a"] + args["b"], registry=registry)
    define_tool("slow", "Sleeps", {}, slow, registry=registry)
    define_tool("fail", "Fails", {}, fail, registry=registry)
    return registry


@pytest.mark.asyncio
async def test_timeout_keeps_order(registry: ToolRegistry) -> None:
    """Three calls, two per batch, the second one times out: order and length are preserved."""

    calls = [
        _call("1", "add", '{"a": 1, "b": 2}'),
        _call("2", "slow", '{"seconds": 5}'),
        _call("3", "add", '{"a": 3, "b": 4}'),
    ]
    results = await execute_tool_calls(
        calls, ExecutionOptions(timeout_ms=50, max_concurrent=2), registry
    )

    assert [r.tool_call_id for r in results] == ["1", "2", "3"]
    assert results[0].result == 3
    assert "timed out" in results[1].error
    assert results[1].error == 'Tool "slow" execution timed out after 50ms'
    assert results[2].result == 7


@pytest.mark.asyncio
async def test_invalid_arguments_are_reported(registry: ToolRegistry) -> None:
    """Unparseable or non-object arguments never reach the handler."""

    results = await execute_tool_calls(
        [_call("1", "add", "{not json"), _call("2", "add", "[1, 2]")], registry=registry
    )

    assert [r.error for r in results] == ["Failed to parse tool call arguments"] * 2


@pytest.mark.asyncio
async def test_stop_after_failed_batch(registry: ToolRegistry) -> None:
    """With continue_on_error disabled later batches are never attempted."""

    calls = [
        _call("1", "fail"),
        _call("2", "add", '{"a": 1, "b": 1}'),
        _call("3", "add", '{"a": 2, "b": 2}'),
    ]
    results = await execute_tool_calls(
        calls, ExecutionOptions(max_concurrent=2, continue_on_error=False), registry
    )

    assert [r.tool_call_id for r in results] == ["1", "2", "3"]
    assert results[0].error == "nope"
    assert results[1].result == 2
    assert results[2].result is None
    assert results[2].error == NOT_EXECUTED_ERROR


@pytest.mark.asyncio
async def test_stop_keeps_results_aligned_with_calls(registry: ToolRegistry) -> None:
    """A bad-arguments result for a later call stays in its own slot when execution stops."""

    calls = [
        _call("a", "fail"),
        _call("b", "add", '{"a": 1, "b": 1}'),
        _call("c", "add", "{not json"),
    ]
    results = await execute_tool_calls(
        calls, ExecutionOptions(max_concurrent=1, continue_on_error=False), registry
    )

    assert [r.tool_call_id for r in results] == ["a", "b", "c"]
    assert results[0].error == "nope"
    assert results[1].error == NOT_EXECUTED_ERROR
    assert results[2].error == "Failed to parse tool call arguments"


@pytest.mark.asyncio
async def test_continue_on_error_runs_everything(registry: ToolRegistry) -> None:
    """The default policy runs every batch."""

    calls = [_call("1", "fail"), _call("2", "missing"), _call("3", "add", '{"a": 0, "b": 5}')]
    results = await execute_tool_calls(calls, ExecutionOptions(max_concurrent=1), registry)

    assert len(results) == 3
    assert results[1].error == 'Tool "missing" not found'
    assert results[2].result == 5


@pytest.mark.asyncio
async def test_results_as_messages(registry: ToolRegistry) -> None:
    """Results are wrapped as tool messages answering the originating call."""

    messages: List[Message] = await execute_tool_calls_as_messages(
        [_call("x", "add", '{"a": 2, "b": 2}'), _call("y", "fail")], registry=registry
    )

    assert messages[0].role == "tool"
    assert messages[0].tool_call_id == "x"
    assert messages[0].content == "4"
    assert messages[1].content == '{"error": "nope"}'


def test_extract_and_detect_tool_calls() -> None:
    """Tool calls are found on dicts and on messages alike."""

    raw = {
        "role": "assistant",
        "tool_calls": [{"id": "a", "type": "function", "function": {"name": "add"}}],
    }
    message = Message(role="assistant", content="hi")

    assert [c.id for c in extract_tool_calls(raw)] == ["a"]
    assert extract_tool_calls(raw)[0].function.arguments == "{}"
    assert has_tool_calls(raw)
    assert not has_tool_calls(message)
    assert not has_tool_calls(None)


def test_validate_tools_available(registry: ToolRegistry) -> None:
    """Missing and disabled tools are both reported."""

    registry.set_enabled("fail", False)
    valid, missing = validate_tools_available(
        [_call("1", "add"), _call("2", "fail"), _call("3", "ghost")], registry
    )

    assert not valid
    assert missing == ["fail", "ghost"]
