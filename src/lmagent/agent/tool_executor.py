"""Dispatches batches of model tool calls to the registry with timeouts and concurrency limits."""

import asyncio
import logging
from typing import (
    Any,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from pydantic import (
    BaseModel,
    Field,
)

from lmagent.config import settings
from lmagent.core.schema import (
    Message,
    ParsedToolCall,
    ToolCall,
    ToolResult,
    create_tool_result_message,
    parse_tool_call_arguments,
)
from lmagent.tools import (
    ToolRegistry,
    tool_registry,
)

logger = logging.getLogger(__name__)

NOT_EXECUTED_ERROR = "Tool call not executed after an earlier tool error"


class ExecutionOptions(BaseModel):
    """Knobs for :func:`execute_tool_calls`."""

    timeout_ms: int = Field(default_factory=lambda: settings.TOOL_TIMEOUT_MS, ge=1)
    max_concurrent: int = Field(default_factory=lambda: settings.TOOL_MAX_CONCURRENT, ge=1)
    continue_on_error: bool = True


async def execute_with_timeout(
    call: ParsedToolCall, timeout_ms: int, registry: ToolRegistry
) -> ToolResult:
    """Run one call, converting an overrun of *timeout_ms* into an error result."""
    try:
        return await asyncio.wait_for(registry.execute(call), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        logger.warning("Tool '%s' timed out after %dms", call.name, timeout_ms)
        return ToolResult(
            tool_call_id=call.id,
            name=call.name,
            result=None,
            error=f'Tool "{call.name}" execution timed out after {timeout_ms}ms',
            execution_time_ms=timeout_ms,
        )


async def execute_tool_calls(
    tool_calls: Sequence[ToolCall],
    options: Optional[ExecutionOptions] = None,
    registry: Optional[ToolRegistry] = None,
) -> List[ToolResult]:
    """
    Execute *tool_calls* and return one result per call, in input order.

    Arguments are decoded up front; a call whose arguments are not a JSON object gets an error
    result without reaching the registry.  The remaining calls run in batches of
    ``max_concurrent``, each call with its own timeout.  With ``continue_on_error`` disabled no
    further batch is started once a batch produced an error; calls that were never attempted get
    a ``NOT_EXECUTED_ERROR`` result, so results always line up with the calls.
    """
    opts = options or ExecutionOptions()
    target = registry if registry is not None else tool_registry
    results: List[Optional[ToolResult]] = [None] * len(tool_calls)

    pending: List[Tuple[int, ParsedToolCall]] = []
    for index, call in enumerate(tool_calls):
        parsed = parse_tool_call_arguments(call)
        if parsed is None:
            results[index] = ToolResult(
                tool_call_id=call.id,
                name=call.function.name,
                result=None,
                error="Failed to parse tool call arguments",
            )
        else:
            pending.append((index, parsed))

    for start in range(0, len(pending), opts.max_concurrent):
        batch = pending[start : start + opts.max_concurrent]
        batch_results = await asyncio.gather(
            *(execute_with_timeout(call, opts.timeout_ms, target) for _, call in batch)
        )
        for (index, _), result in zip(batch, batch_results):
            results[index] = result

        if not opts.continue_on_error and any(r.error for r in batch_results):
            logger.info("Stopping tool execution after a failed batch")
            break

    return [
        result
        if result is not None
        else ToolResult(
            tool_call_id=call.id,
            name=call.function.name,
            result=None,
            error=NOT_EXECUTED_ERROR,
        )
        for call, result in zip(tool_calls, results)
    ]


async def execute_tool_calls_as_messages(
    tool_calls: Sequence[ToolCall],
    options: Optional[ExecutionOptions] = None,
    registry: Optional[ToolRegistry] = None,
) -> List[Message]:
    """Execute *tool_calls* and wrap every result as a ``tool`` message."""
    results = await execute_tool_calls(tool_calls, options, registry)
    return [create_tool_result_message(result) for result in results]


def extract_tool_calls(response: Mapping[str, Any] | Message | None) -> List[ToolCall]:
    """Tool calls carried by an assistant message (dict or :class:`Message`), if any."""
    if response is None:
        return []
    if isinstance(response, Message):
        return list(response.tool_calls or [])
    raw = response.get("tool_calls") or []
    return [call if isinstance(call, ToolCall) else ToolCall.model_validate(call) for call in raw]


def has_tool_calls(response: Mapping[str, Any] | Message | None) -> bool:
    """True when the assistant message requests at least one tool call."""
    return len(extract_tool_calls(response)) > 0


def validate_tools_available(
    tool_calls: Sequence[ToolCall], registry: Optional[ToolRegistry] = None
) -> Tuple[bool, List[str]]:
    """Check every requested tool exists and is enabled; returns ``(valid, missing)``."""
    target = registry if registry is not None else tool_registry
    missing = [c.function.name for c in tool_calls if not target.is_available(c.function.name)]
    return not missing, missing
