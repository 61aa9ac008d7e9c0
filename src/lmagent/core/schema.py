"""
Schema definitions for model <-> orchestrator <-> tool messages.

These data models serve as the contract between the completion endpoint, the orchestration loop,
and individual tools.  We keep them separate from runtime logic so they can be imported anywhere
without side-effects.
"""

import json
import logging
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

logger = logging.getLogger(__name__)

MessageRole = Literal["system", "user", "assistant", "tool"]

TOOL_NAME_PATTERN = r"^[a-zA-Z_][a-zA-Z0-9_]*$"


# ---------------------------------------------------------------------------
# Tool definitions (OpenAI-compatible format)
# ---------------------------------------------------------------------------
class ToolParameterProperty(BaseModel, extra="allow"):
    """JSON-schema description of a single tool parameter."""

    type: Literal["string", "number", "boolean", "array", "object"]
    description: Optional[str] = None
    enum: Optional[List[str]] = None


class ToolParameters(BaseModel):
    """JSON-schema object describing all parameters of a tool."""

    type: Literal["object"] = "object"
    properties: Dict[str, ToolParameterProperty] = Field(default_factory=dict)
    required: Optional[List[str]] = None


class ToolFunction(BaseModel):
    """Callable description sent upstream so the model knows how to call a tool."""

    name: str = Field(..., min_length=1, max_length=64, pattern=TOOL_NAME_PATTERN)
    description: str = Field(..., min_length=1, max_length=1024)
    parameters: ToolParameters = Field(default_factory=ToolParameters)


class ToolDefinition(BaseModel):
    """Wrapper used in the ``tools`` array of a chat completion request."""

    type: Literal["function"] = "function"
    function: ToolFunction


# ---------------------------------------------------------------------------
# Tool calls and results
# ---------------------------------------------------------------------------
class ToolCallFunction(BaseModel):
    """Name plus raw JSON argument blob, exactly as emitted by the model."""

    name: str
    arguments: str = "{}"


class ToolCall(BaseModel):
    """A call that the model wants the agent to execute."""

    id: str
    type: Literal["function"] = "function"
    function: ToolCallFunction


class ParsedToolCall(BaseModel):
    """A tool call whose JSON arguments have been decoded."""

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of one tool call.  ``error`` takes display precedence over ``result``."""

    tool_call_id: str
    name: str
    result: Any = None
    error: Optional[str] = None
    execution_time_ms: Optional[int] = None


# ---------------------------------------------------------------------------
# Conversation messages
# ---------------------------------------------------------------------------
class Message(BaseModel):
    """One entry of the conversation replayed to the completion endpoint."""

    role: MessageRole
    content: str = ""
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None  # assistant messages only

    def to_payload(self) -> Dict[str, Any]:
        """Return the wire form, omitting unset optional keys."""
        return self.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def parse_tool_call_arguments(call: ToolCall) -> ParsedToolCall | None:
    """Decode the JSON argument blob of *call*; ``None`` when it is not a JSON object."""
    try:
        args = json.loads(call.function.arguments or "{}")
    except (TypeError, ValueError):
        logger.debug("Unparseable arguments for tool call %s: %r", call.id, call.function.arguments)
        return None
    if not isinstance(args, dict):
        return None
    return ParsedToolCall(id=call.id, name=call.function.name, arguments=args)


def format_tool_result_content(result: ToolResult) -> str:
    """Serialize a tool result for the ``content`` of a tool message."""
    if result.error:
        return json.dumps({"error": result.error})
    return json.dumps(result.result, default=str)


def create_tool_result_message(result: ToolResult) -> Message:
    """Build the ``tool`` role message that reports *result* back to the model."""
    return Message(
        role="tool",
        content=format_tool_result_content(result),
        tool_call_id=result.tool_call_id,
        name=result.name,
    )
