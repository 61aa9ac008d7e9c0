"""
Tool registry for lmagent.

Tools are registered with a JSON-schema parameter description and a handler.  Handlers receive the
decoded argument mapping and may be plain functions or coroutines.  Execution never raises: lookup
failures, disabled tools and handler exceptions all come back as a :class:`ToolResult` with
``error`` set.

Custom tools can be registered on the default registry with the decorator:

    @register_tool("shout", "Upper-case the input", {"text": {"type": "string", "required": True}})
    def shout(args):
        return args["text"].upper()
"""

import inspect
import logging
import time
import weakref
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Union,
)

from lmagent.core.schema import (
    ParsedToolCall,
    ToolDefinition,
    ToolFunction,
    ToolParameterProperty,
    ToolParameters,
    ToolResult,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


@dataclass
class RegisteredTool:
    """Registry entry: call spec, handler and flags."""

    definition: ToolDefinition
    handler: ToolHandler
    enabled: bool = True
    category: Optional[str] = None
    requires_auth: bool = False

    @property
    def name(self) -> str:
        """Unique tool name."""
        return self.definition.function.name

    def describe(self) -> Dict[str, Any]:
        """Listing shape used by the API layer."""
        function = self.definition.function
        return {
            "name": function.name,
            "description": function.description,
            "category": self.category or "utility",
            "enabled": self.enabled,
            "requires_auth": self.requires_auth,
            "parameters": function.parameters.model_dump(exclude_none=True),
        }


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class ToolRegistry:
    """Named tool specifications plus their handlers and enabled state."""

    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    def register(
        self,
        function: ToolFunction,
        handler: ToolHandler,
        *,
        enabled: bool = True,
        category: Optional[str] = None,
        requires_auth: bool = False,
    ) -> RegisteredTool:
        """Insert or replace the tool named ``function.name``."""
        if function.name in self._tools:
            logger.debug("Replacing tool '%s'", function.name)
        else:
            logger.debug("Registering tool '%s'", function.name)
        tool = RegisteredTool(
            definition=ToolDefinition(function=function),
            handler=handler,
            enabled=enabled,
            category=category,
            requires_auth=requires_auth,
        )
        self._tools[function.name] = tool
        return tool

    def unregister(self, name: str) -> bool:
        """Remove a tool; returns whether anything was removed."""
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> RegisteredTool | None:
        """Look up a tool by name."""
        return self._tools.get(name)

    def is_available(self, name: str) -> bool:
        """True when the tool exists and is enabled."""
        tool = self._tools.get(name)
        return tool is not None and tool.enabled

    def set_enabled(self, name: str, enabled: bool) -> bool:
        """Toggle a tool; False when it does not exist."""
        tool = self._tools.get(name)
        if tool is None:
            return False
        tool.enabled = enabled
        return True

    def get_all(self) -> List[RegisteredTool]:
        """Every registered tool."""
        return list(self._tools.values())

    def get_enabled(self) -> List[RegisteredTool]:
        """Enabled tools only."""
        return [t for t in self._tools.values() if t.enabled]

    def get_definitions(self) -> List[ToolDefinition]:
        """Call specs of the enabled tools, as sent upstream to the model."""
        return [t.definition for t in self.get_enabled()]

    def get_by_category(self, category: str) -> List[RegisteredTool]:
        """Tools tagged with *category*."""
        return [t for t in self._tools.values() if t.category == category]

    def clear(self) -> None:
        """Drop every registration."""
        self._tools.clear()

    async def execute(self, call: ParsedToolCall) -> ToolResult:
        """
        Run *call* against its handler.

        Returns
        -------
        ToolResult
            ``result`` holds the handler's return value, or ``error`` describes why the call
            could not run.  Execution time is always recorded.
        """
        start = time.perf_counter()
        tool = self._tools.get(call.name)

        if tool is None:
            return ToolResult(
                tool_call_id=call.id,
                name=call.name,
                result=None,
                error=f'Tool "{call.name}" not found',
                execution_time_ms=_elapsed_ms(start),
            )

        if not tool.enabled:
            return ToolResult(
                tool_call_id=call.id,
                name=call.name,
                result=None,
                error=f'Tool "{call.name}" is disabled',
                execution_time_ms=_elapsed_ms(start),
            )

        try:
            logger.debug("Executing tool '%s' with args=%s", call.name, call.arguments)
            result = tool.handler(call.arguments)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Tool '%s' raised an error: %s", call.name, exc)
            return ToolResult(
                tool_call_id=call.id,
                name=call.name,
                result=None,
                error=str(exc) or "Unknown error",
                execution_time_ms=_elapsed_ms(start),
            )

        return ToolResult(
            tool_call_id=call.id,
            name=call.name,
            result=result,
            execution_time_ms=_elapsed_ms(start),
        )


tool_registry = ToolRegistry()
"""Process-wide default registry."""


def build_tool_function(
    name: str,
    description: str,
    parameters: Mapping[str, Mapping[str, Any]],
) -> ToolFunction:
    """
    Build a :class:`ToolFunction` from a compact parameter mapping.

    Each entry maps a parameter name to ``{"type", "description"?, "enum"?, "required"?}``; the
    ``required`` flags are collected into the schema's ``required`` list (omitted when empty).
    """
    properties: Dict[str, ToolParameterProperty] = {}
    required: List[str] = []
    for key, spec in parameters.items():
        spec = dict(spec)
        if spec.pop("required", False):
            required.append(key)
        properties[key] = ToolParameterProperty(**spec)

    return ToolFunction(
        name=name,
        description=description,
        parameters=ToolParameters(properties=properties, required=required or None),
    )


def define_tool(
    name: str,
    description: str,
    parameters: Mapping[str, Mapping[str, Any]],
    handler: ToolHandler,
    *,
    registry: ToolRegistry | None = None,
    enabled: bool = True,
    category: Optional[str] = None,
    requires_auth: bool = False,
) -> RegisteredTool:
    """Build the call spec for a tool and register it (on the default registry by default)."""
    target = registry if registry is not None else tool_registry
    return target.register(
        build_tool_function(name, description, parameters),
        handler,
        enabled=enabled,
        category=category,
        requires_auth=requires_auth,
    )


def register_tool(
    name: str,
    description: str,
    parameters: Mapping[str, Mapping[str, Any]] | None = None,
    **options: Any,
) -> Callable[[ToolHandler], ToolHandler]:
    """
    Decorator form of :func:`define_tool`.

    Parameters
    ----------
    name:
        Unique, identifier-safe tool name.
    description:
        What the tool does, shown to the model.
    parameters:
        Compact parameter mapping (see :func:`build_tool_function`).
    options:
        ``registry``, ``enabled``, ``category`` and ``requires_auth`` as for :func:`define_tool`.
    """

    def wrapper(fn: ToolHandler) -> ToolHandler:
        define_tool(name, description, parameters or {}, fn, **options)
        return fn

    return wrapper


_initialized: "weakref.WeakSet[ToolRegistry]" = weakref.WeakSet()


def initialize_tools(registry: ToolRegistry | None = None) -> ToolRegistry:
    """Register the built-in tools once per registry and return it."""
    target = registry if registry is not None else tool_registry
    if target in _initialized:
        return target

    # Lazy imports - the built-in modules import this package
    from lmagent.tools.calculator import (  # pylint: disable=import-outside-toplevel
        register_calculator_tool,
    )
    from lmagent.tools.datetime_tool import (  # pylint: disable=import-outside-toplevel
        register_datetime_tool,
    )
    from lmagent.tools.web_search import (  # pylint: disable=import-outside-toplevel
        register_web_search_tool,
    )

    register_calculator_tool(target)
    register_datetime_tool(target)
    register_web_search_tool(target)

    _initialized.add(target)
    logger.info("Initialized %d built-in tools", len(target.get_all()))
    return target


def get_available_tool_names(registry: ToolRegistry | None = None) -> List[str]:
    """Names of the enabled tools."""
    target = registry if registry is not None else tool_registry
    return [t.name for t in target.get_enabled()]
