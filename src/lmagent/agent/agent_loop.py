"""
Agent orchestration loop for lmagent.

The :class:`AgentOrchestrator` owns the agent definitions and drives one bounded think/act loop per
run.  A run is consumed as an async generator of :class:`AgentStreamEvent`; every state change is
reported through it, and the final ``done`` event carries a snapshot of the run.

Per turn the loop streams a completion with the agent's visible tools, folds content deltas and
tool-call fragments into an assistant message, then either finishes (no tool calls) or executes the
calls one by one and feeds their results back as ``tool`` messages.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
)

from pydantic import (
    BaseModel,
    Field,
)

from lmagent.agent.completion_client import (
    ChatCompletionRequest,
    get_completion_client,
)
from lmagent.agent.tool_executor import (
    ExecutionOptions,
    execute_tool_calls,
)
from lmagent.common import (
    new_id,
    now_ms,
)
from lmagent.config import settings
from lmagent.core.agents import (
    AgentBehavior,
    AgentDefinition,
    AgentModelConfig,
    AgentRun,
    AgentRunStatus,
    AgentStep,
    AgentStreamEvent,
    CreateAgentRequest,
    RunAgentRequest,
    TokenUsage,
    UpdateAgentRequest,
)
from lmagent.core.context_window import apply_context_window
from lmagent.core.schema import (
    Message,
    ToolCall,
    ToolCallFunction,
    ToolDefinition,
    ToolResult,
    parse_tool_call_arguments,
)
from lmagent.core.servers import (
    ServerConfig,
    get_server_by_id,
)
from lmagent.tools import (
    ToolRegistry,
    tool_registry,
)

logger = logging.getLogger(__name__)

REJECTED_BY_USER = "Tool call rejected by user"


class AgentNotFoundError(LookupError):
    """Raised by the CRUD helpers for an unknown agent id."""


class PresetAgentError(PermissionError):
    """Raised when a preset agent would be modified or deleted."""


class CompletionStreamer(Protocol):  # pylint: disable=too-few-public-methods
    """What the loop needs from a completion client."""

    def stream_completion_chunks(
        self, request: ChatCompletionRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield raw streamed chunk objects."""


ServerLookup = Callable[[str], Optional[ServerConfig]]
ClientFactory = Callable[[str], CompletionStreamer]


class OrchestratorConfig(BaseModel):
    """Process-level policy of the orchestrator."""

    max_concurrent_runs: int = Field(
        default_factory=lambda: settings.AGENT_MAX_CONCURRENT_RUNS, ge=1
    )
    default_timeout_ms: int = Field(
        default_factory=lambda: settings.AGENT_DEFAULT_TIMEOUT_MS, ge=1
    )
    # Exhausted turns end as "max_turns_exceeded" instead of "completed"
    strict_max_turns: bool = Field(default_factory=lambda: settings.AGENT_STRICT_MAX_TURNS)
    # Block on confirm_run() when an agent requires confirmation
    await_confirmation: bool = Field(default_factory=lambda: settings.AGENT_AWAIT_CONFIRMATION)
    context_max_tokens: Optional[int] = Field(
        default_factory=lambda: settings.AGENT_CONTEXT_MAX_TOKENS
    )


# ---------------------------------------------------------------------------
# Per-run state
# ---------------------------------------------------------------------------
class _ActiveRun:
    """Live run plus its cancellation signal and pending confirmation, if any."""

    def __init__(self, run: AgentRun):
        self.run = run
        self.cancel_event = asyncio.Event()
        self.timer: asyncio.TimerHandle | None = None
        self.confirmation: asyncio.Future[bool] | None = None

    def cancel(self) -> None:
        self.cancel_event.set()
        if self.confirmation is not None and not self.confirmation.done():
            self.confirmation.set_result(False)

    async def wait_for_confirmation(self) -> bool:
        if self.cancel_event.is_set():
            return False
        self.confirmation = asyncio.get_running_loop().create_future()
        try:
            return await self.confirmation
        finally:
            self.confirmation = None


class _ToolCallAccumulator:
    """Merges streamed ``delta.tool_calls`` fragments into complete calls, keyed by index."""

    def __init__(self) -> None:
        self._calls: Dict[int, Dict[str, str]] = {}

    def add(self, fragments: List[Dict[str, Any]]) -> None:
        for position, fragment in enumerate(fragments):
            index = fragment.get("index")
            if not isinstance(index, int):
                index = position
            entry = self._calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
            if fragment.get("id"):
                entry["id"] = fragment["id"]
            function = fragment.get("function") or {}
            if function.get("name"):
                entry["name"] = function["name"]
            if function.get("arguments"):
                entry["arguments"] += function["arguments"]

    def build(self) -> List[ToolCall]:
        return [
            ToolCall(
                id=entry["id"] or f"call_{new_id()[:24]}",
                function=ToolCallFunction(name=entry["name"], arguments=entry["arguments"] or "{}"),
            )
            for _, entry in sorted(self._calls.items())
        ]


def _tool_message_content(result: ToolResult) -> str:
    if result.error:
        return result.error
    return json.dumps(result.result, default=str)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class AgentOrchestrator:
    """Agent registry plus the run loop."""

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        *,
        server_lookup: Optional[ServerLookup] = None,
        client_factory: Optional[ClientFactory] = None,
        registry: Optional[ToolRegistry] = None,
        execution_options: Optional[ExecutionOptions] = None,
    ):
        self.config = config or OrchestratorConfig()
        self._server_lookup = server_lookup or get_server_by_id
        self._client_factory = client_factory or get_completion_client
        self._tools = registry if registry is not None else tool_registry
        self._execution_options = execution_options
        self._agents: Dict[str, AgentDefinition] = {}
        self._active_runs: Dict[str, _ActiveRun] = {}

    # -----------------------------------------------------------------------
    # Agent registry
    # -----------------------------------------------------------------------
    def register_agent(self, agent: AgentDefinition) -> None:
        """Insert or replace an agent by id."""
        self._agents[agent.id] = agent

    def unregister_agent(self, agent_id: str) -> bool:
        return self._agents.pop(agent_id, None) is not None

    def get_agent(self, agent_id: str) -> AgentDefinition | None:
        return self._agents.get(agent_id)

    def list_agents(self) -> List[AgentDefinition]:
        return list(self._agents.values())

    def list_presets(self) -> List[AgentDefinition]:
        return [a for a in self._agents.values() if a.is_preset]

    def list_custom_agents(self) -> List[AgentDefinition]:
        return [a for a in self._agents.values() if not a.is_preset]

    def create_agent(self, request: CreateAgentRequest) -> AgentDefinition:
        """Build a custom agent from *request*, register it and return it."""
        agent = AgentDefinition(
            id=new_id(),
            name=request.name,
            description=request.description,
            category=request.category or "custom",
            system_prompt=request.system_prompt,
            tools=list(request.tools),
            behavior=AgentBehavior(**(request.behavior or {})),
            generation=AgentModelConfig(**(request.generation or {})),
            planning_strategy=request.planning_strategy or "none",
            is_preset=False,
            icon=request.icon or "bot",
        )
        self.register_agent(agent)
        logger.info("Created agent '%s' (%s)", agent.name, agent.id)
        return agent

    def _get_custom_agent(self, agent_id: str, action: str) -> AgentDefinition:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent not found: {agent_id}")
        if agent.is_preset:
            raise PresetAgentError(f"Cannot {action} preset agents")
        return agent

    def update_agent(self, agent_id: str, updates: UpdateAgentRequest) -> AgentDefinition:
        """
        Apply a partial update to a custom agent.

        Top-level fields are replaced, ``behavior`` and ``generation`` are merged key by key.  The
        id, creation time and preset flag are preserved.
        """
        existing = self._get_custom_agent(agent_id, "modify")
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)
        behavior = {**existing.behavior.model_dump(), **changes.pop("behavior", {})}
        generation = {**existing.generation.model_dump(), **changes.pop("generation", {})}

        updated = AgentDefinition.model_validate(
            {
                **existing.model_dump(),
                **changes,
                "behavior": behavior,
                "generation": generation,
                "id": existing.id,
                "created_at": existing.created_at,
                "is_preset": existing.is_preset,
                "updated_at": now_ms(),
            }
        )
        self.register_agent(updated)
        return updated

    def delete_agent(self, agent_id: str) -> bool:
        """Remove a custom agent."""
        self._get_custom_agent(agent_id, "delete")
        return self.unregister_agent(agent_id)

    # -----------------------------------------------------------------------
    # Run management
    # -----------------------------------------------------------------------
    def cancel_run(self, run_id: str) -> bool:
        """Signal cancellation; the loop stops at its next checkpoint."""
        active = self._active_runs.get(run_id)
        if active is None:
            return False
        logger.info("Cancellation requested for run %s", run_id)
        active.cancel()
        return True

    def confirm_run(self, run_id: str, approved: bool) -> bool:
        """Resolve a run waiting for tool-call confirmation; False when none is waiting."""
        active = self._active_runs.get(run_id)
        if active is None or active.confirmation is None or active.confirmation.done():
            return False
        active.confirmation.set_result(approved)
        return True

    def get_run_status(self, run_id: str) -> AgentRun | None:
        active = self._active_runs.get(run_id)
        return active.run if active else None

    def list_active_runs(self) -> List[AgentRun]:
        return [active.run for active in self._active_runs.values()]

    # -----------------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------------
    async def run_agent(
        self, agent_id: str, request: RunAgentRequest
    ) -> AsyncIterator[AgentStreamEvent]:
        """
        Start a run of *agent_id* and yield its events.

        A failed precondition yields a single ``error`` event.  Otherwise the sequence starts with
        ``status(executing)`` and ends with exactly one ``done`` event, preceded by an ``error``
        event when the run failed.
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            yield self._error_event(f"Agent not found: {agent_id}")
            return
        if len(self._active_runs) >= self.config.max_concurrent_runs:
            yield self._error_event("Maximum concurrent agent runs reached")
            return
        server = self._server_lookup(request.server_id)
        if server is None:
            yield self._error_event(f"Server not found: {request.server_id}")
            return
        model = request.model or agent.generation.preferred_model
        if not model:
            yield self._error_event("No model specified for agent run")
            return

        run = AgentRun(
            id=new_id(),
            agent_id=agent.id,
            input=request.input,
            messages=[
                Message(role="system", content=agent.system_prompt),
                *(request.context_messages or []),
                Message(role="user", content=request.input),
            ],
        )
        active = _ActiveRun(run)
        self._active_runs[run.id] = active
        timeout_ms = agent.behavior.run_timeout_ms or self.config.default_timeout_ms
        active.timer = asyncio.get_running_loop().call_later(timeout_ms / 1000, active.cancel)
        logger.info(
            "Run %s started: agent=%s server=%s model=%s", run.id, agent.id, server.id, model
        )

        try:
            yield self._status_event(run, "executing")
            async for event in self._execute_loop(active, agent, server, model):
                yield event
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Run %s crashed", run.id)
            run.status = "failed"
            run.error = str(exc) or type(exc).__name__
        finally:
            active.timer.cancel()
            self._active_runs.pop(run.id, None)
            run.ended_at = now_ms()

        logger.info(
            "Run %s finished with status '%s' after %d turn(s)",
            run.id,
            run.status,
            run.current_turn,
        )
        if run.status == "failed":
            yield self._error_event(run.error or "Unknown error", run_id=run.id)
        yield AgentStreamEvent(type="done", data={"run": run.model_dump()})

    def _visible_tools(self, agent: AgentDefinition) -> List[ToolDefinition]:
        definitions = self._tools.get_definitions()
        if agent.tools:
            return [d for d in definitions if d.function.name in agent.tools]
        return definitions

    def _request_messages(self, run: AgentRun) -> List[Message]:
        if not self.config.context_max_tokens:
            return list(run.messages)
        return apply_context_window(
            run.messages, max_tokens=self.config.context_max_tokens, strategy="truncate-oldest"
        )

    async def _execute_loop(
        self,
        active: _ActiveRun,
        agent: AgentDefinition,
        server: ServerConfig,
        model: str,
    ) -> AsyncIterator[AgentStreamEvent]:
        run = active.run
        behavior = agent.behavior
        client = self._client_factory(server.url)
        stopped_early = False

        while run.current_turn < behavior.max_turns:
            if active.cancel_event.is_set():
                yield self._status_event(run, "cancelled")
                return

            run.current_turn += 1
            tools = self._visible_tools(agent)
            yield self._step_event(
                run, type="thinking", content=f"Turn {run.current_turn}: Processing..."
            )

            content = ""
            pending_calls = _ToolCallAccumulator()
            request = ChatCompletionRequest(
                model=model,
                messages=self._request_messages(run),
                temperature=agent.generation.temperature,
                max_tokens=agent.generation.max_tokens,
                top_p=agent.generation.top_p,
                tools=tools or None,
            )

            stream = client.stream_completion_chunks(request, active.cancel_event)
            try:
                async for chunk in stream:
                    if active.cancel_event.is_set():
                        break
                    self._add_usage(run, chunk.get("usage"))
                    choices = chunk.get("choices") or [{}]
                    delta = choices[0].get("delta") or {}
                    if delta.get("content"):
                        content += delta["content"]
                        yield AgentStreamEvent(type="content", data={"content": delta["content"]})
                    if delta.get("tool_calls"):
                        pending_calls.add(delta["tool_calls"])
            except Exception as exc:  # pylint: disable=broad-except
                error = str(exc) or type(exc).__name__
                logger.warning(
                    "Run %s turn %d: model call failed: %s", run.id, run.current_turn, error
                )
                yield self._step_event(run, type="error", content=error, error=error)
                if behavior.stop_on_error:
                    run.status = "failed"
                    run.error = error
                    return
                continue
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

            if active.cancel_event.is_set():
                yield self._status_event(run, "cancelled")
                return

            tool_calls = pending_calls.build()
            if not tool_calls:
                run.messages.append(Message(role="assistant", content=content))
                run.status = "completed"
                run.output = content
                yield self._step_event(run, type="response", content=content)
                return

            run.total_tool_calls += len(tool_calls)
            if len(tool_calls) > behavior.max_tool_calls_per_turn:
                yield self._step_event(
                    run,
                    type="thinking",
                    content=f"Limiting tool calls from {len(tool_calls)} to "
                    f"{behavior.max_tool_calls_per_turn}",
                )
                tool_calls = tool_calls[: behavior.max_tool_calls_per_turn]
            run.messages.append(Message(role="assistant", content=content, tool_calls=tool_calls))

            approved = True
            if behavior.require_confirmation:
                yield self._status_event(run, "waiting_confirmation")
                if self.config.await_confirmation:
                    approved = await active.wait_for_confirmation()
                    if active.cancel_event.is_set():
                        yield self._status_event(run, "cancelled")
                        return
                yield self._status_event(run, "executing")

            if approved:
                async for event in self._execute_tools(run, behavior, tool_calls):
                    yield event
                if run.status == "failed":
                    return
            else:
                for event in self._reject_tools(run, tool_calls):
                    yield event

            if not behavior.auto_continue:
                stopped_early = True
                break

        # Turns exhausted (or auto-continue disabled) without a final answer
        last = run.messages[-1].content if run.messages else ""
        run.output = last
        if self.config.strict_max_turns and not stopped_early:
            run.status = "max_turns_exceeded"
        else:
            run.status = "completed"

    async def _execute_tools(
        self, run: AgentRun, behavior: AgentBehavior, tool_calls: List[ToolCall]
    ) -> AsyncIterator[AgentStreamEvent]:
        for call in tool_calls:
            name = call.function.name
            parsed = parse_tool_call_arguments(call)
            call_step = self._append_step(
                run,
                type="tool_call",
                content=f"Calling tool: {name}",
                tool_name=name,
                tool_args=parsed.arguments if parsed else None,
            )
            yield self._wrap_step(call_step)
            yield AgentStreamEvent(type="tool_call", data={"step": call_step.model_dump()})

            results = await execute_tool_calls([call], self._execution_options, self._tools)
            result = results[0]
            text = _tool_message_content(result)
            run.messages.append(Message(role="tool", content=text, tool_call_id=call.id, name=name))

            result_step = self._append_step(
                run,
                type="tool_result",
                content=text,
                tool_name=name,
                tool_result=result.result,
                error=result.error,
                duration_ms=result.execution_time_ms,
            )
            yield self._wrap_step(result_step)
            yield AgentStreamEvent(type="tool_result", data={"step": result_step.model_dump()})

            if result.error:
                logger.warning("Run %s: tool '%s' failed: %s", run.id, name, result.error)
                if behavior.stop_on_error:
                    run.status = "failed"
                    run.error = result.error
                    return

    def _reject_tools(self, run: AgentRun, tool_calls: List[ToolCall]) -> List[AgentStreamEvent]:
        events: List[AgentStreamEvent] = []
        for call in tool_calls:
            run.messages.append(
                Message(
                    role="tool",
                    content=REJECTED_BY_USER,
                    tool_call_id=call.id,
                    name=call.function.name,
                )
            )
            step = self._append_step(
                run,
                type="tool_result",
                content=REJECTED_BY_USER,
                tool_name=call.function.name,
                error=REJECTED_BY_USER,
            )
            events.append(self._wrap_step(step))
            events.append(AgentStreamEvent(type="tool_result", data={"step": step.model_dump()}))
        return events

    @staticmethod
    def _add_usage(run: AgentRun, usage: Any) -> None:
        if not isinstance(usage, dict):
            return
        if run.token_usage is None:
            run.token_usage = TokenUsage()
        run.token_usage.prompt += int(usage.get("prompt_tokens") or 0)
        run.token_usage.completion += int(usage.get("completion_tokens") or 0)
        run.token_usage.total += int(usage.get("total_tokens") or 0)

    # -----------------------------------------------------------------------
    # Event helpers
    # -----------------------------------------------------------------------
    @staticmethod
    def _append_step(run: AgentRun, **fields: Any) -> AgentStep:
        step = AgentStep(index=len(run.steps), **fields)
        run.steps.append(step)
        return step

    @staticmethod
    def _wrap_step(step: AgentStep) -> AgentStreamEvent:
        return AgentStreamEvent(type="step", data={"step": step.model_dump()})

    def _step_event(self, run: AgentRun, **fields: Any) -> AgentStreamEvent:
        return self._wrap_step(self._append_step(run, **fields))

    @staticmethod
    def _status_event(run: AgentRun, status: AgentRunStatus) -> AgentStreamEvent:
        run.status = status
        return AgentStreamEvent(type="status", data={"status": status, "run_id": run.id})

    @staticmethod
    def _error_event(error: str, run_id: str | None = None) -> AgentStreamEvent:
        data: Dict[str, Any] = {"error": error}
        if run_id is not None:
            data["run_id"] = run_id
        return AgentStreamEvent(type="error", data=data)


agent_orchestrator = AgentOrchestrator()
"""Process-wide orchestrator used by the API."""
