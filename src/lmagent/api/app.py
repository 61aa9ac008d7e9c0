"""
HTTP API for lmagent.

Thin adapter over the orchestrator and the tool registry:
- **GET /health**                      - liveness probe.
- **GET /servers**                     - configured upstream servers.
- **GET|POST /agents**                 - list agents (custom and presets) / create a custom agent.
- **GET|PUT|DELETE /agents/{id}**      - read, update or delete a custom agent.
- **POST /agents/{id}/run**            - run an agent, streamed as SSE unless ``stream`` is false.
- **GET /runs**, **GET /runs/{id}**    - live runs.
- **POST /runs/{id}/cancel|confirm**   - cancel a run / answer a confirmation checkpoint.
- **GET|POST /tools**, **GET|PATCH /tools/{name}** - list, execute and toggle tools.
"""

import logging
from typing import (
    Any,
    Dict,
    List,
)

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
)
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from lmagent.agent.agent_loop import (
    AgentNotFoundError,
    AgentOrchestrator,
    PresetAgentError,
    agent_orchestrator,
)
from lmagent.agent.presets import initialize_preset_agents
from lmagent.api.models import (
    AgentListResponse,
    ConfirmRunRequest,
    ExecuteToolRequest,
    ExecuteToolResponse,
    ToolInfo,
    ToolListResponse,
    UpdateToolRequest,
)
from lmagent.api.sse import (
    SSE_HEADERS,
    SSE_MEDIA_TYPE,
    stream_agent_events,
)
from lmagent.common import (
    AnsiColors,
    colored_print,
    new_id,
)
from lmagent.config import settings
from lmagent.core.agents import (
    AgentDefinition,
    AgentRun,
    CreateAgentRequest,
    RunAgentRequest,
    UpdateAgentRequest,
)
from lmagent.core.schema import ParsedToolCall
from lmagent.core.servers import (
    ServerConfig,
    server_manager,
)
from lmagent.tools import (
    RegisteredTool,
    ToolRegistry,
    initialize_tools,
    tool_registry,
)

logger = logging.getLogger(__name__)

initialize_tools(tool_registry)
initialize_preset_agents(agent_orchestrator)

app = FastAPI(title="lmagent API", version="0.1.0", description="Local LLM agent runner API")


# ---------------------------------------------------------------------------
# Dependencies (overridable in tests)
# ---------------------------------------------------------------------------
def get_orchestrator() -> AgentOrchestrator:
    """Orchestrator serving the requests."""
    return agent_orchestrator


def get_tool_registry() -> ToolRegistry:
    """Tool registry serving the requests."""
    return tool_registry


def _tool_info(tool: RegisteredTool) -> ToolInfo:
    return ToolInfo(**tool.describe())


def _require_tool(registry: ToolRegistry, name: str) -> RegisteredTool:
    tool = registry.get(name)
    if tool is None:
        raise HTTPException(status_code=404, detail=f'Tool "{name}" not found')
    return tool


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.get("/servers", response_model=List[ServerConfig], summary="List upstream servers")
async def list_servers() -> List[ServerConfig]:
    """Configured OpenAI-compatible servers."""
    return server_manager.get_all_servers()


@app.get("/agents", response_model=AgentListResponse, summary="List agents")
async def list_agents(
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> AgentListResponse:
    """Custom agents and presets."""
    return AgentListResponse(
        agents=orchestrator.list_custom_agents(), presets=orchestrator.list_presets()
    )


@app.post(
    "/agents", response_model=AgentDefinition, status_code=201, summary="Create a custom agent"
)
async def create_agent(
    req: CreateAgentRequest, orchestrator: AgentOrchestrator = Depends(get_orchestrator)
) -> AgentDefinition:
    """Create and register a custom agent."""
    try:
        return orchestrator.create_agent(req)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/agents/{agent_id}", response_model=AgentDefinition, summary="Get an agent")
async def get_agent(
    agent_id: str, orchestrator: AgentOrchestrator = Depends(get_orchestrator)
) -> AgentDefinition:
    """Return one agent definition."""
    agent = orchestrator.get_agent(agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail=f"Agent not found: {agent_id}")
    return agent


@app.put("/agents/{agent_id}", response_model=AgentDefinition, summary="Update an agent")
async def update_agent(
    agent_id: str,
    req: UpdateAgentRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> AgentDefinition:
    """Partially update a custom agent; presets are read-only."""
    try:
        return orchestrator.update_agent(agent_id, req)
    except AgentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PresetAgentError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/agents/{agent_id}", summary="Delete an agent")
async def delete_agent(
    agent_id: str, orchestrator: AgentOrchestrator = Depends(get_orchestrator)
) -> dict[str, bool]:
    """Delete a custom agent; presets cannot be deleted."""
    try:
        return {"deleted": orchestrator.delete_agent(agent_id)}
    except AgentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PresetAgentError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc


@app.post("/agents/{agent_id}/run", summary="Run an agent")
async def run_agent(
    agent_id: str,
    req: RunAgentRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> Any:
    """
    Run an agent.

    Streams ``data: {type, data, timestamp}`` frames followed by ``data: [DONE]``.  With
    ``stream=false`` the run is drained and its final snapshot returned instead.
    """
    if orchestrator.get_agent(agent_id) is None:
        raise HTTPException(status_code=404, detail=f"Agent not found: {agent_id}")

    events = orchestrator.run_agent(agent_id, req)
    if req.stream:
        return StreamingResponse(
            stream_agent_events(events), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS
        )

    last: Dict[str, Any] = {}
    async for event in events:
        last = event.to_payload()

    if last.get("type") == "done":
        return last["data"]["run"]
    error = last.get("data", {}).get("error", "Agent run failed unexpectedly")
    raise HTTPException(status_code=400, detail=error)


@app.get("/runs", response_model=List[AgentRun], summary="List live runs")
async def list_runs(orchestrator: AgentOrchestrator = Depends(get_orchestrator)) -> List[AgentRun]:
    """Runs that have not reached a terminal status yet."""
    return orchestrator.list_active_runs()


@app.get("/runs/{run_id}", response_model=AgentRun, summary="Get a live run")
async def get_run(
    run_id: str, orchestrator: AgentOrchestrator = Depends(get_orchestrator)
) -> AgentRun:
    """Live state of a run."""
    run = orchestrator.get_run_status(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return run


@app.post("/runs/{run_id}/cancel", summary="Cancel a run")
async def cancel_run(
    run_id: str, orchestrator: AgentOrchestrator = Depends(get_orchestrator)
) -> dict[str, bool]:
    """Request cancellation of a live run."""
    if not orchestrator.cancel_run(run_id):
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return {"cancelled": True}


@app.post("/runs/{run_id}/confirm", summary="Confirm or reject pending tool calls")
async def confirm_run(
    run_id: str,
    req: ConfirmRunRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> dict[str, bool]:
    """Resolve a confirmation checkpoint."""
    if orchestrator.get_run_status(run_id) is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    if not orchestrator.confirm_run(run_id, req.approved):
        raise HTTPException(status_code=409, detail="Run is not waiting for confirmation")
    return {"approved": req.approved}


@app.get("/tools", response_model=ToolListResponse, summary="List tools")
async def list_tools(
    all: bool = False,  # pylint: disable=redefined-builtin
    registry: ToolRegistry = Depends(get_tool_registry),
) -> ToolListResponse:
    """Enabled tools, or every tool with ``?all=true``."""
    tools = registry.get_all() if all else registry.get_enabled()
    return ToolListResponse(
        tools=[_tool_info(t) for t in tools],
        count=len(tools),
        enabled_count=len(registry.get_enabled()),
        total_count=len(registry.get_all()),
    )


@app.post("/tools", response_model=ExecuteToolResponse, summary="Execute a tool")
async def execute_tool(
    req: ExecuteToolRequest, registry: ToolRegistry = Depends(get_tool_registry)
) -> ExecuteToolResponse:
    """Run one tool directly with the given arguments."""
    tool = _require_tool(registry, req.name)
    if not tool.enabled:
        raise HTTPException(status_code=400, detail=f'Tool "{req.name}" is disabled')

    result = await registry.execute(
        ParsedToolCall(id=new_id(), name=req.name, arguments=req.arguments)
    )
    return ExecuteToolResponse(
        name=result.name,
        result=result.result,
        error=result.error,
        execution_time_ms=result.execution_time_ms,
    )


@app.get("/tools/{tool_name}", response_model=ToolInfo, summary="Get a tool")
async def get_tool(
    tool_name: str, registry: ToolRegistry = Depends(get_tool_registry)
) -> ToolInfo:
    """Details of one tool."""
    return _tool_info(_require_tool(registry, tool_name))


@app.patch("/tools/{tool_name}", response_model=ToolInfo, summary="Update tool settings")
async def update_tool(
    tool_name: str,
    req: UpdateToolRequest,
    registry: ToolRegistry = Depends(get_tool_registry),
) -> ToolInfo:
    """Enable or disable a tool."""
    tool = _require_tool(registry, tool_name)
    if req.enabled is not None:
        registry.set_enabled(tool_name, req.enabled)
        logger.info("Tool '%s' %s", tool_name, "enabled" if req.enabled else "disabled")
    return _tool_info(tool)


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn out of the import path of library users
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting lmagent API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    logger.debug("API settings: %s", settings.model_dump())

    colored_print(f"🤖 lmagent API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "lmagent.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m lmagent.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
