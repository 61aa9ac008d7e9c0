"""
Pydantic models for lmagent API requests and responses.
Agent and run payloads reuse the core schema; only the API-specific shapes live here.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from lmagent.core.agents import AgentDefinition


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class AgentListResponse(BaseModel):
    """Custom agents and presets, listed separately."""

    agents: List[AgentDefinition]
    presets: List[AgentDefinition]


class ConfirmRunRequest(BaseModel):
    """Decision for a run waiting on tool-call confirmation."""

    approved: bool = True


class ExecuteToolRequest(BaseModel):
    """Direct tool invocation, bypassing the agent loop."""

    name: str = Field(..., min_length=1)
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ExecuteToolResponse(BaseModel):
    """Outcome of a direct tool invocation."""

    name: str
    result: Any = None
    error: Optional[str] = None
    execution_time_ms: Optional[int] = None


class UpdateToolRequest(BaseModel):
    """Tool settings that can be changed at runtime."""

    enabled: Optional[bool] = None


class ToolInfo(BaseModel):
    """Tool listing entry."""

    name: str
    description: str
    category: str
    enabled: bool
    requires_auth: bool
    parameters: Dict[str, Any]


class ToolListResponse(BaseModel):
    """Tool listing with counts."""

    tools: List[ToolInfo]
    count: int
    enabled_count: int
    total_count: int
