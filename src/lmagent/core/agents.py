"""
Agent schema definitions.

Agent definitions are configuration (what an agent is allowed to do); runs, steps and stream events
are the execution record produced by the orchestrator.
"""

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

from lmagent.common import now_ms
from lmagent.core.schema import Message

AgentCategory = Literal[
    "general", "research", "coding", "analysis", "creative", "automation", "custom"
]
PlanningStrategy = Literal["none", "simple", "iterative", "hierarchical"]
AgentRunStatus = Literal[
    "pending",
    "planning",
    "executing",
    "waiting_confirmation",
    "completed",
    "failed",
    "cancelled",
    "max_turns_exceeded",
]
AgentStepType = Literal["thinking", "tool_call", "tool_result", "response", "error"]
AgentEventType = Literal[
    "status", "step", "thinking", "tool_call", "tool_result", "content", "error", "done"
]

TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled", "max_turns_exceeded"})

AGENT_ID_FIELD = Field(..., min_length=1, max_length=64)


# ---------------------------------------------------------------------------
# Agent configuration
# ---------------------------------------------------------------------------
class AgentBehavior(BaseModel):
    """Loop limits and error policy of an agent."""

    max_tool_calls_per_turn: int = Field(5, ge=1, le=20)
    max_turns: int = Field(10, ge=1, le=50)
    auto_continue: bool = True
    stop_on_error: bool = False
    run_timeout_ms: int = Field(120000, ge=1000, le=600000)
    require_confirmation: bool = False


class AgentModelConfig(BaseModel):
    """Generation parameters passed to the completion endpoint."""

    preferred_model: Optional[str] = None
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: int = Field(4096, ge=1, le=128000)
    top_p: float = Field(0.95, ge=0, le=1)


class AgentDefinition(BaseModel):
    """Complete agent definition."""

    id: str = AGENT_ID_FIELD
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    category: AgentCategory = "general"
    system_prompt: str = Field(..., min_length=1, max_length=10000)
    tools: List[str] = Field(default_factory=list)  # empty => every enabled tool
    behavior: AgentBehavior = Field(default_factory=AgentBehavior)
    generation: AgentModelConfig = Field(default_factory=AgentModelConfig)
    planning_strategy: PlanningStrategy = "none"  # informational only
    is_preset: bool = False
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    icon: str = "bot"


class CreateAgentRequest(BaseModel):
    """Payload for creating a custom agent (identity and timestamps are assigned)."""

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    category: Optional[AgentCategory] = None
    system_prompt: str = Field(..., min_length=1, max_length=10000)
    tools: List[str] = Field(default_factory=list)
    behavior: Optional[Dict[str, Any]] = None
    generation: Optional[Dict[str, Any]] = None
    planning_strategy: Optional[PlanningStrategy] = None
    icon: Optional[str] = None


class UpdateAgentRequest(BaseModel):
    """Partial update; nested policies are merged key by key."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    category: Optional[AgentCategory] = None
    system_prompt: Optional[str] = Field(None, min_length=1, max_length=10000)
    tools: Optional[List[str]] = None
    behavior: Optional[Dict[str, Any]] = None
    generation: Optional[Dict[str, Any]] = None
    planning_strategy: Optional[PlanningStrategy] = None
    icon: Optional[str] = None


# ---------------------------------------------------------------------------
# Execution record
# ---------------------------------------------------------------------------
class AgentStep(BaseModel):
    """Single observable unit of work within a run.  Never mutated once appended."""

    index: int
    type: AgentStepType
    content: str
    tool_name: Optional[str] = None
    tool_args: Optional[Dict[str, Any]] = None
    tool_result: Any = None
    error: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)
    duration_ms: Optional[int] = None


class TokenUsage(BaseModel):
    """Accumulated token counts reported by the upstream server."""

    prompt: int = 0
    completion: int = 0
    total: int = 0


class AgentRun(BaseModel):
    """Mutable execution record of one agent invocation."""

    id: str
    agent_id: str = AGENT_ID_FIELD
    status: AgentRunStatus = "pending"
    input: str
    steps: List[AgentStep] = Field(default_factory=list)
    output: Optional[str] = None
    error: Optional[str] = None
    messages: List[Message] = Field(default_factory=list)
    current_turn: int = 0
    total_tool_calls: int = 0
    started_at: int = Field(default_factory=now_ms)
    ended_at: Optional[int] = None
    token_usage: Optional[TokenUsage] = None

    @property
    def is_terminal(self) -> bool:
        """True once the run reached a final status."""
        return self.status in TERMINAL_STATUSES


class RunAgentRequest(BaseModel):
    """Request to start an agent run."""

    input: str = Field(..., min_length=1, max_length=100000)
    server_id: str = Field(..., min_length=1)
    model: Optional[str] = None  # overrides the agent's preferred model
    context_messages: Optional[List[Message]] = None
    stream: bool = True


class AgentStreamEvent(BaseModel):
    """Wire-level unit emitted to a run's observer."""

    type: AgentEventType
    data: Dict[str, Any]
    timestamp: int = Field(default_factory=now_ms)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready ``{type, data, timestamp}`` dict."""
        return self.model_dump(mode="json")
