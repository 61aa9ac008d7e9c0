"""System-owned preset agents."""

import logging
from typing import List

from lmagent.core.agents import (
    AgentBehavior,
    AgentDefinition,
    AgentModelConfig,
)

logger = logging.getLogger(__name__)

GENERAL_PROMPT = """You are a General Assistant, a versatile helper for everyday tasks.

You can answer questions on many topics, do calculations, look up information, give date and time
information, and help with writing and planning.

Be accurate and concise. Use a tool whenever it makes the answer better, say so when you do not
know something, and ask a clarifying question when the request is unclear."""

RESEARCHER_PROMPT = """You are a Research Assistant who investigates questions thoroughly.

Work in this order:
1. Make sure you understand what the user needs to know.
2. Gather information with the web_search tool when current facts matter.
3. Combine what you found into a structured answer with headings or bullet points.
4. State how confident you are and cite sources when you have them.

If something cannot be found, say so and suggest where the answer might be."""

CODER_PROMPT = """You are a Coding Assistant for software development work.

You write, debug, explain and review code in many languages. Follow the conventions of the language
at hand, include error handling in examples and explain the reasoning behind design decisions.

Ask for clarification when a request is ambiguous, provide working code with a short usage example,
and point out edge cases or limitations. Use the calculator tool for non-trivial arithmetic."""

ANALYST_PROMPT = """You are a Data Analyst who interprets numbers and explains them plainly.

Show your work: use the calculator tool for every precise calculation, name the method you are
using and state its assumptions. Present findings with context, turn them into actionable
insights, and suggest follow-up analyses where useful."""


PRESET_AGENTS: List[AgentDefinition] = [
    AgentDefinition(
        id="preset-general",
        name="General Assistant",
        description="A versatile assistant that can help with a wide range of tasks using the "
        "available tools.",
        category="general",
        system_prompt=GENERAL_PROMPT,
        tools=["calculator", "datetime", "web_search"],
        behavior=AgentBehavior(max_tool_calls_per_turn=5, max_turns=15, run_timeout_ms=120000),
        generation=AgentModelConfig(temperature=0.7, max_tokens=4096, top_p=0.95),
        planning_strategy="none",
        is_preset=True,
        icon="bot",
    ),
    AgentDefinition(
        id="preset-researcher",
        name="Research Assistant",
        description="Specialized in research: searches the web, analyzes information and gives "
        "comprehensive answers to complex questions.",
        category="research",
        system_prompt=RESEARCHER_PROMPT,
        tools=["web_search", "datetime"],
        behavior=AgentBehavior(max_tool_calls_per_turn=5, max_turns=15, run_timeout_ms=180000),
        generation=AgentModelConfig(temperature=0.5, max_tokens=4096, top_p=0.9),
        planning_strategy="simple",
        is_preset=True,
        icon="search",
    ),
    AgentDefinition(
        id="preset-coder",
        name="Coding Assistant",
        description="Specialized in software development: writing, debugging, explaining and "
        "reviewing code.",
        category="coding",
        system_prompt=CODER_PROMPT,
        tools=["calculator", "datetime"],
        behavior=AgentBehavior(
            max_tool_calls_per_turn=3, max_turns=10, stop_on_error=True, run_timeout_ms=120000
        ),
        generation=AgentModelConfig(temperature=0.3, max_tokens=8192, top_p=0.95),
        planning_strategy="none",
        is_preset=True,
        icon="code",
    ),
    AgentDefinition(
        id="preset-analyst",
        name="Data Analyst",
        description="Specialized in data analysis: calculations, data interpretation and "
        "statistics.",
        category="analysis",
        system_prompt=ANALYST_PROMPT,
        tools=["calculator", "datetime"],
        behavior=AgentBehavior(max_tool_calls_per_turn=10, max_turns=20, run_timeout_ms=180000),
        generation=AgentModelConfig(temperature=0.2, max_tokens=4096, top_p=0.9),
        planning_strategy="simple",
        is_preset=True,
        icon="chart",
    ),
]


def initialize_preset_agents(orchestrator) -> None:
    """Register every preset on *orchestrator*; safe to call repeatedly."""
    for agent in PRESET_AGENTS:
        orchestrator.register_agent(agent)
    logger.debug("Registered %d preset agents", len(PRESET_AGENTS))
