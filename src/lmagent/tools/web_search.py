"""
Web search tool.

Placeholder until a search provider is wired in: the tool is registered disabled and, when enabled,
returns a single result explaining that search is not configured.
"""

from typing import (
    Any,
    Dict,
    List,
)

from lmagent.tools import (
    ToolRegistry,
    define_tool,
)

MAX_QUERY_LENGTH = 500


async def perform_search(query: str, num_results: int = 5) -> List[Dict[str, str]]:
    """Return search hits for *query*."""
    # TODO: query a real provider (Brave, SerpAPI or Bing) here
    del num_results
    return [
        {
            "title": "Web Search Not Configured",
            "url": "https://example.com/configure",
            "snippet": "Web search is not yet configured. Integrate a search API "
            f'(Brave, SerpAPI, Bing, ...) to enable it. Query was: "{query}"',
        }
    ]


async def web_search(args: Dict[str, Any]) -> Dict[str, Any]:
    """Handler for the ``web_search`` tool."""
    query = args.get("query")
    if not query or not isinstance(query, str):
        raise ValueError("Query is required and must be a string")
    if len(query) > MAX_QUERY_LENGTH:
        raise ValueError(f"Query is too long (max {MAX_QUERY_LENGTH} characters)")

    try:
        num_results = int(args.get("num_results") or 5)
    except (TypeError, ValueError):
        num_results = 5
    num_results = min(max(num_results, 1), 10)

    results = await perform_search(query, num_results)
    return {"query": query, "result_count": len(results), "results": results}


def register_web_search_tool(registry: ToolRegistry | None = None) -> None:
    """Register the web search tool (disabled until a provider is integrated)."""
    define_tool(
        "web_search",
        "Search the web for current information. Use this when you need up-to-date information "
        "that may not be in your training data, such as recent news, current events, prices, "
        "weather, or any time-sensitive information.",
        {
            "query": {
                "type": "string",
                "description": "The search query. Be specific and include relevant keywords.",
                "required": True,
            },
            "num_results": {
                "type": "number",
                "description": "Number of results to return (default: 5, max: 10)",
            },
        },
        web_search,
        registry=registry,
        enabled=False,
        category="web",
    )
