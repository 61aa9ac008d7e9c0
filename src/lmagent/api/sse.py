"""Server-sent-events framing for streamed agent runs."""

import json
from typing import (
    Any,
    AsyncIterator,
    Dict,
    Optional,
)

from lmagent.core.agents import AgentStreamEvent

SSE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # nginx
}

SSE_MEDIA_TYPE = "text/event-stream"


def encode_sse(data: Any, event: Optional[str] = None, id: Optional[str] = None) -> str:
    """Encode one SSE frame; non-string *data* is serialized as JSON."""
    # pylint: disable=redefined-builtin
    frame = ""
    if id:
        frame += f"id: {id}\n"
    if event:
        frame += f"event: {event}\n"
    payload = data if isinstance(data, str) else json.dumps(data, default=str)
    return frame + f"data: {payload}\n\n"


def encode_sse_done() -> str:
    """End-of-stream sentinel frame."""
    return "data: [DONE]\n\n"


def encode_sse_error(error: str, code: Optional[str] = None) -> str:
    """Error frame carrying ``{error, code}``."""
    return encode_sse({"error": error, "code": code}, event="error")


async def stream_agent_events(events: AsyncIterator[AgentStreamEvent]) -> AsyncIterator[str]:
    """Frame every event of a run as ``data: {type, data, timestamp}``, then ``[DONE]``."""
    try:
        async for event in events:
            yield encode_sse(event.to_payload())
    except Exception as exc:  # pylint: disable=broad-except
        yield encode_sse_error(str(exc) or "Agent execution failed", "STREAM_ERROR")
    yield encode_sse_done()
