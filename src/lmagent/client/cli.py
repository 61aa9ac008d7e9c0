"""CLI client for the lmagent API: streams agent runs and prints their progress."""

from __future__ import annotations

import json
import logging
import time
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Optional,
    Tuple,
    cast,
)

import httpx

from lmagent.common import (
    AnsiColors,
    colored_print,
)
from lmagent.config import settings

logger = logging.getLogger(__name__)

STREAM_TIMEOUT = httpx.Timeout(30.0, read=None)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    import signal  # pylint: disable=import-outside-toplevel

    # SIGINT must interrupt read() instead of restarting it
    signal.siginterrupt(signal.SIGINT, True)

    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def _api_url(endpoint: str) -> str:
    return f"http://localhost:{settings.API_PORT}{endpoint}"


def call_api(
    method: str, endpoint: str, data: Optional[Dict[str, Any]] = None, max_retries: int = 5
) -> Dict[str, Any]:
    """Make a request to the API and return the JSON body, retrying while the API starts up."""
    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=30.0) as client:
                response = client.request(method, _api_url(endpoint), json=data)
                response.raise_for_status()
                return cast(Dict[str, Any], response.json())
        except httpx.ConnectError:
            if attempt == max_retries - 1:
                break
            retry_delay = 0.5 * (2**attempt)  # 0.5s, 1s, 2s, 4s...
            logger.info(
                "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                retry_delay,
                attempt + 1,
                max_retries,
            )
            time.sleep(retry_delay)
        except httpx.HTTPStatusError as e:
            detail = e.response.text
            try:
                detail = e.response.json().get("detail", detail)
            except ValueError:
                pass
            logger.error("API request error: %s", e)
            return {"error": f"API error: {detail}"}
        except httpx.HTTPError as e:
            logger.error("API request error: %s", e)
            return {"error": f"Error connecting to API: {e}"}

    return {"error": f"Failed to connect to API after {max_retries} attempts"}


def iter_run_events(
    agent_id: str, payload: Dict[str, Any], client: httpx.Client | None = None
) -> Iterator[Dict[str, Any]]:
    """Yield the decoded events of a streamed run until the ``[DONE]`` sentinel."""
    owned = client is None
    http = client or httpx.Client(timeout=STREAM_TIMEOUT)
    try:
        with http.stream("POST", _api_url(f"/agents/{agent_id}/run"), json=payload) as response:
            if response.status_code >= 400:
                response.read()
                yield {"type": "error", "data": {"error": f"API error: {response.text}"}}
                return
            for line in response.iter_lines():
                if not line.startswith("data: "):
                    continue
                data = line[len("data: ") :]
                if data == "[DONE]":
                    return
                try:
                    yield json.loads(data)
                except ValueError:
                    logger.debug("Skipping malformed event: %s", data)
    finally:
        if owned:
            http.close()


def render_event(event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Print one run event; returns the final run snapshot for ``done`` events."""
    kind = event.get("type")
    data = event.get("data") or {}

    if kind == "content":
        colored_print(data.get("content", ""), AnsiColors.YELLOW, end="", flush=True)
    elif kind == "tool_call":
        step = data.get("step") or {}
        args = json.dumps(step.get("tool_args") or {})
        colored_print(f"\n🔧 {step.get('tool_name')}({args})", AnsiColors.GREY)
    elif kind == "tool_result":
        step = data.get("step") or {}
        if step.get("error"):
            colored_print(f"   ⚠️ {step['error']}", AnsiColors.RED)
        else:
            colored_print(f"   → {step.get('content')}", AnsiColors.GREEN)
    elif kind == "status" and data.get("status") == "waiting_confirmation":
        colored_print("\n⏸  Waiting for tool-call confirmation...", AnsiColors.BLUE)
    elif kind == "error":
        colored_print(f"\n⚠️ {data.get('error')}", AnsiColors.RED)
    elif kind == "done":
        return cast(Dict[str, Any], data.get("run") or {})
    return None


def run_cli() -> None:
    """Run the interactive shell that streams agent runs from the API."""
    health = call_api("GET", "/health")
    if "error" in health:
        colored_print(f"⚠️ {health['error']}", AnsiColors.RED)
        return

    agent_id = settings.CLI_AGENT_ID
    colored_print(
        f"\n🤖 lmagent shell [{agent_id} @ {settings.CLI_SERVER_ID}] - type 'exit' or 'quit' "
        "(or Ctrl+C) to exit",
        AnsiColors.GREEN,
    )
    history: List[Dict[str, str]] = []

    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Ctrl+C / EOF
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        payload: Dict[str, Any] = {
            "input": user_msg,
            "server_id": settings.CLI_SERVER_ID,
            "context_messages": history,
            "stream": True,
        }
        if settings.CLI_MODEL:
            payload["model"] = settings.CLI_MODEL

        final: Optional[Dict[str, Any]] = None
        try:
            for event in iter_run_events(agent_id, payload):
                final = render_event(event) or final
        except httpx.HTTPError as e:
            colored_print(f"\n⚠️ Error connecting to API: {e}", AnsiColors.RED)
            continue
        print()

        if final is None:
            continue
        status = final.get("status")
        color = AnsiColors.GREEN if status == "completed" else AnsiColors.RED
        colored_print(
            f"[{status}] turns={final.get('current_turn')} tools={final.get('total_tool_calls')}",
            color,
        )
        if status == "completed":
            history.append({"role": "user", "content": user_msg})
            history.append({"role": "assistant", "content": final.get("output") or ""})


if __name__ == "__main__":
    run_cli()
