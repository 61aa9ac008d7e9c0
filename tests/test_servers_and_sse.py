"""
Tests for the server lookup and the SSE framing helpers.

Run with:
$ pytest -q
"""

import json
from typing import (
    AsyncIterator,
    List,
)

import pytest

from lmagent.api.sse import (
    encode_sse,
    encode_sse_done,
    encode_sse_error,
    stream_agent_events,
)
from lmagent.config import settings
from lmagent.core.agents import AgentStreamEvent
from lmagent.core.servers import (
    DEFAULT_SERVERS,
    ServerConfig,
    ServerManager,
    parse_servers,
)


def test_parse_servers_skips_malformed_entries() -> None:
    """Only ``name|url`` pairs with both parts survive; trailing slashes are stripped."""

    servers = parse_servers("Main|http://a:1234/v1/, broken, |http://b, Other|http://c/v1")

    assert [(s.name, s.url) for s in servers] == [
        ("Main", "http://a:1234/v1"),
        ("Other", "http://c/v1"),
    ]
    assert len({s.id for s in servers}) == 2
    assert parse_servers("") == []
    assert parse_servers(None) == []


def test_server_manager_lookups() -> None:
    """Servers are found by id or by URL, ignoring a trailing slash."""

    manager = ServerManager([ServerConfig(id="s1", name="One", url="http://one/v1")])

    assert manager.get_server_by_id("s1").name == "One"
    assert manager.get_server_by_id("nope") is None
    assert manager.get_server_by_url("http://one/v1/").id == "s1"
    assert [s.id for s in manager.get_all_servers()] == ["s1"]


def test_server_manager_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without configured servers the built-in defaults are used."""

    monkeypatch.setattr(settings, "LMSTUDIO_SERVERS", None)

    manager = ServerManager()

    assert [s.id for s in manager.get_all_servers()] == [s.id for s in DEFAULT_SERVERS]


def test_encode_sse_frames() -> None:
    """Frames carry optional id and event lines before the data line."""

    assert encode_sse({"a": 1}) == 'data: {"a": 1}\n\n'
    assert encode_sse("raw", event="note", id="7") == "id: 7\nevent: note\ndata: raw\n\n"
    assert encode_sse_done() == "data: [DONE]\n\n"
    error = encode_sse_error("boom", "X")
    assert error.startswith("event: error\n")
    assert json.loads(error.split("data: ", 1)[1]) == {"error": "boom", "code": "X"}


@pytest.mark.asyncio
async def test_stream_agent_events_terminates_with_done() -> None:
    """Events are framed in order and the stream always ends with ``[DONE]``."""

    async def events() -> AsyncIterator[AgentStreamEvent]:
        yield AgentStreamEvent(type="content", data={"content": "hi"}, timestamp=1)
        raise RuntimeError("exploded")

    frames: List[str] = [frame async for frame in stream_agent_events(events())]

    assert json.loads(frames[0][len("data: ") :]) == {
        "type": "content",
        "data": {"content": "hi"},
        "timestamp": 1,
    }
    assert "STREAM_ERROR" in frames[1]
    assert "exploded" in frames[1]
    assert frames[2] == "data: [DONE]\n\n"
