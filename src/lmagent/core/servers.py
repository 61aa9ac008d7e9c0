"""
Upstream server lookup.

Servers are read from ``settings.LMSTUDIO_SERVERS`` (``"name1|url1,name2|url2"``) or fall back to
the built-in defaults.  Only lookups live here; the orchestrator treats an unknown id as a run
precondition failure.
"""

import logging
from typing import (
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from lmagent.common import new_id
from lmagent.config import settings

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """An OpenAI-compatible completion server."""

    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=100)
    url: str
    is_connected: bool = False
    last_checked: Optional[int] = None
    model_count: Optional[int] = None


DEFAULT_SERVERS: List[ServerConfig] = [
    ServerConfig(id="local-main", name="Local (Main)", url="http://localhost:1234/v1"),
    ServerConfig(id="melmbox", name="Melmbox", url="http://melmbox:1234/v1"),
]


def normalize_url(url: str) -> str:
    """Strip the trailing slash so URLs compare equal."""
    return url.rstrip("/")


def parse_servers(raw: str | None) -> List[ServerConfig]:
    """Parse the ``name|url`` comma-separated server list; malformed entries are skipped."""
    if not raw:
        return []

    servers: List[ServerConfig] = []
    for entry in (e.strip() for e in raw.split(",")):
        if not entry:
            continue
        name, _, url = (part.strip() for part in entry.partition("|"))
        if not name or not url:
            logger.warning("Invalid server entry: %s", entry)
            continue
        servers.append(ServerConfig(id=new_id()[:12], name=name, url=normalize_url(url)))
    return servers


class ServerManager:
    """In-memory set of configured servers."""

    def __init__(self, servers: List[ServerConfig] | None = None):
        if servers is None:
            servers = parse_servers(settings.LMSTUDIO_SERVERS) or [
                s.model_copy() for s in DEFAULT_SERVERS
            ]
        self._servers: Dict[str, ServerConfig] = {s.id: s for s in servers}

    def get_server_by_id(self, server_id: str) -> ServerConfig | None:
        """Return the server registered under *server_id*, if any."""
        return self._servers.get(server_id)

    def get_server_by_url(self, url: str) -> ServerConfig | None:
        """Return the server whose URL matches *url* (trailing slash ignored)."""
        target = normalize_url(url)
        return next((s for s in self._servers.values() if normalize_url(s.url) == target), None)

    def get_all_servers(self) -> List[ServerConfig]:
        """All configured servers in registration order."""
        return list(self._servers.values())


server_manager = ServerManager()


def get_server_by_id(server_id: str) -> ServerConfig | None:
    """Module-level lookup against the default :class:`ServerManager`."""
    return server_manager.get_server_by_id(server_id)
