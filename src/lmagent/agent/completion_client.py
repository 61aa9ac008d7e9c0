"""
Completion client for OpenAI-compatible servers (LM Studio and friends).

This module is the only place that *directly* calls an LLM.  Everything else (orchestrator, tools,
context windowing) stays transport-agnostic.

Non-streaming calls are retried with exponential backoff (``RETRY_BASE_DELAY_MS * 2**attempt``),
except for 4xx responses and timeouts, which are raised immediately.  Streaming calls are not
retried; they parse the server-sent-events body line by line and stop on ``[DONE]``, on an
exhausted body, or as soon as the caller's cancellation event is set.
"""

import asyncio
import json
import logging
import time
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    TypeVar,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
)

from lmagent.config import settings
from lmagent.core.schema import (
    Message,
    ToolDefinition,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SSE_DATA_PREFIX = "data: "
SSE_DONE = "[DONE]"


class CompletionError(RuntimeError):
    """Raised when the upstream server cannot serve a request."""

    def __init__(self, message: str, code: str, status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status = status


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------
class ChatCompletionRequest(BaseModel):
    """Body of a ``/chat/completions`` call."""

    model: str
    messages: List[Message] = Field(..., min_length=1)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    stop: Optional[List[str]] = None
    tools: Optional[List[ToolDefinition]] = None

    def to_payload(self, stream: bool) -> Dict[str, Any]:
        """Wire body with defaults from settings for unset generation parameters."""
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_payload() for m in self.messages],
            "temperature": (
                self.temperature if self.temperature is not None else settings.DEFAULT_TEMPERATURE
            ),
            "max_tokens": self.max_tokens or settings.DEFAULT_MAX_TOKENS,
            "top_p": self.top_p if self.top_p is not None else settings.DEFAULT_TOP_P,
            "stream": stream,
        }
        if self.stop:
            payload["stop"] = self.stop
        if self.tools:
            payload["tools"] = [t.model_dump(exclude_none=True) for t in self.tools]
        return payload


class CompletionUsage(BaseModel):
    """Token usage reported by the server."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResult(BaseModel):
    """Extracted content of a non-streaming completion."""

    content: str
    finish_reason: Optional[str] = None
    usage: Optional[CompletionUsage] = None


class HealthStatus(BaseModel):
    """Outcome of a connectivity probe."""

    is_connected: bool
    latency_ms: Optional[int] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Retry helpers
# ---------------------------------------------------------------------------
async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: Optional[int] = None,
    base_delay_ms: Optional[int] = None,
) -> T:
    """
    Await *operation* up to *max_retries* times (at least once) with exponential backoff.

    4xx :class:`CompletionError` responses are re-raised at once, as are timeouts (converted to a
    ``TIMEOUT`` error): the caller either sent a bad request or has already given up.
    """
    attempts = max(max_retries if max_retries is not None else settings.MAX_RETRIES, 1)
    base_delay = base_delay_ms if base_delay_ms is not None else settings.RETRY_BASE_DELAY_MS
    attempt = 0
    while True:
        try:
            return await operation()
        except CompletionError as exc:
            if exc.status is not None and 400 <= exc.status < 500:
                raise
            last_error: CompletionError = exc
        except httpx.TimeoutException as exc:
            raise CompletionError("Request timed out", "TIMEOUT") from exc
        except httpx.HTTPError as exc:
            last_error = CompletionError(str(exc) or type(exc).__name__, "CONNECTION_ERROR")

        attempt += 1
        if attempt >= attempts:
            raise last_error

        delay = base_delay * (2 ** (attempt - 1)) / 1000
        logger.warning(
            "Upstream request failed (%s), retrying in %.1f seconds (attempt %d/%d)...",
            last_error,
            delay,
            attempt,
            attempts,
        )
        await asyncio.sleep(delay)


async def _raise_for_status(response: httpx.Response, what: str, code: str) -> None:
    if response.is_success:
        return
    try:
        body = (await response.aread()).decode("utf-8", errors="replace")
    except httpx.HTTPError:
        body = ""
    raise CompletionError(
        f"{what}: {response.reason_phrase}. {body}".strip(), code, response.status_code
    )


_CANCELLED = object()


async def _unless_cancelled(awaitable: Awaitable[T], cancel_event: Optional[asyncio.Event]) -> Any:
    """
    Await *awaitable*, giving up as soon as *cancel_event* is set.

    Returns the awaitable's result, or the ``_CANCELLED`` sentinel when the event won the race (the
    pending awaitable is cancelled first).
    """
    if cancel_event is None:
        return await awaitable
    task = asyncio.ensure_future(awaitable)
    if cancel_event.is_set():
        task.cancel()
        await asyncio.wait({task})
        return _CANCELLED

    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
    if task.cancelled():
        return _CANCELLED
    return task.result()


async def _next_line(lines: AsyncIterator[str]) -> Optional[str]:
    try:
        return await lines.__anext__()
    except StopAsyncIteration:
        return None


async def iter_sse_payloads(
    response: httpx.Response, cancel_event: Optional[asyncio.Event] = None
) -> AsyncIterator[Dict[str, Any]]:
    """
    Yield the decoded JSON objects of ``data:`` lines in an SSE body.

    Stops at ``[DONE]``, at the end of the body, or once *cancel_event* is set, including while
    waiting on a stalled upstream.  Lines that are not valid JSON objects are skipped.
    """
    lines = response.aiter_lines()
    while True:
        line = await _unless_cancelled(_next_line(lines), cancel_event)
        if line is _CANCELLED:
            logger.debug("Stream aborted by caller")
            return
        if line is None:
            return
        trimmed = line.strip()
        if not trimmed.startswith(SSE_DATA_PREFIX):
            continue
        data = trimmed[len(SSE_DATA_PREFIX) :]
        if data == SSE_DONE:
            return
        try:
            parsed = json.loads(data)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            yield parsed


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class CompletionClient:
    """Client bound to one upstream server."""

    def __init__(self, base_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _client(self, timeout_ms: int) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout_ms / 1000, transport=self._transport
        )

    async def check_health(self) -> HealthStatus:
        """Probe ``/models`` with a short timeout.  Never raises."""
        start = time.perf_counter()
        try:
            async with self._client(settings.HEALTH_CHECK_TIMEOUT_MS) as client:
                response = await client.get("/models")
        except Exception as exc:  # pylint: disable=broad-except
            return HealthStatus(is_connected=False, error=str(exc) or type(exc).__name__)

        if not response.is_success:
            return HealthStatus(
                is_connected=False,
                error=f"HTTP {response.status_code}: {response.reason_phrase}",
            )
        return HealthStatus(
            is_connected=True, latency_ms=int((time.perf_counter() - start) * 1000)
        )

    async def list_models(self) -> List[Dict[str, Any]]:
        """Return the server's model list, retrying transient failures."""

        async def _fetch() -> List[Dict[str, Any]]:
            async with self._client(settings.MODELS_TIMEOUT_MS) as client:
                response = await client.get("/models")
                await _raise_for_status(response, "Failed to fetch models", "SERVER_ERROR")
                return list(response.json().get("data") or [])

        return await with_retry(_fetch)

    async def chat(self, request: ChatCompletionRequest) -> ChatCompletionResult:
        """Non-streaming completion."""

        async def _complete() -> ChatCompletionResult:
            async with self._client(settings.CHAT_TIMEOUT_MS) as client:
                response = await client.post(
                    "/chat/completions", json=request.to_payload(stream=False)
                )
                await _raise_for_status(response, "Chat completion failed", "CHAT_ERROR")
                data = response.json()

            choices = data.get("choices") or [{}]
            choice = choices[0]
            usage = data.get("usage")
            return ChatCompletionResult(
                content=(choice.get("message") or {}).get("content") or "",
                finish_reason=choice.get("finish_reason"),
                usage=CompletionUsage(**usage) if usage else None,
            )

        return await with_retry(_complete)

    async def stream_completion_chunks(
        self,
        request: ChatCompletionRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Streaming completion yielding every parsed chunk object as sent by the server."""
        payload = request.to_payload(stream=True)
        logger.debug(
            "Streaming completion from %s (model=%s, %d messages, %d tools)",
            self.base_url,
            request.model,
            len(payload["messages"]),
            len(payload.get("tools", [])),
        )
        async with self._client(settings.CHAT_TIMEOUT_MS) as client:
            try:
                response = await _unless_cancelled(
                    client.send(
                        client.build_request("POST", "/chat/completions", json=payload),
                        stream=True,
                    ),
                    cancel_event,
                )
                if response is _CANCELLED:
                    logger.debug("Stream aborted by caller before the response arrived")
                    return
                try:
                    await _raise_for_status(response, "Chat completion failed", "CHAT_ERROR")
                    async for chunk in iter_sse_payloads(response, cancel_event):
                        yield chunk
                finally:
                    await response.aclose()
            except httpx.TimeoutException as exc:
                raise CompletionError("Request timed out", "TIMEOUT") from exc
            except httpx.HTTPError as exc:
                raise CompletionError(
                    str(exc) or type(exc).__name__, "CONNECTION_ERROR"
                ) from exc

    async def stream_chat(
        self,
        request: ChatCompletionRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """Streaming completion yielding content deltas only."""
        async for chunk in self.stream_completion_chunks(request, cancel_event):
            choices = chunk.get("choices") or [{}]
            content = (choices[0].get("delta") or {}).get("content")
            if content:
                yield content


_CLIENT_CACHE: Dict[str, CompletionClient] = {}


def get_completion_client(base_url: str) -> CompletionClient:
    """Return the cached client for *base_url* (trailing slash ignored)."""
    normalized = base_url.rstrip("/")
    if normalized not in _CLIENT_CACHE:
        _CLIENT_CACHE[normalized] = CompletionClient(normalized)
    return _CLIENT_CACHE[normalized]
