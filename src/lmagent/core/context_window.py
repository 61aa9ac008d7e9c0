"""
Conversation context windowing.

Token counts here are an approximation: ``ceil(len(content) / 4)`` per message plus a fixed overhead
of 4 tokens for the message structure.  It is a cheap proxy, not a tokenizer; nothing downstream
should treat the numbers as exact.
"""

import logging
import math
from typing import (
    List,
    Literal,
    Optional,
    Sequence,
)

from pydantic import (
    BaseModel,
    Field,
)

from lmagent.core.schema import Message

logger = logging.getLogger(__name__)

MESSAGE_OVERHEAD_TOKENS = 4

WindowingStrategy = Literal["truncate-oldest", "truncate-middle", "summarize"]


class ContextWindowOptions(BaseModel):
    """How to shrink a conversation that does not fit the budget."""

    max_tokens: int = Field(4096, ge=1)
    strategy: WindowingStrategy = "truncate-oldest"
    min_messages: int = Field(2, ge=0)  # floor of non-system messages, may exceed the budget
    keep_system_message: bool = True


def estimate_token_count(text: str) -> int:
    """Approximate token count for *text* (roughly 4 characters per token)."""
    return math.ceil(len(text) / 4)


def _message_tokens(message: Message) -> int:
    return estimate_token_count(message.content) + MESSAGE_OVERHEAD_TOKENS


def calculate_conversation_tokens(messages: Sequence[Message]) -> int:
    """Approximate token cost of a whole conversation."""
    return sum(_message_tokens(msg) for msg in messages)


def apply_context_window(
    messages: Sequence[Message],
    options: Optional[ContextWindowOptions] = None,
    **overrides: object,
) -> List[Message]:
    """
    Fit *messages* within ``options.max_tokens``.

    Lists already within budget are returned unchanged.  Otherwise the chosen strategy drops
    messages; a leading system message is preserved when ``keep_system_message`` is set.
    ``summarize`` is accepted but currently behaves exactly like ``truncate-oldest`` (no
    summarization call is made).
    """
    opts = (options or ContextWindowOptions()).model_copy(update=overrides)

    if calculate_conversation_tokens(messages) <= opts.max_tokens:
        return list(messages)

    system_message: Message | None = None
    if opts.keep_system_message and messages and messages[0].role == "system":
        system_message = messages[0]
        working = list(messages[1:])
    else:
        working = list(messages)

    logger.debug(
        "Applying '%s' windowing to %d messages (budget %d tokens)",
        opts.strategy,
        len(messages),
        opts.max_tokens,
    )

    if opts.strategy == "truncate-middle":
        return _truncate_middle(system_message, working, opts.max_tokens, opts.min_messages)
    # "summarize" is a stub for now
    return _truncate_oldest(system_message, working, opts.max_tokens, opts.min_messages)


def _truncate_oldest(
    system_message: Message | None,
    messages: List[Message],
    max_tokens: int,
    min_messages: int,
) -> List[Message]:
    available = max_tokens
    if system_message is not None:
        available -= _message_tokens(system_message)

    kept: List[Message] = []
    for msg in reversed(messages):
        cost = _message_tokens(msg)
        if available - cost >= 0 or len(kept) < min_messages:
            kept.append(msg)
            available -= cost
        else:
            break

    kept.reverse()
    if system_message is not None:
        kept.insert(0, system_message)
    return kept


def _truncate_middle(
    system_message: Message | None,
    messages: List[Message],
    max_tokens: int,
    min_messages: int,
) -> List[Message]:
    if len(messages) <= min_messages * 2:
        return _truncate_oldest(system_message, messages, max_tokens, min_messages)

    available = max_tokens
    if system_message is not None:
        available -= _message_tokens(system_message)

    keep_first = min_messages // 2 or 1
    keep_last = min_messages - keep_first
    first = messages[:keep_first]
    last = messages[len(messages) - keep_last :] if keep_last > 0 else []

    if calculate_conversation_tokens(first + last) > available:
        return _truncate_oldest(system_message, messages, max_tokens, min_messages)

    dropped = len(messages) - keep_first - keep_last
    marker = Message(
        role="system",
        content=f"[{dropped} messages truncated for context window]",
    )
    result = [*first, marker, *last]
    if system_message is not None:
        result.insert(0, system_message)
    return result


def prepare_messages_for_request(
    system_prompt: str,
    conversation: Sequence[Message],
    max_tokens: int = 4096,
) -> List[Message]:
    """Prefix *conversation* with a system prompt and window it with ``truncate-oldest``."""
    messages = [Message(role="system", content=system_prompt), *conversation]
    return apply_context_window(
        messages,
        ContextWindowOptions(
            max_tokens=max_tokens, strategy="truncate-oldest", keep_system_message=True
        ),
    )


def format_conversation(messages: Sequence[Message]) -> str:
    """Render messages as ``Role: content`` blocks for display or export."""
    return "\n\n".join(f"{msg.role.capitalize()}: {msg.content}" for msg in messages)


def generate_title(messages: Sequence[Message], max_length: int = 50) -> str:
    """Derive a conversation title from the first user message."""
    first_user = next((m for m in messages if m.role == "user"), None)
    if first_user is None:
        return "New Chat"

    content = first_user.content.strip()
    if len(content) <= max_length:
        return content
    return content[: max_length - 3] + "..."
