"""
Conversation History
====================

Rebuilds the conversation from the chat transport for each turn. The
transport is the only store of past messages; nothing is kept between turns.

Selection walks the channel newest-first:
- each body is decoded with the envelope codec; empty results are skipped
- agent-generated messages become "assistant" turns, everything else "user"
- the newest `min_entries` turns are always kept
- beyond that, turns are accepted until the next one would overflow the
  history allowance

The kept turns are returned oldest-first, ready for the completion request.
History is best-effort: a failing transport yields an empty history.
"""

from dataclasses import dataclass, field
from typing import Any, Collection, Sequence

from medcompanion.agent.budget import estimate_tokens
from medcompanion.chat.envelope import decode
from medcompanion.chat.transport import ChatTransport, TransportMessage
from medcompanion.utils.logger import Logger

logger = Logger("History")


@dataclass(frozen=True)
class Turn:
    """
    One role-tagged unit of the completion request.

    Attributes:
        role: "user", "assistant", or "tool"
        content: The message text
        tool_call_id: For tool turns, the call being answered
        tool_name: For tool turns, the tool that produced the content
        tool_calls: For assistant turns that requested tools, the raw records
    """
    role: str
    content: str | None
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_calls: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    def to_openai_message(self) -> dict[str, Any]:
        """Format for the chat completions API."""
        message: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [dict(call) for call in self.tool_calls]
        if self.tool_call_id is not None:
            message["tool_call_id"] = self.tool_call_id
        if self.tool_name is not None:
            message["name"] = self.tool_name
        return message


def select_turns(
    messages: Sequence[TransportMessage],
    history_allowance: int,
    min_entries: int,
    exclude_ids: Collection[str] = ()
) -> list[Turn]:
    """
    Choose which transport messages become history turns.

    Args:
        messages: Channel messages, most recent first
        history_allowance: Token allowance for history
        min_entries: Newest turns kept regardless of the allowance
        exclude_ids: Message ids that are not history (the turn's own placeholder)

    Returns:
        Turns in chronological order (oldest first)
    """
    kept: list[Turn] = []
    total_tokens = 0

    for message in messages:
        if message.id in exclude_ids:
            continue

        text = decode(message.text).text
        if not text or not text.strip():
            continue

        cost = estimate_tokens(text)
        if len(kept) >= min_entries and total_tokens + cost > history_allowance:
            logger.debug(f"History truncated at {len(kept)} turns ({total_tokens} tokens)")
            break

        role = "assistant" if message.ai_generated else "user"
        kept.append(Turn(role=role, content=text))
        total_tokens += cost

    kept.reverse()
    return kept


class HistoryAssembler:
    """
    Pulls and trims channel history for a turn.

    Example:
        assembler = HistoryAssembler(fetch_limit=20)
        turns = await assembler.assemble(transport, history_allowance=24000, min_entries=3)
    """

    def __init__(self, fetch_limit: int = 20):
        """
        Args:
            fetch_limit: How many messages to request from the transport
        """
        self.fetch_limit = fetch_limit

    async def assemble(
        self,
        transport: ChatTransport,
        history_allowance: int,
        min_entries: int,
        exclude_ids: Collection[str] = ()
    ) -> list[Turn]:
        """Fetch history from the transport and select turns within budget."""
        try:
            messages = await transport.query_messages(limit=self.fetch_limit)
        except Exception as e:
            logger.error("Error fetching conversation history", e)
            return []

        turns = select_turns(messages, history_allowance, min_entries, exclude_ids)
        logger.debug(
            f"History: {len(turns)} turns",
            {"allowance": history_allowance, "fetched": len(messages)}
        )
        return turns
