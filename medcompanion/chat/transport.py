"""
Chat Transport Contract
=======================

The companion never talks to a chat service directly. Everything it needs
from one fits in four operations:

    query_messages()    most-recent-first channel history
    create_message()    post an empty agent-generated placeholder
    set_message_text()  idempotent "set text" keyed by message id
    send_event()        status events (ai_indicator.update / .clear)

The Slack binding lives in medcompanion.slack.transport; tests use an
in-memory implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any


class AIState(str, Enum):
    """Status values published while a turn runs."""
    THINKING = "AI_STATE_THINKING"
    GENERATING = "AI_STATE_GENERATING"
    EXTERNAL_SOURCES = "AI_STATE_EXTERNAL_SOURCES"
    ERROR = "AI_STATE_ERROR"
    CLEAR = "AI_STATE_CLEAR"


AI_INDICATOR_UPDATE = "ai_indicator.update"
AI_INDICATOR_CLEAR = "ai_indicator.clear"


def status_event(state: AIState, message_id: str) -> dict[str, Any]:
    """Build the wire event for a status change."""
    if state is AIState.CLEAR:
        return {"type": AI_INDICATOR_CLEAR, "message_id": message_id}
    return {
        "type": AI_INDICATOR_UPDATE,
        "ai_state": state.value,
        "message_id": message_id,
    }


@dataclass(frozen=True)
class TransportMessage:
    """
    One message as stored by the transport.

    Attributes:
        id: Transport message id
        text: Raw message body (usually an envelope)
        ai_generated: True if the agent wrote it
        user_id: Author, when known
    """
    id: str
    text: str
    ai_generated: bool = False
    user_id: str | None = None


class ChatTransport(ABC):
    """A single channel on a chat service."""

    channel_id: str

    @abstractmethod
    async def query_messages(self, limit: int) -> list[TransportMessage]:
        """Return up to `limit` messages, most recent first."""

    @abstractmethod
    async def create_message(self, text: str = "") -> str:
        """Post an agent-generated message and return its id."""

    @abstractmethod
    async def set_message_text(self, message_id: str, text: str) -> None:
        """Replace the text of a message. Safe to repeat."""

    @abstractmethod
    async def send_event(self, event: dict[str, Any]) -> None:
        """Deliver a status event to the channel."""
