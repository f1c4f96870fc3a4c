"""
Slack Transport
===============

Binds the chat transport contract to a Slack conversation.

    query_messages    conversations.history (or .replies inside a thread)
    create_message    chat.postMessage with a placeholder
    set_message_text  chat.update
    send_event        assistant.threads.setStatus

Slack shows plain text, not envelopes. Every update therefore writes the
readable text (decoded from the envelope, even a half-streamed one) as the
message text and keeps the envelope itself in the message metadata. When
history is read back, the metadata envelope is preferred over the text so
the agent sees exactly what it wrote.

Status events need an assistant thread. Outside one they are only logged.
"""

import re
from typing import Any

from slack_sdk.web.async_client import AsyncWebClient

from medcompanion.chat.envelope import decode_incremental
from medcompanion.chat.transport import (
    AI_INDICATOR_CLEAR,
    AIState,
    ChatTransport,
    TransportMessage,
)
from medcompanion.utils.logger import Logger

logger = Logger("SlackTransport")

ENVELOPE_EVENT_TYPE = "medcompanion_envelope"
PLACEHOLDER_TEXT = "…"

_MENTION = re.compile(r"<@[A-Z0-9]+>")

STATUS_TEXT = {
    AIState.THINKING.value: "is thinking...",
    AIState.GENERATING.value: "is typing...",
    AIState.EXTERNAL_SOURCES.value: "is checking external sources...",
    AIState.ERROR.value: "ran into a problem",
}


def strip_mentions(text: str) -> str:
    """Remove <@U123> mentions from Slack message text."""
    return _MENTION.sub("", text).strip()


def display_text(body: str) -> str:
    """The readable part of a (possibly partial) envelope for Slack."""
    return decode_incremental(body).text or PLACEHOLDER_TEXT


def message_from_slack(raw: dict[str, Any]) -> TransportMessage:
    """
    Convert a Slack message dict into a TransportMessage.

    Bot messages are agent-generated; their envelope is taken from metadata
    when present.
    """
    ai_generated = bool(raw.get("bot_id")) or raw.get("subtype") == "bot_message"
    text = raw.get("text") or ""

    metadata = raw.get("metadata") or {}
    if ai_generated and metadata.get("event_type") == ENVELOPE_EVENT_TYPE:
        text = (metadata.get("event_payload") or {}).get("envelope", text)
    elif not ai_generated:
        text = strip_mentions(text)

    return TransportMessage(
        id=raw.get("ts", ""),
        text=text,
        ai_generated=ai_generated,
        user_id=raw.get("user"),
    )


class SlackTransport(ChatTransport):
    """
    A Slack channel (or assistant thread) as a chat transport.

    Example:
        transport = SlackTransport(app.client, channel="D123")
        message_id = await transport.create_message()
        await transport.set_message_text(message_id, '{"lang": "en-US", "text": "Hi"}')
    """

    def __init__(
        self,
        client: AsyncWebClient,
        channel: str,
        thread_ts: str | None = None
    ):
        self.client = client
        self.channel = channel
        self.thread_ts = thread_ts

    @property
    def channel_id(self) -> str:
        """Session key: the channel, or channel/thread inside a thread."""
        if self.thread_ts:
            return f"{self.channel}/{self.thread_ts}"
        return self.channel

    async def query_messages(self, limit: int) -> list[TransportMessage]:
        if self.thread_ts:
            response = await self.client.conversations_replies(
                channel=self.channel,
                ts=self.thread_ts,
                limit=limit,
                include_all_metadata=True,
            )
            # Replies come oldest first
            raw_messages = list(reversed(response.get("messages", [])))[:limit]
        else:
            response = await self.client.conversations_history(
                channel=self.channel,
                limit=limit,
                include_all_metadata=True,
            )
            raw_messages = response.get("messages", [])

        return [message_from_slack(raw) for raw in raw_messages]

    async def create_message(self, text: str = "") -> str:
        kwargs: dict[str, Any] = {"channel": self.channel, "text": display_text(text)}
        if self.thread_ts:
            kwargs["thread_ts"] = self.thread_ts

        response = await self.client.chat_postMessage(**kwargs)
        return response["ts"]

    async def set_message_text(self, message_id: str, text: str) -> None:
        await self.client.chat_update(
            channel=self.channel,
            ts=message_id,
            text=display_text(text),
            metadata={
                "event_type": ENVELOPE_EVENT_TYPE,
                "event_payload": {"envelope": text},
            },
        )

    async def send_event(self, event: dict[str, Any]) -> None:
        if not self.thread_ts:
            logger.debug(f"Status {event.get('ai_state', 'clear')} (no assistant thread)")
            return

        if event.get("type") == AI_INDICATOR_CLEAR:
            status = ""
        else:
            status = STATUS_TEXT.get(event.get("ai_state", ""), "")

        await self.client.assistant_threads_setStatus(
            channel_id=self.channel,
            thread_ts=self.thread_ts,
            status=status,
        )
