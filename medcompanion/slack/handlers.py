"""
Slack Event Handlers
====================

Handles Slack events and routes them to the channel's AgentSession.

Event Types:
- app_mention: When someone mentions the companion in a channel
- message.im: Direct messages to the companion

Handler Pattern:
    1. Receive event from Slack
    2. Build the channel's transport and find (or create) its session
    3. Queue the message; the session's worker answers it
    4. Return immediately so Slack gets its acknowledgement in time

The answer is not sent with say(): the agent posts its own placeholder
and keeps updating it while the answer streams.

Commands:
- /medcompanion help    what the companion does
- /medcompanion status  model, tools, and this channel's queue
- /medcompanion stop    stop the answer being generated in this channel
"""

from typing import TYPE_CHECKING

from slack_bolt.async_app import AsyncApp, AsyncAck, AsyncSay
from slack_sdk.web.async_client import AsyncWebClient

from medcompanion.slack.transport import SlackTransport, message_from_slack
from medcompanion.utils.logger import Logger

if TYPE_CHECKING:
    from medcompanion.agent import AgentSession, SessionManager

logger = Logger("Handlers")

# Global session manager reference (set during registration)
_sessions: "SessionManager | None" = None

HELP_TEXT = """*Medical Companion*

I can help with health questions, find nearby care, and offer support when things feel hard. I'm not a doctor: for emergencies, contact local emergency services.

*Commands:*
- `/medcompanion help` - Show this help message
- `/medcompanion status` - Check companion status
- `/medcompanion stop` - Stop the answer I'm writing in this channel

*Examples:*
- "What helps a mild headache?"
- "Find a pharmacy near me"
- "I've been feeling anxious and can't sleep"
"""


def register_handlers(app: AsyncApp, sessions: "SessionManager") -> None:
    """
    Register all event handlers with the Slack app.

    Args:
        app: The Bolt app instance
        sessions: Session manager routing messages to per-channel sessions
    """
    global _sessions
    _sessions = sessions

    app.event("app_mention")(_handle_mention)
    app.event("message")(_handle_message)
    app.command("/medcompanion")(_handle_command)

    logger.info("Registered Slack event handlers")


def _route(event: dict, client: AsyncWebClient) -> "AgentSession | None":
    """Queue a Slack message on its channel's session."""
    if _sessions is None:
        logger.error("Sessions not initialized")
        return None

    transport = SlackTransport(client, event["channel"], thread_ts=event.get("thread_ts"))
    session = _sessions.get_or_create(transport)

    if session.handle_message(message_from_slack(event)) is None:
        logger.debug(f"Ignored message {event.get('ts')} in {transport.channel_id}")
    return session


async def _handle_mention(
    event: dict,
    say: AsyncSay,
    client: AsyncWebClient
) -> None:
    """
    Handle @mentions of the companion in channels.

    Args:
        event: The Slack event data
        say: Function to send messages
        client: Slack API client
    """
    if _sessions is None:
        await say("Sorry, I'm still starting up. Please try again in a moment.")
        return

    logger.info(f"Mention from {event.get('user')} in {event.get('channel')}")
    _route(event, client)


async def _handle_message(
    event: dict,
    say: AsyncSay,
    client: AsyncWebClient
) -> None:
    """
    Handle direct messages to the companion.

    Args:
        event: The Slack event data
        say: Function to send messages
        client: Slack API client
    """
    # Only handle DMs (channel_type == "im")
    if event.get("channel_type") != "im":
        return

    # Ignore bot messages (including our own) and subtypes (edits, deletes)
    if event.get("bot_id") or event.get("subtype"):
        return

    if _sessions is None:
        await say("Sorry, I'm still starting up. Please try again in a moment.")
        return

    logger.info(f"DM from {event.get('user')}")
    _route(event, client)


def _channel_sessions(channel_id: str) -> list["AgentSession"]:
    if _sessions is None:
        return []
    return [
        session for session in _sessions.sessions()
        if session.channel_id == channel_id or session.channel_id.startswith(f"{channel_id}/")
    ]


async def _handle_command(
    ack: AsyncAck,
    command: dict,
    say: AsyncSay
) -> None:
    """
    Handle the /medcompanion slash command.

    Args:
        ack: Acknowledge function (must be called within 3 seconds)
        command: The command data
        say: Function to send messages
    """
    await ack()

    if _sessions is None:
        await say("Sorry, I'm still starting up.")
        return

    channel_id = command.get("channel_id", "")
    text = command.get("text", "").strip().lower()

    if text == "help" or not text:
        await say(text=HELP_TEXT)

    elif text == "status":
        agent = _sessions.agent
        channel_sessions = _channel_sessions(channel_id)
        running = sum(1 for session in channel_sessions if session.busy)
        waiting = sum(session.pending for session in channel_sessions)

        status_text = f"""*Companion Status*
- Status: Online
- Model: {agent.model}
- Tools available: {", ".join(agent.registry.list_names())}
- This channel: {running} answering, {waiting} waiting"""
        await say(text=status_text)

    elif text == "stop":
        stopped = sum(1 for session in _channel_sessions(channel_id) if session.cancel_current())
        if stopped:
            await say(text="Okay, I stopped.")
        else:
            await say(text="I'm not writing anything right now.")

    else:
        await say(text=f"Unknown command: `{text}`. Try `/medcompanion help`")
