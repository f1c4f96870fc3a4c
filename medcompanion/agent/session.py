"""
Agent Sessions
==============

An AgentSession binds one channel to the agent. Turns on a channel run
strictly one after another: inbound messages go into the session's queue
and a single worker task processes them in arrival order. Sessions on
different channels share nothing but the agent, so they run in parallel.

Each queued turn carries its own CancelToken. cancel_current() stops the
turn that is running; queued turns are untouched. dispose() stops the
running turn, drops the queue and ends the worker.

The session remembers when it last accepted a message (last_interaction)
so an idle reaper can dispose of quiet channels.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable

from medcompanion.agent.cancellation import CancelToken
from medcompanion.agent.core import Agent, TurnOutcome
from medcompanion.chat.envelope import Envelope, decode
from medcompanion.chat.transport import ChatTransport, TransportMessage
from medcompanion.utils.logger import Logger

logger = Logger("Session")


@dataclass
class _QueuedTurn:
    envelope: Envelope
    future: asyncio.Future
    cancel: CancelToken = field(default_factory=CancelToken)


class AgentSession:
    """
    Serializes turns for one channel.

    Example:
        session = AgentSession(agent, transport)
        future = session.handle_message(message)
        if future is not None:
            outcome = await future
        ...
        await session.dispose()
    """

    def __init__(
        self,
        agent: Agent,
        transport: ChatTransport,
        clock: Callable[[], float] = time.time
    ):
        self.agent = agent
        self.transport = transport
        self.clock = clock
        self.last_interaction = clock()

        self._queue: asyncio.Queue[_QueuedTurn] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._current: _QueuedTurn | None = None
        self._disposed = False
        self._log = logger.bind(channel=transport.channel_id)

    @property
    def channel_id(self) -> str:
        return self.transport.channel_id

    @property
    def busy(self) -> bool:
        return self._current is not None

    @property
    def pending(self) -> int:
        """Turns waiting behind the current one."""
        return self._queue.qsize()

    def handle_message(self, message: TransportMessage) -> "asyncio.Future[TurnOutcome] | None":
        """
        Accept an inbound transport message.

        Agent-generated messages and messages with no text are ignored.

        Returns:
            A future resolving to the turn's outcome, or None if ignored
        """
        if message.ai_generated:
            return None

        envelope = decode(message.text)
        if not envelope.text.strip():
            self._log.debug(f"Ignoring empty message {message.id}")
            return None

        return self.submit(envelope)

    def submit(self, envelope: Envelope) -> "asyncio.Future[TurnOutcome]":
        """
        Queue a decoded message as a turn.

        Raises:
            RuntimeError: If the session has been disposed
        """
        if self._disposed:
            raise RuntimeError(f"Session for {self.channel_id} has been disposed")

        self.last_interaction = self.clock()
        turn = _QueuedTurn(envelope=envelope, future=asyncio.get_running_loop().create_future())
        self._queue.put_nowait(turn)

        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name=f"session-{self.channel_id}")

        self._log.debug(f"Queued turn ({self._queue.qsize()} waiting)")
        return turn.future

    async def _run(self) -> None:
        """Worker: process queued turns one at a time."""
        while True:
            turn = await self._queue.get()
            self._current = turn
            try:
                outcome = await self.agent.process(self.transport, turn.envelope, turn.cancel)
            except asyncio.CancelledError:
                if not turn.future.done():
                    turn.future.cancel()
                raise
            except Exception as e:
                self._log.error("Turn failed", e)
                if not turn.future.done():
                    turn.future.set_exception(e)
            else:
                if not turn.future.done():
                    turn.future.set_result(outcome)
            finally:
                self._current = None
                self._queue.task_done()

    def cancel_current(self) -> bool:
        """
        Stop the running turn, if any.

        Returns:
            True if a running turn was signalled
        """
        if self._current is None or self._current.cancel.cancelled:
            return False
        self._current.cancel.cancel()
        self._log.info("Stop requested for the running turn")
        return True

    async def dispose(self) -> None:
        """Stop the running turn, drop queued turns and end the worker."""
        if self._disposed:
            return
        self._disposed = True
        self.cancel_current()

        while not self._queue.empty():
            turn = self._queue.get_nowait()
            turn.future.cancel()
            self._queue.task_done()

        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)

        self._log.info("Session disposed")


class SessionManager:
    """
    One AgentSession per channel.

    Example:
        sessions = SessionManager(agent)
        session = sessions.get_or_create(SlackTransport(client, channel_id))
        session.handle_message(message)

        await sessions.dispose_all()
    """

    def __init__(self, agent: Agent):
        self.agent = agent
        self._sessions: dict[str, AgentSession] = {}

    def get(self, channel_id: str) -> AgentSession | None:
        return self._sessions.get(channel_id)

    def sessions(self) -> list[AgentSession]:
        return list(self._sessions.values())

    def get_or_create(self, transport: ChatTransport) -> AgentSession:
        """Return the channel's session, creating it on first use."""
        session = self._sessions.get(transport.channel_id)
        if session is None:
            session = AgentSession(self.agent, transport)
            self._sessions[transport.channel_id] = session
            logger.info(f"Created session for {transport.channel_id}")
        return session

    def idle_sessions(self, max_idle_seconds: float, now: float | None = None) -> list[str]:
        """Channels whose session has been quiet for longer than max_idle_seconds."""
        now = time.time() if now is None else now
        return [
            channel_id for channel_id, session in self._sessions.items()
            if not session.busy and now - session.last_interaction > max_idle_seconds
        ]

    async def dispose(self, channel_id: str) -> bool:
        """Dispose of one channel's session. Returns False if there was none."""
        session = self._sessions.pop(channel_id, None)
        if session is None:
            return False
        await session.dispose()
        return True

    async def dispose_all(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        await asyncio.gather(*(session.dispose() for session in sessions))
        logger.info(f"Disposed {len(sessions)} sessions")

    def __len__(self) -> int:
        return len(self._sessions)
