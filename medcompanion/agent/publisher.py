"""
Side-Effect Publisher
=====================

Everything a turn shows the user goes through here:

- start():          post the empty placeholder message, then THINKING
- publish_partial(): live preview of the answer, at most once per interval
- publish_final():  the authoritative answer, exactly once per turn
- publish_status(): ai_indicator events for the placeholder

Partial updates are a rate-limited preview; the final publish always
carries the full answer no matter how many previews went out. Failures to
publish a preview or a status are logged and ignored.
"""

import time
from typing import Callable

from medcompanion.chat.transport import AIState, ChatTransport, status_event
from medcompanion.utils.logger import Logger

logger = Logger("Publisher")


class SideEffectPublisher:
    """
    Publishes one turn's output to the transport.

    Example:
        publisher = SideEffectPublisher(transport, interval=1.0)
        await publisher.start()
        await publisher.publish_partial('{"lang": "en-US", "text": "Head')
        await publisher.publish_final('{"lang": "en-US", "text": "Headaches..."}')
        await publisher.publish_status(AIState.CLEAR)
    """

    def __init__(
        self,
        transport: ChatTransport,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.transport = transport
        self.interval = interval
        self.clock = clock

        self.message_id: str | None = None
        self.partial_count = 0
        self._last_publish = clock()
        self._finalized = False
        self._log = logger.bind(channel=transport.channel_id)

    @property
    def finalized(self) -> bool:
        return self._finalized

    async def start(self) -> str:
        """
        Create the placeholder message and mark the turn as thinking.

        Raises:
            Exception: Whatever the transport raised; without a placeholder
                there is nothing to publish into
        """
        self.message_id = await self.transport.create_message("")
        self._log = self._log.bind(message_id=self.message_id)
        self._last_publish = self.clock()
        await self.publish_status(AIState.THINKING)
        return self.message_id

    async def publish_partial(self, text: str) -> bool:
        """
        Push a preview if the interval has passed since the last publish.

        Returns:
            True if an update was sent
        """
        if self._finalized or self.message_id is None:
            return False

        now = self.clock()
        if now - self._last_publish <= self.interval:
            return False

        self._last_publish = now
        try:
            await self.transport.set_message_text(self.message_id, text)
        except Exception as e:
            self._log.warning(f"Partial update failed: {type(e).__name__}: {e}")
            return False

        self.partial_count += 1
        return True

    async def publish_final(self, text: str) -> None:
        """Write the final answer. Later calls for the same turn are ignored."""
        if self._finalized:
            self._log.warning("Final answer already published for this turn")
            return
        self._finalized = True

        if self.message_id is None:
            self._log.error("No placeholder message to publish the final answer into")
            return

        try:
            await self.transport.set_message_text(self.message_id, text)
        except Exception as e:
            self._log.error("Final update failed", e)
            return

        self._log.debug(f"Final answer published ({len(text)} chars, {self.partial_count} previews)")

    async def publish_status(self, state: AIState) -> None:
        """Send an ai_indicator event for the placeholder."""
        if self.message_id is None:
            return
        try:
            await self.transport.send_event(status_event(state, self.message_id))
        except Exception as e:
            self._log.warning(f"Status event {state.value} failed: {type(e).__name__}: {e}")
