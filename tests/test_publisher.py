# tests/test_publisher.py
"""
Tests for SideEffectPublisher: placeholder, throttled previews, a single
final write, and tolerance of transport failures.
"""

import pytest

from medcompanion.agent.publisher import SideEffectPublisher
from medcompanion.chat.transport import AI_INDICATOR_CLEAR, AIState

from conftest import FakeTransport


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class FlakyTransport(FakeTransport):
    def __init__(self):
        super().__init__()
        self.fail_text = False
        self.fail_events = False

    async def set_message_text(self, message_id, text):
        if self.fail_text:
            raise ConnectionError("update rejected")
        await super().set_message_text(message_id, text)

    async def send_event(self, event):
        if self.fail_events:
            raise ConnectionError("event rejected")
        await super().send_event(event)


@pytest.mark.asyncio
async def test_start_creates_placeholder_then_thinking(transport):
    publisher = SideEffectPublisher(transport)
    message_id = await publisher.start()

    assert transport.created == [message_id]
    assert transport.texts[message_id] == ""
    assert transport.log == [("create", message_id), ("event", AIState.THINKING.value)]
    assert transport.events[0]["message_id"] == message_id


@pytest.mark.asyncio
async def test_partials_are_throttled(transport):
    clock = FakeClock()
    publisher = SideEffectPublisher(transport, interval=1.0, clock=clock)
    await publisher.start()

    assert not await publisher.publish_partial("a")
    clock.now += 0.5
    assert not await publisher.publish_partial("ab")
    clock.now += 0.75
    assert await publisher.publish_partial("abc")
    clock.now += 1.0
    assert not await publisher.publish_partial("abcd")
    clock.now += 0.25
    assert await publisher.publish_partial("abcde")

    assert [text for _, text in transport.updates] == ["abc", "abcde"]
    assert publisher.partial_count == 2


@pytest.mark.asyncio
async def test_final_is_written_once(transport):
    clock = FakeClock()
    publisher = SideEffectPublisher(transport, interval=1.0, clock=clock)
    message_id = await publisher.start()

    await publisher.publish_final("final answer")
    await publisher.publish_final("second answer")
    clock.now += 10
    assert not await publisher.publish_partial("late preview")

    assert transport.updates == [(message_id, "final answer")]
    assert publisher.finalized


@pytest.mark.asyncio
async def test_nothing_published_without_placeholder(transport):
    publisher = SideEffectPublisher(transport, clock=FakeClock())
    assert not await publisher.publish_partial("x")
    await publisher.publish_status(AIState.GENERATING)
    await publisher.publish_final("x")
    assert transport.log == []


@pytest.mark.asyncio
async def test_transport_failures_are_tolerated():
    transport = FlakyTransport()
    clock = FakeClock()
    publisher = SideEffectPublisher(transport, interval=1.0, clock=clock)
    await publisher.start()

    transport.fail_text = True
    transport.fail_events = True
    clock.now += 5
    assert not await publisher.publish_partial("preview")
    await publisher.publish_status(AIState.GENERATING)
    await publisher.publish_final("answer")
    assert publisher.finalized

    transport.fail_events = False
    await publisher.publish_status(AIState.CLEAR)
    assert transport.events[-1] == {"type": AI_INDICATOR_CLEAR, "message_id": publisher.message_id}
