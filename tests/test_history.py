# tests/test_history.py
"""
Tests for token budgeting and history assembly.

Covers:
- estimate_tokens / allocate / Budget
- select_turns: roles, empty skipping, the min-entries floor, the cap
- HistoryAssembler on a failing transport
- Turn formatting for the completion request
"""

import json
import random

import pytest

from medcompanion.agent.budget import Budget, allocate, estimate_tokens
from medcompanion.agent.history import HistoryAssembler, Turn, select_turns
from medcompanion.chat.transport import TransportMessage

from conftest import FakeTransport


def _user(i: int, text: str) -> TransportMessage:
    return TransportMessage(id=f"u{i}", text=json.dumps({"text": text}))


def _bot(i: int, text: str) -> TransportMessage:
    return TransportMessage(id=f"b{i}", text=json.dumps({"lang": "en-US", "text": text}), ai_generated=True)


class TestBudget:
    @pytest.mark.parametrize("text, expected", [
        ("", 0),
        (None, 0),
        ("a", 1),
        ("abcd", 1),
        ("abcde", 2),
        ("x" * 400, 100),
    ])
    def test_estimate_tokens(self, text, expected):
        assert estimate_tokens(text) == expected

    def test_allocate(self):
        assert allocate(28000, 2000, 1200, 500) == 24300

    def test_allocate_clamps_to_zero(self):
        assert allocate(1000, 2000, 3000, 500) == 0

    def test_budget_history_allowance(self):
        budget = Budget(total_tokens=28000, system_reserve=2000, knowledge_cap=3000, current_message_reserve=500)
        assert budget.history_allowance(0) == 25500
        assert budget.history_allowance(3000) == 22500


class TestSelectTurns:
    def test_roles_and_chronological_order(self):
        messages = [_bot(2, "Rest helps."), _user(2, "And sleep?"), _bot(1, "Drink water."), _user(1, "Headache")]
        turns = select_turns(messages, history_allowance=10_000, min_entries=3)

        assert [t.role for t in turns] == ["user", "assistant", "user", "assistant"]
        assert [t.content for t in turns] == ["Headache", "Drink water.", "And sleep?", "Rest helps."]

    def test_plain_text_bodies_are_used_verbatim(self):
        messages = [TransportMessage(id="1", text="not json at all")]
        assert select_turns(messages, 100, 0)[0].content == "not json at all"

    def test_empty_messages_are_skipped(self):
        messages = [_user(3, "latest"), TransportMessage(id="e", text=""), _user(2, "   "), _user(1, "oldest")]
        turns = select_turns(messages, 10_000, 0)
        assert [t.content for t in turns] == ["oldest", "latest"]

    def test_floor_wins_over_cap(self):
        big = "x" * 4000  # 1000 tokens each
        messages = [_user(i, big) for i in range(5)]
        turns = select_turns(messages, history_allowance=10, min_entries=3)
        assert len(turns) == 3

    def test_stops_at_first_overflow(self):
        messages = [_user(1, "a" * 40), _user(2, "b" * 400), _user(3, "c" * 4)]
        turns = select_turns(messages, history_allowance=50, min_entries=1)
        # 10 tokens kept by the floor, the 100-token message overflows, older ones are not considered
        assert [t.content for t in turns] == ["a" * 40]

    def test_zero_allowance_keeps_only_the_floor(self):
        messages = [_user(i, "hello") for i in range(6)]
        assert len(select_turns(messages, 0, 2)) == 2

    @pytest.mark.parametrize("seed", range(25))
    def test_kept_turns_fit_allowance_or_equal_floor(self, seed):
        rng = random.Random(seed)
        messages = [_user(i, "w" * rng.randint(0, 800)) for i in range(rng.randint(0, 30))]
        allowance = rng.randint(0, 2000)
        min_entries = rng.randint(0, 5)

        turns = select_turns(messages, allowance, min_entries)
        used = sum(estimate_tokens(t.content) for t in turns)
        assert used <= allowance or len(turns) <= min_entries

    def test_newest_turns_are_the_ones_kept(self):
        messages = [_user(i, f"message {i}") for i in range(10)]
        turns = select_turns(messages, history_allowance=9, min_entries=2)
        assert [t.content for t in turns][-1] == "message 0"


class TestHistoryAssembler:
    @pytest.mark.asyncio
    async def test_fetches_with_limit(self):
        transport = FakeTransport(history=[_user(i, f"m{i}") for i in range(30)])
        turns = await HistoryAssembler(fetch_limit=20).assemble(transport, 10_000, 3)
        assert len(turns) == 20
        assert turns[-1].content == "m0"

    @pytest.mark.asyncio
    async def test_failing_transport_yields_empty_history(self):
        transport = FakeTransport(history=[_user(1, "hi")])
        transport.fail_query = True
        assert await HistoryAssembler().assemble(transport, 10_000, 3) == []


class TestTurn:
    def test_plain_turn(self):
        assert Turn(role="user", content="hi").to_openai_message() == {"role": "user", "content": "hi"}

    def test_tool_turn(self):
        turn = Turn(role="tool", content="results", tool_call_id="call_1", tool_name="tool_search")
        assert turn.to_openai_message() == {
            "role": "tool",
            "content": "results",
            "tool_call_id": "call_1",
            "name": "tool_search",
        }

    def test_assistant_tool_call_turn(self):
        record = {"id": "call_1", "type": "function", "function": {"name": "tool_search", "arguments": "{}"}}
        message = Turn(role="assistant", content=None, tool_calls=(record,)).to_openai_message()
        assert message["content"] is None
        assert message["tool_calls"] == [record]


def test_excluded_ids_are_skipped():
    messages = [
        TransportMessage(id="placeholder", text="…", ai_generated=True),
        _user(2, "It got worse"),
        _bot(1, "Try resting."),
    ]
    turns = select_turns(messages, history_allowance=10_000, min_entries=3, exclude_ids=("placeholder",))
    assert [(t.role, t.content) for t in turns] == [("assistant", "Try resting."), ("user", "It got worse")]
