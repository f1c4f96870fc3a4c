# tests/conftest.py
"""
Shared fakes and fixtures for the medcompanion tests.

- FakeTransport: in-memory ChatTransport recording every side effect
- ScriptedClient: OpenAI-shaped client whose streams are scripted per round
- text_chunk / tool_chunk: build stream chunks the way the SDK shapes them
"""

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest

from medcompanion.agent.budget import Budget
from medcompanion.agent.context import ContextAssembler
from medcompanion.agent.core import Agent
from medcompanion.agent.history import HistoryAssembler
from medcompanion.chat.transport import ChatTransport, TransportMessage
from medcompanion.tools import ALERT_TOOL, SEARCH_TOOL, MCPTool, ToolContext, ToolRegistry, ToolResult


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class FakeTransport(ChatTransport):
    """
    Channel held in memory. `history` is most recent first.

    With `echo_text` set, posted messages also show up in history with that
    text, the way Slack keeps the bot's placeholder in the channel.
    """

    def __init__(
        self,
        channel_id: str = "C1",
        history: list[TransportMessage] | None = None,
        echo_text: str | None = None
    ):
        self.channel_id = channel_id
        self.history = list(history or [])
        self.echo_text = echo_text
        self.fail_query = False
        self.created: list[str] = []
        self.texts: dict[str, str] = {}
        self.updates: list[tuple[str, str]] = []
        self.events: list[dict[str, Any]] = []
        self.log: list[tuple[str, Any]] = []

    async def query_messages(self, limit: int) -> list[TransportMessage]:
        if self.fail_query:
            raise ConnectionError("history unavailable")
        return self.history[:limit]

    async def create_message(self, text: str = "") -> str:
        message_id = f"m{len(self.created) + 1}"
        self.created.append(message_id)
        self.texts[message_id] = text
        self.log.append(("create", message_id))
        if self.echo_text is not None:
            self.history.insert(0, TransportMessage(id=message_id, text=self.echo_text, ai_generated=True))
        return message_id

    async def set_message_text(self, message_id: str, text: str) -> None:
        self.texts[message_id] = text
        self.updates.append((message_id, text))
        self.log.append(("text", text))

    async def send_event(self, event: dict[str, Any]) -> None:
        self.events.append(event)
        self.log.append(("event", event.get("ai_state", event["type"])))

    @property
    def states(self) -> list[str]:
        return [event.get("ai_state", event["type"]) for event in self.events]


# ---------------------------------------------------------------------------
# Stream chunks
# ---------------------------------------------------------------------------


def _chunk(content: str | None = None, tool_calls: list | None = None) -> SimpleNamespace:
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, index=0)])


def text_chunk(text: str) -> SimpleNamespace:
    return _chunk(content=text)


def tool_chunk(
    index: int,
    id: str | None = None,
    name: str | None = None,
    arguments: str | None = None
) -> SimpleNamespace:
    function = SimpleNamespace(name=name, arguments=arguments)
    call = SimpleNamespace(index=index, id=id, type="function" if id else None, function=function)
    return _chunk(tool_calls=[call])


class _Stream:
    """Async iterator over scripted chunks; an Exception item is raised."""

    def __init__(self, items: list, gate: asyncio.Event | None = None):
        self._items = list(items)
        self._gate = gate
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._items:
            raise StopAsyncIteration
        item = self._items.pop(0)
        if item == "WAIT":
            await self._gate.wait()
            return await self.__anext__()
        if isinstance(item, BaseException):
            raise item
        await asyncio.sleep(0)
        return item

    async def close(self):
        self.closed = True


class ScriptedClient:
    """
    Stand-in for AsyncOpenAI.

    Each round is a list of chunks (or the string "WAIT" to block until
    `gate` is set); a round that is an Exception fails when opened.
    """

    def __init__(self, rounds: list, gate: asyncio.Event | None = None):
        self.rounds = list(rounds)
        self.gate = gate or asyncio.Event()
        self.calls: list[dict[str, Any]] = []
        self.streams: list[_Stream] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.calls.append({**kwargs, "messages": list(kwargs["messages"])})
        if not self.rounds:
            raise RuntimeError("no scripted round left")
        script = self.rounds.pop(0)
        if isinstance(script, BaseException):
            raise script
        stream = _Stream(script, self.gate)
        self.streams.append(stream)
        return stream


# ---------------------------------------------------------------------------
# Context collaborators
# ---------------------------------------------------------------------------


class FakeRetriever:
    def __init__(self, knowledge: str = ""):
        self.knowledge = knowledge
        self.queries: list[str] = []

    async def retrieve(self, query: str) -> str:
        self.queries.append(query)
        return self.knowledge


class FakeResolver:
    def __init__(self, name: str = "Indiranagar, Bengaluru, Karnataka, India"):
        self.name = name
        self.calls: list[tuple[float, float]] = []

    async def resolve(self, lat: float, long: float) -> str:
        self.calls.append((lat, long))
        return self.name


class RecordingTools:
    """Fake tool_search / tool_alert backends."""

    def __init__(self, search_result: str = "1. City Hospital - https://example.org\nOpen 24h", alert_ok: bool = True):
        self.search_result = search_result
        self.alert_ok = alert_ok
        self.search_queries: list[str] = []
        self.alerts: list[tuple[str, str | None]] = []

    def registry(self) -> ToolRegistry:
        from medcompanion.tools.search_tools import scope_query

        async def _search(params: dict, context: ToolContext) -> ToolResult:
            query = scope_query(params["query"], context)
            self.search_queries.append(query)
            return ToolResult(success=True, data=self.search_result)

        async def _alert(params: dict, context: ToolContext) -> ToolResult:
            self.alerts.append((context.user_text, params.get("reason")))
            if self.alert_ok:
                return ToolResult(success=True, data="Emergency alert sent successfully.")
            return ToolResult(success=False, error="delivery failed")

        registry = ToolRegistry()
        registry.register(MCPTool(
            name=SEARCH_TOOL,
            description="search",
            parameters={"type": "object", "properties": {"query": {"type": "string"}}, "required": ["query"]},
            execute=_search,
        ))
        registry.register(MCPTool(
            name=ALERT_TOOL,
            description="alert",
            parameters={"type": "object", "properties": {"reason": {"type": "string"}}, "required": ["reason"]},
            execute=_alert,
        ))
        return registry


def make_agent(
    client: ScriptedClient,
    tools: RecordingTools | None = None,
    retriever: FakeRetriever | None = None,
    resolver: FakeResolver | None = None,
    max_tool_rounds: int = 5,
    partial_interval: float = 60.0
) -> Agent:
    registry = (tools or RecordingTools()).registry()
    assembler = ContextAssembler(
        retriever=retriever or FakeRetriever(),
        resolver=resolver or FakeResolver(),
        budget=Budget(total_tokens=28000, system_reserve=2000, knowledge_cap=3000, current_message_reserve=500),
        history=HistoryAssembler(fetch_limit=20),
        min_history_entries=3,
        tools=registry.get_openai_functions(),
    )
    return Agent(
        client=client,
        model="test-model",
        assembler=assembler,
        registry=registry,
        max_tool_rounds=max_tool_rounds,
        partial_interval=partial_interval,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def tools():
    return RecordingTools()
