"""
Agent Core
==========

The completion loop that turns one inbound message into one answer.

The agent:
1. Posts a placeholder and marks the turn as thinking
2. Assembles context (knowledge + location, then budgeted history)
3. Streams a completion, previewing the answer as it grows
4. Runs any tools the model asked for and streams again
5. Publishes the final answer exactly once

Agent Loop:
    Inbound Envelope
         │
         ▼
    Assemble Context (knowledge ∥ location, then history)
         │
         ▼
    AWAIT_STREAM ──► ACCUMULATING ──── stream ends
         ▲                                 │
         │                  ┌── Tool calls pending? ──┐
         │                  Yes                       No
         │                  │                         │
         └──── TOOL_ROUND ◄─┘                         ▼
                                                    DONE

    Any provider exception ──► ERROR (error status + localized fallback)
    Stop request ──► CANCELLED (publish what has accumulated)

Tool rounds are capped. Once the cap is reached the model is asked one
last time with tool_choice="none" and whatever it says is the answer.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator

from openai import AsyncOpenAI

from medcompanion.agent.budget import Budget
from medcompanion.agent.cancellation import CancelToken, TurnCancelled
from medcompanion.agent.context import AssembledContext, ContextAssembler
from medcompanion.agent.history import HistoryAssembler, Turn
from medcompanion.agent.publisher import SideEffectPublisher
from medcompanion.agent.streaming import TextDelta, ToolCallAccumulator, deltas_from_chunk
from medcompanion.agent.tools_executor import ToolExecutor
from medcompanion.chat.envelope import Envelope, ensure_response_envelope, fallback_envelope
from medcompanion.chat.transport import AIState, ChatTransport
from medcompanion.tools import ToolContext, ToolRegistry
from medcompanion.utils.logger import Logger

if TYPE_CHECKING:
    from medcompanion.utils.config import Config

logger = Logger("Agent")

_STREAM_END = object()


class LoopState(str, Enum):
    """Where a turn is in the completion loop."""
    AWAIT_STREAM = "await_stream"
    ACCUMULATING = "accumulating"
    TOOL_ROUND = "tool_round"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class TurnOutcome:
    """
    What a finished turn produced.

    Attributes:
        text: The final envelope written to the transport ("" if none)
        state: DONE, ERROR or CANCELLED
        rounds: Completion requests made
        tools_invoked: Tool names actually executed, in order
        alert_sent: Whether an emergency alert went out
        message_id: The placeholder message holding the answer
    """
    text: str
    state: LoopState
    rounds: int = 0
    tools_invoked: list[str] = field(default_factory=list)
    alert_sent: bool = False
    message_id: str | None = None


@dataclass
class _Round:
    """Buffers for one streamed completion."""
    text: str = ""
    tool_calls: ToolCallAccumulator = field(default_factory=ToolCallAccumulator)
    generating: bool = False


async def _next_chunk(iterator: AsyncIterator[Any]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _STREAM_END


async def _close_stream(stream: Any) -> None:
    close = getattr(stream, "close", None) or getattr(stream, "aclose", None)
    if close is None:
        return
    try:
        await close()
    except Exception as e:
        logger.debug(f"Closing stream failed: {type(e).__name__}: {e}")


class Agent:
    """
    The completion loop for user turns.

    The agent coordinates:
    - Context assembly (knowledge, location, history)
    - Streaming completions
    - Tool execution
    - Publishing previews, the final answer and status events

    Example:
        agent = Agent.from_config(get_config())

        outcome = await agent.process(transport, decode(message_text))

        print(outcome.state, outcome.text)
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        assembler: ContextAssembler,
        registry: ToolRegistry,
        temperature: float = 0.7,
        top_p: float = 0.9,
        max_completion_tokens: int = 8192,
        max_tool_rounds: int = 5,
        partial_interval: float = 1.0,
        fallback_locale: str = "en-US"
    ):
        """
        Initialize the agent.

        Args:
            client: OpenAI-compatible async client (pointed at the provider)
            model: Model name
            assembler: Builds the per-turn context
            registry: Tools offered to the model
            max_tool_rounds: Tool rounds allowed before the forced final round
            partial_interval: Minimum seconds between preview updates
            fallback_locale: Locale of the error answer when the user's is unknown
        """
        self.client = client
        self.model = model
        self.assembler = assembler
        self.registry = registry
        self.temperature = temperature
        self.top_p = top_p
        self.max_completion_tokens = max_completion_tokens
        self.max_tool_rounds = max_tool_rounds
        self.partial_interval = partial_interval
        self.fallback_locale = fallback_locale

        logger.info(f"Agent initialized with model: {self.model}")

    @classmethod
    def from_config(cls, config: "Config") -> "Agent":
        """Wire the agent and its collaborators from configuration."""
        from medcompanion.chat.location import LocationResolver
        from medcompanion.rag import create_retriever
        from medcompanion.tools import create_tool_registry
        from medcompanion.tools.alert_tools import EmergencyAlerter
        from medcompanion.tools.search_tools import WebSearchClient

        registry = create_tool_registry(
            search=WebSearchClient(config.search.api_key, max_results=config.search.max_results),
            alerter=EmergencyAlerter(
                account_sid=config.alert.account_sid,
                auth_token=config.alert.auth_token,
                from_number=config.alert.from_number,
                default_destination=config.alert.to_number,
            ),
            include_coordinates=config.search.include_coordinates,
        )

        assembler = ContextAssembler(
            retriever=create_retriever(config),
            resolver=LocationResolver(config.geocode.url, config.geocode.user_agent),
            budget=Budget(
                total_tokens=config.budget.total_tokens,
                system_reserve=config.budget.system_reserve,
                knowledge_cap=config.knowledge.token_cap,
                current_message_reserve=config.budget.current_message_reserve,
            ),
            history=HistoryAssembler(fetch_limit=config.budget.history_fetch_limit),
            min_history_entries=config.budget.history_min_entries,
            tools=registry.get_openai_functions(),
        )

        return cls(
            client=AsyncOpenAI(
                api_key=config.completion.api_key,
                base_url=config.completion.base_url,
            ),
            model=config.completion.model,
            assembler=assembler,
            registry=registry,
            temperature=config.completion.temperature,
            top_p=config.completion.top_p,
            max_completion_tokens=config.completion.max_completion_tokens,
            max_tool_rounds=config.agent.max_tool_rounds,
            partial_interval=config.agent.partial_interval_seconds,
            fallback_locale=config.agent.fallback_locale,
        )

    async def process(
        self,
        transport: ChatTransport,
        envelope: Envelope,
        cancel: CancelToken | None = None
    ) -> TurnOutcome:
        """
        Run one turn and publish its answer.

        This is the main entry point for the agent. Provider failures are
        handled here (error status plus fallback answer) and reported in
        the outcome rather than raised.

        Args:
            transport: The channel to answer in
            envelope: The decoded inbound message
            cancel: Token that stops the turn early

        Returns:
            TurnOutcome describing how the turn ended
        """
        cancel = cancel or CancelToken()
        publisher = SideEffectPublisher(transport, interval=self.partial_interval)
        log = logger.bind(channel=transport.channel_id)
        log.info(f"Processing message: {envelope.text[:50]}...")

        try:
            await publisher.start()
        except Exception as e:
            log.error("Could not create the placeholder message", e)
            return TurnOutcome(text="", state=LoopState.ERROR)

        log = log.bind(message_id=publisher.message_id)
        executor = ToolExecutor(self.registry)
        outcome = TurnOutcome(text="", state=LoopState.AWAIT_STREAM, message_id=publisher.message_id)
        accumulated = ""
        current = _Round()

        try:
            context = await cancel.race(
                self.assembler.assemble(transport, envelope, exclude_ids=(publisher.message_id,))
            )
            messages = context.to_openai_messages()
            tool_context = ToolContext(
                user_text=envelope.text,
                location_name=context.location_name,
                location=envelope.location,
                locale=envelope.locale,
            )
            tool_rounds = 0

            while True:
                final_round = tool_rounds >= self.max_tool_rounds
                if final_round:
                    log.warning(f"Reached {self.max_tool_rounds} tool rounds; requesting a final answer")

                outcome.state = LoopState.AWAIT_STREAM
                current = _Round()
                stream = await cancel.race(self._open_stream(messages, context, final_round))
                outcome.rounds += 1

                outcome.state = LoopState.ACCUMULATING
                await self._consume(stream, current, accumulated, publisher, cancel)

                if not current.tool_calls or final_round:
                    accumulated += current.text
                    outcome.state = LoopState.DONE
                    break

                outcome.state = LoopState.TOOL_ROUND
                tool_rounds += 1
                await publisher.publish_status(AIState.EXTERNAL_SOURCES)

                calls = current.tool_calls.finalize()
                log.debug(f"Tool round {tool_rounds}: {[call.name for call in calls]}")

                messages.append(Turn(
                    role="assistant",
                    content=current.text or None,
                    tool_calls=tuple(call.to_record() for call in current.tool_calls.pending()),
                ).to_openai_message())

                # Text from a tool round never reaches the answer, even on stop
                current = _Round()
                results = await executor.execute_all(calls, tool_context, cancel)
                messages.extend(result.to_turn().to_openai_message() for result in results)

        except TurnCancelled:
            log.info("Turn cancelled; publishing what has accumulated")
            outcome.state = LoopState.CANCELLED
            accumulated += current.text

        except asyncio.CancelledError:
            # Session shutdown: leave a usable answer behind, then unwind
            outcome.state = LoopState.CANCELLED
            accumulated += current.text
            await self._finish(publisher, outcome, executor, accumulated, envelope)
            raise

        except Exception as e:
            log.error("Completion stream error", e)
            outcome.state = LoopState.ERROR
            await publisher.publish_status(AIState.ERROR)
            outcome.text = fallback_envelope(envelope.locale or self.fallback_locale)
            await publisher.publish_final(outcome.text)
            outcome.tools_invoked = list(executor.invoked)
            outcome.alert_sent = executor.alert_sent
            return outcome

        await self._finish(publisher, outcome, executor, accumulated, envelope)
        log.info(
            f"Turn finished: {outcome.state.value}",
            {"rounds": outcome.rounds, "tools": outcome.tools_invoked, "chars": len(outcome.text)}
        )
        return outcome

    async def _finish(
        self,
        publisher: SideEffectPublisher,
        outcome: TurnOutcome,
        executor: ToolExecutor,
        accumulated: str,
        envelope: Envelope
    ) -> None:
        """Publish the final answer and clear the status indicator."""
        answer = accumulated.strip()
        locale = envelope.locale or self.fallback_locale
        if answer:
            outcome.text = ensure_response_envelope(answer, locale)
        elif outcome.state is LoopState.CANCELLED:
            outcome.text = ensure_response_envelope("", locale)
        else:
            logger.warning("Model returned an empty answer; using the fallback")
            outcome.text = fallback_envelope(locale)

        outcome.tools_invoked = list(executor.invoked)
        outcome.alert_sent = executor.alert_sent

        await publisher.publish_final(outcome.text)
        await publisher.publish_status(AIState.CLEAR)

    async def _open_stream(
        self,
        messages: list[dict],
        context: AssembledContext,
        final_round: bool
    ) -> Any:
        """Open one streaming completion request."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_completion_tokens": self.max_completion_tokens,
            "stream": True,
        }
        if context.tools:
            kwargs["tools"] = context.tools
            kwargs["tool_choice"] = "none" if final_round else "auto"

        return await self.client.chat.completions.create(**kwargs)

    async def _consume(
        self,
        stream: Any,
        current: _Round,
        accumulated: str,
        publisher: SideEffectPublisher,
        cancel: CancelToken
    ) -> None:
        """
        Read one stream to its end.

        Text goes into the round's buffer (previewed as accumulated + round
        text); tool-call fragments go into the round's accumulator.
        """
        iterator = stream.__aiter__()
        try:
            while True:
                chunk = await cancel.race(_next_chunk(iterator))
                if chunk is _STREAM_END:
                    break

                for delta in deltas_from_chunk(chunk):
                    if isinstance(delta, TextDelta):
                        if not current.generating:
                            current.generating = True
                            await publisher.publish_status(AIState.GENERATING)
                        current.text += delta.text
                        await publisher.publish_partial(accumulated + current.text)
                    else:
                        current.tool_calls.add(delta)
        except BaseException:
            await _close_stream(stream)
            raise
