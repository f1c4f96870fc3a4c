"""
Tool Executor
=============

Handles the execution of tools called by the model during one turn.

The executor:
1. Takes the tool calls finalized at the end of a stream segment
2. Executes each one through the registry with the turn's ToolContext
3. Formats results as "tool" turns for the next round
4. Handles errors gracefully (a failing tool never aborts the turn)

Tool Execution Loop:
    1. Model streams a response with tool calls
    2. Executor runs each tool (sequentially, in index order)
    3. Results are sent back to the model as tool turns
    4. Model continues with the results (may call more tools)
    5. Repeat until the model produces a final answer

One executor serves one turn. It remembers what the turn has already
done, which is how the emergency alert is limited to one per turn: a
repeated tool_alert request gets the first attempt's outcome back instead
of a second notification.
"""

from dataclasses import dataclass, field

from medcompanion.agent.cancellation import CancelToken
from medcompanion.agent.history import Turn
from medcompanion.agent.streaming import ParsedToolCall
from medcompanion.tools import ALERT_TOOL, ToolContext, ToolRegistry, ToolResult
from medcompanion.utils.logger import Logger

logger = Logger("ToolExecutor")

ALERT_ALREADY_SENT = "Emergency alert already sent for this conversation."


@dataclass
class ToolCallResult:
    """
    Result of executing a tool call.

    Attributes:
        tool_call_id: The original tool call ID
        name: The tool name
        result: The tool result
    """
    tool_call_id: str
    name: str
    result: ToolResult

    def to_turn(self) -> Turn:
        """Format as the tool turn answering the call."""
        return Turn(
            role="tool",
            content=self.result.to_message(),
            tool_call_id=self.tool_call_id,
            tool_name=self.name,
        )


@dataclass
class ToolExecutor:
    """
    Executes the model's tool calls for a single turn.

    Example:
        executor = ToolExecutor(registry)

        results = await executor.execute_all(accumulator.finalize(), tool_context, cancel)
        for result in results:
            messages.append(result.to_turn().to_openai_message())

        executor.alert_sent  # True once tool_alert went out this turn
    """
    registry: ToolRegistry
    invoked: list[str] = field(default_factory=list)
    _alert_result: ToolResult | None = None

    @property
    def alert_sent(self) -> bool:
        return self._alert_result is not None and self._alert_result.success

    async def execute_one(
        self,
        call: ParsedToolCall,
        context: ToolContext,
        cancel: CancelToken | None = None
    ) -> ToolCallResult:
        """
        Execute a single tool call.

        Raises:
            TurnCancelled: If the turn is stopped while the tool runs
        """
        if call.error:
            logger.warning(f"Tool {call.name or 'unnamed'} called with bad arguments: {call.error}")
            return ToolCallResult(call.id, call.name, ToolResult(success=False, error=call.error))

        if call.name == ALERT_TOOL and self._alert_result is not None:
            logger.info("Skipping repeated emergency alert for this turn")
            repeat = (
                ToolResult(success=True, data=ALERT_ALREADY_SENT)
                if self._alert_result.success else self._alert_result
            )
            return ToolCallResult(call.id, call.name, repeat)

        logger.info(f"Executing tool: {call.name}")
        self.invoked.append(call.name)

        execution = self.registry.execute(call.name, call.arguments, context)
        result = await cancel.race(execution) if cancel else await execution

        if call.name == ALERT_TOOL:
            self._alert_result = result

        if result.success:
            logger.debug(f"Tool {call.name} succeeded")
        else:
            logger.warning(f"Tool {call.name} failed: {result.error}")

        return ToolCallResult(call.id, call.name, result)

    async def execute_all(
        self,
        calls: list[ParsedToolCall],
        context: ToolContext,
        cancel: CancelToken | None = None
    ) -> list[ToolCallResult]:
        """
        Execute tool calls in order.

        Returns:
            One ToolCallResult per call, in the same order
        """
        results = []
        for call in calls:
            results.append(await self.execute_one(call, context, cancel))
        return results
