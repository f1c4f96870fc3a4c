"""
Agent System
============

The agent answers one message at a time per channel. For each turn it:
1. Assembles context (knowledge, location, budgeted history)
2. Streams a completion, previewing the answer as it grows
3. Executes tools the model asks for and streams again
4. Publishes the final answer and status events

This module provides:
- Agent: the completion loop
- AgentSession / SessionManager: per-channel turn serialization
- ContextAssembler: builds the per-turn context
- ToolExecutor: runs tool calls for one turn
- SideEffectPublisher: previews, final answer, status events
- CancelToken: stops a running turn
"""

from medcompanion.agent.cancellation import CancelToken, TurnCancelled
from medcompanion.agent.context import AssembledContext, ContextAssembler
from medcompanion.agent.core import Agent, LoopState, TurnOutcome
from medcompanion.agent.publisher import SideEffectPublisher
from medcompanion.agent.session import AgentSession, SessionManager
from medcompanion.agent.tools_executor import ToolExecutor

__all__ = [
    "Agent",
    "LoopState",
    "TurnOutcome",
    "AgentSession",
    "SessionManager",
    "AssembledContext",
    "ContextAssembler",
    "ToolExecutor",
    "SideEffectPublisher",
    "CancelToken",
    "TurnCancelled",
]
