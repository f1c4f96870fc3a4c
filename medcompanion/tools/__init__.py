"""
Companion Tools
===============

Tools the model may call mid-answer, declared to the provider as
function-call tools:

1. tool_search(query): web search for nearby care, guidelines, medication
   information. Read-only; failures come back as readable text.
2. tool_alert(reason): emergency notification to a human-operated number.
   Only ever sent when the model explicitly calls it.

How tools work:
1. The model streams a tool call (name + JSON arguments)
2. The executor looks the tool up here and runs it with a ToolContext
3. The ToolResult is sent back as a "tool" turn
4. The model continues (and may call more tools)

This module provides:
- MCPTool dataclass for defining tools
- ToolContext carrying the per-turn facts a tool may need
- ToolResult for standardized responses
- ToolRegistry for looking tools up by name
"""

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Awaitable

from medcompanion.chat.envelope import Location
from medcompanion.utils.logger import Logger

if TYPE_CHECKING:
    from medcompanion.tools.alert_tools import EmergencyAlerter
    from medcompanion.tools.search_tools import WebSearchClient

logger = Logger("Tools")

SEARCH_TOOL = "tool_search"
ALERT_TOOL = "tool_alert"


@dataclass
class ToolResult:
    """
    Standardized result from tool execution.

    Attributes:
        success: Whether the tool executed successfully
        data: The result data (text for both companion tools)
        error: Error message if success is False
    """
    success: bool
    data: Any = None
    error: str | None = None

    def to_message(self) -> str:
        """Format as the content of a tool turn."""
        if self.success:
            if isinstance(self.data, str):
                return self.data
            return json.dumps(self.data, default=str)
        return f"Error: {self.error}"


@dataclass(frozen=True)
class ToolContext:
    """
    Per-turn facts available to tools.

    Attributes:
        user_text: The user's current message (quoted in alerts)
        location_name: Resolved place name, None when no location was sent
        location: Raw coordinates; only used when explicitly enabled
        locale: The user's locale tag, if known
    """
    user_text: str
    location_name: str | None = None
    location: Location | None = None
    locale: str | None = None


@dataclass
class MCPTool:
    """
    Definition of a tool.

    Attributes:
        name: Unique identifier for the tool
        description: What the tool does (shown to the model)
        parameters: JSON Schema for the parameters
        execute: Async function that runs the tool
    """
    name: str
    description: str
    parameters: dict
    execute: Callable[[dict, ToolContext], Awaitable[ToolResult]]

    def to_openai_function(self) -> dict:
        """Convert to the function-calling tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters
            }
        }


class ToolRegistry:
    """
    Registry of the tools offered to the model.

    Example:
        registry = ToolRegistry()
        registry.register(search_tool)

        tools = registry.get_openai_functions()
        result = await registry.execute("tool_search", {"query": "flu"}, context)
    """

    def __init__(self):
        self._tools: dict[str, MCPTool] = {}

    def register(self, tool: MCPTool) -> None:
        """
        Register a tool.

        Raises:
            ValueError: If a tool with this name already exists
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")

        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def get(self, name: str) -> MCPTool | None:
        """Get a tool by name, or None."""
        return self._tools.get(name)

    def get_openai_functions(self) -> list[dict]:
        """All tools in function-calling format."""
        return [tool.to_openai_function() for tool in self._tools.values()]

    def list_names(self) -> list[str]:
        """Get list of all tool names."""
        return list(self._tools.keys())

    async def execute(self, name: str, params: dict, context: ToolContext) -> ToolResult:
        """
        Execute a tool by name.

        Unknown tools and tool exceptions become failed ToolResults.
        """
        tool = self.get(name)
        if not tool:
            return ToolResult(success=False, error=f"Tool '{name}' is not available")

        try:
            logger.info(f"Executing tool: {name}")
            return await tool.execute(params, context)
        except Exception as e:
            logger.error(f"Tool execution failed: {name}", e)
            return ToolResult(success=False, error=str(e))


def create_tool_registry(
    search: "WebSearchClient",
    alerter: "EmergencyAlerter",
    include_coordinates: bool = False
) -> ToolRegistry:
    """
    Build the registry with the two companion tools.

    Args:
        search: Web search client backing tool_search
        alerter: Emergency notifier backing tool_alert
        include_coordinates: Append raw coordinates to geo-scoped searches
    """
    from medcompanion.tools.alert_tools import create_alert_tool
    from medcompanion.tools.search_tools import create_search_tool

    registry = ToolRegistry()
    registry.register(create_search_tool(search, include_coordinates))
    registry.register(create_alert_tool(alerter))

    logger.info(f"Registered {len(registry.list_names())} tools")
    return registry


__all__ = [
    "MCPTool",
    "ToolContext",
    "ToolResult",
    "ToolRegistry",
    "SEARCH_TOOL",
    "ALERT_TOOL",
    "create_tool_registry",
]
