"""
Web Search Tool
===============

tool_search lets the model look up current information: nearby hospitals,
clinics and pharmacies, medication details, recent guidelines.

Search API Notes:
- Uses Tavily's REST search endpoint via httpx
- Results are flattened to text the model can quote:
      1. Title - https://url
      snippet
- Failures return a readable error string instead of raising, so the
  completion stream can carry on

Location handling:
    When the user shared a location and the query is about nearby places,
    the resolved place name (never coordinates, unless explicitly
    configured) is appended to the query.
"""

import httpx

from medcompanion.chat.location import DEFAULT_LOCATION_NAME, is_geo_scoped
from medcompanion.tools import MCPTool, ToolContext, ToolResult, SEARCH_TOOL
from medcompanion.utils.logger import Logger

logger = Logger("SearchTools")

TAVILY_API = "https://api.tavily.com/search"

NO_RESULTS_MESSAGE = "No relevant information found."
SEARCH_ERROR_MESSAGE = "Error fetching search results."


def format_results(results: list[dict], limit: int = 5) -> str:
    """Render search hits as numbered text blocks separated by blank lines."""
    blocks = []
    for rank, result in enumerate(results[:limit], start=1):
        title = result.get("title") or "Untitled"
        url = result.get("url") or ""
        snippet = result.get("content") or ""
        blocks.append(f"{rank}. {title} - {url}\n{snippet}")
    return "\n\n".join(blocks)


class WebSearchClient:
    """
    Thin async client for the search provider.

    Example:
        client = WebSearchClient(api_key="tvly-...")
        text = await client.search("urgent care near Indiranagar, Bengaluru")
    """

    def __init__(
        self,
        api_key: str | None,
        max_results: int = 5,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 20.0
    ):
        self.api_key = api_key
        self.max_results = max_results
        self._http = http_client
        self._timeout = timeout

    async def _post(self, payload: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self._http is not None:
            return await self._http.post(TAVILY_API, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(TAVILY_API, json=payload, headers=headers)

    async def search(self, query: str) -> str:
        """
        Search the web.

        Returns:
            Up to max_results formatted results, or a readable message when
            nothing was found or the provider failed
        """
        if not self.api_key:
            logger.warning("Search requested but TAVILY_API_KEY is not set")
            return SEARCH_ERROR_MESSAGE

        try:
            response = await self._post({"query": query, "max_results": self.max_results})
            if response.status_code >= 400:
                logger.error(f"Search API error: {response.status_code} - {response.text[:200]}")
                return SEARCH_ERROR_MESSAGE

            results = response.json().get("results") or []

        except Exception as e:
            logger.error("Search request failed", e)
            return SEARCH_ERROR_MESSAGE

        if not results:
            return NO_RESULTS_MESSAGE

        logger.debug(f"Search returned {len(results)} results")
        return format_results(results, self.max_results)


def scope_query(query: str, context: ToolContext, include_coordinates: bool = False) -> str:
    """
    Add the user's place name to a geographically scoped query.

    Nothing is added when the location could not be resolved, when the
    query is not about nearby places, or when it already names the place.
    """
    name = context.location_name
    if not name or name == DEFAULT_LOCATION_NAME or not is_geo_scoped(query):
        return query

    scoped = query if name.lower() in query.lower() else f"{query} {name}"
    if include_coordinates and context.location is not None:
        scoped = f"{scoped} ({context.location.lat},{context.location.long})"
    return scoped


def create_search_tool(client: WebSearchClient, include_coordinates: bool = False) -> MCPTool:
    """Wrap a search client as the tool_search tool."""

    async def _search(params: dict, context: ToolContext) -> ToolResult:
        query = params.get("query")
        if not isinstance(query, str) or not query.strip():
            return ToolResult(success=False, error="A non-empty 'query' string is required")

        scoped = scope_query(query.strip(), context, include_coordinates)
        if scoped != query:
            logger.info(f"Scoped search query: {scoped}")

        return ToolResult(success=True, data=await client.search(scoped))

    return MCPTool(
        name=SEARCH_TOOL,
        description=(
            "Search the web for medical information, nearby healthcare facilities, "
            "latest guidelines, or medication details. Use when you need current "
            "information or location-based results."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": (
                        "The search query. For location-based searches, "
                        "include the location name."
                    ),
                }
            },
            "required": ["query"],
        },
        execute=_search,
    )
