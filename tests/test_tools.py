# tests/test_tools.py
"""
Tests for the tool adapters and the location resolver.

All HTTP goes through httpx.MockTransport.
"""

import json
import re
from datetime import datetime, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from medcompanion.chat.envelope import Location
from medcompanion.chat.location import (
    DEFAULT_LOCATION_NAME,
    LocationResolver,
    format_address,
    is_geo_scoped,
)
from medcompanion.tools import (
    ALERT_TOOL,
    SEARCH_TOOL,
    MCPTool,
    ToolContext,
    ToolRegistry,
    ToolResult,
    create_tool_registry,
)
from medcompanion.tools.alert_tools import (
    ALERT_SENT_MESSAGE,
    EmergencyAlerter,
    build_alert_body,
    create_alert_tool,
)
from medcompanion.tools.search_tools import (
    NO_RESULTS_MESSAGE,
    SEARCH_ERROR_MESSAGE,
    WebSearchClient,
    create_search_tool,
    format_results,
    scope_query,
)

GEOCODE_URL = "https://geocode.test/reverse"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------


class TestLocation:
    def test_format_address_most_specific_first(self):
        address = {
            "suburb": "Indiranagar",
            "city": "Bengaluru",
            "state": "Karnataka",
            "country": "India",
            "postcode": "560038",
        }
        assert format_address(address) == "Indiranagar, Bengaluru, Karnataka, India"

    def test_format_address_skips_missing_levels(self):
        assert format_address({"town": "Ooty", "country": "India"}) == "Ooty, India"
        assert format_address({"neighbourhood": "Soho", "state": "England"}) == "Soho, England"
        assert format_address({}) == ""

    @pytest.mark.parametrize("query, expected", [
        ("hospital near me", True),
        ("24h Pharmacy", True),
        ("Medical college admissions", True),
        ("what is paracetamol", False),
    ])
    def test_is_geo_scoped(self, query, expected):
        assert is_geo_scoped(query) is expected

    @pytest.mark.asyncio
    async def test_resolve(self):
        def handler(request):
            params = parse_qs(request.url.query.decode())
            assert params["lat"] == ["12.97"]
            assert params["lon"] == ["77.64"]
            assert params["zoom"] == ["14"]
            assert request.headers["User-Agent"] == "MedicalCompanionApp/1.0"
            return httpx.Response(200, json={"address": {"suburb": "Indiranagar", "city": "Bengaluru"}})

        async with _client(handler) as http:
            resolver = LocationResolver(GEOCODE_URL, "MedicalCompanionApp/1.0", http_client=http)
            assert await resolver.resolve(12.97, 77.64) == "Indiranagar, Bengaluru"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(500),
        httpx.Response(200, json={"error": "Unable to geocode"}),
        httpx.Response(200, json={"address": {"postcode": "560038"}}),
        httpx.Response(200, text="<html>"),
    ])
    async def test_resolve_failures_use_default(self, response):
        async with _client(lambda r: response) as http:
            resolver = LocationResolver(GEOCODE_URL, "ua", http_client=http)
            assert await resolver.resolve(0.0, 0.0) == DEFAULT_LOCATION_NAME

    @pytest.mark.asyncio
    async def test_resolve_network_error(self):
        def handler(request):
            raise httpx.ConnectTimeout("slow")

        async with _client(handler) as http:
            resolver = LocationResolver(GEOCODE_URL, "ua", http_client=http)
            assert await resolver.resolve(1.0, 2.0) == DEFAULT_LOCATION_NAME


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class TestSearch:
    def test_format_results(self):
        results = [
            {"title": "City Hospital", "url": "https://city.example", "content": "Open 24 hours"},
            {"url": "https://b.example", "content": "No title"},
        ]
        assert format_results(results) == (
            "1. City Hospital - https://city.example\nOpen 24 hours\n\n"
            "2. Untitled - https://b.example\nNo title"
        )

    def test_format_results_limit(self):
        results = [{"title": f"R{i}", "url": "u", "content": "c"} for i in range(8)]
        assert format_results(results).count("\n\n") == 4

    @pytest.mark.asyncio
    async def test_search(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer tvly-test"
            return httpx.Response(200, json={"results": [
                {"title": "Apollo Clinic", "url": "https://apollo.example", "content": "Walk-ins welcome"},
            ]})

        async with _client(handler) as http:
            client = WebSearchClient("tvly-test", http_client=http)
            assert await client.search("clinic") == "1. Apollo Clinic - https://apollo.example\nWalk-ins welcome"

    @pytest.mark.asyncio
    async def test_search_no_results(self):
        async with _client(lambda r: httpx.Response(200, json={"results": []})) as http:
            assert await WebSearchClient("k", http_client=http).search("x") == NO_RESULTS_MESSAGE

    @pytest.mark.asyncio
    async def test_search_errors_become_text(self):
        async with _client(lambda r: httpx.Response(429, text="slow down")) as http:
            assert await WebSearchClient("k", http_client=http).search("x") == SEARCH_ERROR_MESSAGE

        def handler(request):
            raise httpx.ConnectError("down")

        async with _client(handler) as http:
            assert await WebSearchClient("k", http_client=http).search("x") == SEARCH_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_search_without_key(self):
        assert await WebSearchClient(None).search("x") == SEARCH_ERROR_MESSAGE

    def test_scope_query_appends_place(self):
        context = ToolContext(user_text="hi", location_name="Indiranagar, Bengaluru",
                              location=Location(12.9716, 77.6412))
        scoped = scope_query("hospital near me", context)
        assert scoped == "hospital near me Indiranagar, Bengaluru"
        assert "12.97" not in scoped and "77.64" not in scoped

    def test_scope_query_leaves_other_queries(self):
        context = ToolContext(user_text="hi", location_name="Bengaluru")
        assert scope_query("paracetamol dosage", context) == "paracetamol dosage"
        assert scope_query("hospital in Bengaluru", context) == "hospital in Bengaluru"

    def test_scope_query_without_resolved_location(self):
        assert scope_query("clinic near me", ToolContext(user_text="hi")) == "clinic near me"
        context = ToolContext(user_text="hi", location_name=DEFAULT_LOCATION_NAME, location=Location(1.0, 2.0))
        assert scope_query("clinic near me", context) == "clinic near me"

    def test_scope_query_coordinates_when_enabled(self):
        context = ToolContext(user_text="hi", location_name="Bengaluru", location=Location(12.97, 77.64))
        assert scope_query("clinic", context, include_coordinates=True) == "clinic Bengaluru (12.97,77.64)"

    @pytest.mark.asyncio
    async def test_search_tool(self):
        queries = []

        def handler(request):
            queries.append(json.loads(request.content)["query"])
            return httpx.Response(200, json={"results": []})

        async with _client(handler) as http:
            tool = create_search_tool(WebSearchClient("k", http_client=http))
            context = ToolContext(user_text="hi", location_name="Bengaluru")
            result = await tool.execute({"query": "pharmacy near me"}, context)

        assert result.success
        assert queries == ["pharmacy near me Bengaluru"]
        assert tool.to_openai_function()["function"]["parameters"]["required"] == ["query"]

    @pytest.mark.asyncio
    async def test_search_tool_requires_query(self):
        tool = create_search_tool(WebSearchClient("k"))
        result = await tool.execute({}, ToolContext(user_text="hi"))
        assert not result.success


# ---------------------------------------------------------------------------
# Alert
# ---------------------------------------------------------------------------


class TestAlert:
    def test_build_alert_body(self):
        now = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        body = build_alert_body("I can't go on", now=now)
        assert body == (
            'EMERGENCY ALERT: A user has sent a potentially suicidal message. '
            'Message: "I can\'t go on". Please provide immediate assistance. '
            'Time: 2026-01-02T03:04:05+00:00'
        )
        assert build_alert_body("m", reason="explicit plan", now=now).endswith(" Reason: explicit plan")

    @pytest.mark.asyncio
    async def test_alert_sends_sms(self):
        sent = []

        def handler(request):
            sent.append((str(request.url), parse_qs(request.content.decode()), request.headers["Authorization"]))
            return httpx.Response(201, json={"sid": "SM1"})

        async with _client(handler) as http:
            alerter = EmergencyAlerter("AC1", "token", "+15550001111", "+15550002222", http_client=http)
            assert await alerter.alert("I want to end it", reason="plan") is True

        [(url, form, auth)] = sent
        assert url == "https://api.twilio.com/2010-04-01/Accounts/AC1/Messages.json"
        assert form["To"] == ["+15550002222"]
        assert form["From"] == ["+15550001111"]
        assert '"I want to end it"' in form["Body"][0]
        assert re.search(r"Time: \d{4}-\d{2}-\d{2}T", form["Body"][0])
        assert auth.startswith("Basic ")

    @pytest.mark.asyncio
    async def test_alert_failures_return_false(self):
        async with _client(lambda r: httpx.Response(400, text="bad number")) as http:
            alerter = EmergencyAlerter("AC1", "token", "+1", "+2", http_client=http)
            assert await alerter.alert("m") is False

        assert await EmergencyAlerter(None, None, None, "+2").alert("m") is False

    @pytest.mark.asyncio
    async def test_alert_is_safe_to_repeat(self):
        count = 0

        def handler(request):
            nonlocal count
            count += 1
            return httpx.Response(201)

        async with _client(handler) as http:
            alerter = EmergencyAlerter("AC1", "token", "+1", "+2", http_client=http)
            assert await alerter.alert("m") and await alerter.alert("m")
        assert count == 2

    @pytest.mark.asyncio
    async def test_alert_tool_quotes_user_text(self):
        bodies = []

        def handler(request):
            bodies.append(parse_qs(request.content.decode())["Body"][0])
            return httpx.Response(201)

        async with _client(handler) as http:
            tool = create_alert_tool(EmergencyAlerter("AC1", "t", "+1", "+2", http_client=http))
            result = await tool.execute({"reason": "self-harm intent"}, ToolContext(user_text="no way out"))

        assert result.success and result.data == ALERT_SENT_MESSAGE
        assert '"no way out"' in bodies[0]
        assert bodies[0].endswith("Reason: self-harm intent")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_create_tool_registry(self):
        registry = create_tool_registry(WebSearchClient("k"), EmergencyAlerter(None, None, None, "+2"))
        assert registry.list_names() == [SEARCH_TOOL, ALERT_TOOL]
        functions = registry.get_openai_functions()
        assert [f["function"]["name"] for f in functions] == ["tool_search", "tool_alert"]
        assert functions[1]["function"]["parameters"]["required"] == ["reason"]

    def test_duplicate_registration(self):
        registry = ToolRegistry()
        tool = MCPTool("t", "d", {}, execute=None)
        registry.register(tool)
        with pytest.raises(ValueError):
            registry.register(tool)

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        result = await ToolRegistry().execute("tool_magic", {}, ToolContext(user_text="hi"))
        assert not result.success
        assert result.to_message() == "Error: Tool 'tool_magic' is not available"

    @pytest.mark.asyncio
    async def test_tool_exception_becomes_failure(self):
        async def explode(params, context):
            raise RuntimeError("kaboom")

        registry = ToolRegistry()
        registry.register(MCPTool("t", "d", {}, execute=explode))
        result = await registry.execute("t", {}, ToolContext(user_text="hi"))
        assert result == ToolResult(success=False, error="kaboom")

    def test_result_messages(self):
        assert ToolResult(success=True, data="text").to_message() == "text"
        assert ToolResult(success=True, data={"a": 1}).to_message() == '{"a": 1}'
