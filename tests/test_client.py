"""Tests for agentwire.client -- HTTP calls against httpx.MockTransport."""

import json

import httpx
import pytest

from agentwire.client import AgentClient, parse_ndjson_lines
from agentwire.errors import AgentApiError, ConfigurationError

BASE_URL = "http://localhost:5173"


def ndjson(*objects, trailing_newline=True):
    body = "\n".join(json.dumps(obj) for obj in objects)
    return (body + ("\n" if trailing_newline else "")).encode()


def make_client(handler, **options):
    return AgentClient({"base_url": BASE_URL, **options}, transport=httpx.MockTransport(handler))


async def collect(lines):
    async def source():
        for line in lines:
            yield line

    return [obj async for obj in parse_ndjson_lines(source())]


# ---------------------------------------------------------------------------
# NDJSON
# ---------------------------------------------------------------------------

class TestNdjson:

    @pytest.mark.asyncio
    async def test_skips_blank_lines(self):
        assert await collect(['{"a": 1}', "", "   ", '{"b": 2}']) == [{"a": 1}, {"b": 2}]

    @pytest.mark.asyncio
    async def test_invalid_line_raises(self):
        with pytest.raises(AgentApiError, match="Invalid NDJSON"):
            await collect(['{"a": 1}', "{nope"])


# ---------------------------------------------------------------------------
# build()
# ---------------------------------------------------------------------------

class TestBuild:

    @pytest.mark.asyncio
    async def test_reads_start_event_and_chunks(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, content=ndjson(
                {"agentId": "a1", "websocketUrl": "ws://localhost/ws", "behaviorType": "phasic"},
                {"chunk": "# Plan\n"},
                {"chunk": "1. UI"},
                {"other": True},
                trailing_newline=False,
            ))

        chunks = []
        async with make_client(handler, token="jwt") as client:
            session = await client.build(
                "A todo app",
                {
                    "behavior_type": "phasic",
                    "selected_template": "react",
                    "auto_connect": False,
                    "on_blueprint_chunk": chunks.append,
                },
            )

        assert session.agent_id == "a1"
        assert session.behavior_type == "phasic"
        assert session.is_connected is False
        assert chunks == ["# Plan\n", "1. UI"]

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/agent"
        assert request.headers["Authorization"] == "Bearer jwt"
        assert json.loads(request.content) == {
            "query": "A todo app",
            "selectedTemplate": "react",
            "behaviorType": "phasic",
        }

    @pytest.mark.asyncio
    async def test_auto_connect_and_generate(self, socket_factory, credentials):
        def handler(request):
            return httpx.Response(200, content=ndjson({"agentId": "a1", "websocketUrl": "ws://localhost/ws"}))

        async with make_client(handler, token="jwt", socket_factory=socket_factory) as client:
            session = await client.build("A todo app", {"credentials": credentials})

        assert session.is_connected is True
        socket = socket_factory.current
        assert socket.url == "ws://localhost/ws"
        assert socket_factory.calls[0]["headers"]["Authorization"] == "Bearer jwt"

        socket.emit_open()

        assert socket.sent_types() == ["session_init", "get_conversation_state", "generate_all"]
        session.close()

    @pytest.mark.asyncio
    async def test_empty_stream_raises(self):
        async with make_client(lambda request: httpx.Response(200, content=b"\n")) as client:
            with pytest.raises(AgentApiError, match="No start event"):
                await client.build("x")

    @pytest.mark.asyncio
    async def test_malformed_start_event_raises(self):
        async with make_client(lambda request: httpx.Response(200, content=ndjson({"hello": "world"}))) as client:
            with pytest.raises(AgentApiError, match="Malformed start event"):
                await client.build("x")

    @pytest.mark.asyncio
    async def test_http_error_raises_with_status(self):
        def handler(request):
            return httpx.Response(401, json={"success": False, "error": {"message": "Unauthorized"}})

        async with make_client(handler) as client:
            with pytest.raises(AgentApiError, match="Unauthorized") as exc_info:
                await client.build("x")

        assert exc_info.value.status_code == 401


# ---------------------------------------------------------------------------
# connect()
# ---------------------------------------------------------------------------

class TestConnect:

    @pytest.mark.asyncio
    async def test_returns_unconnected_session(self):
        def handler(request):
            assert request.url.path == "/api/agent/a9/connect"
            return httpx.Response(200, json={
                "success": True,
                "data": {"agentId": "a9", "websocketUrl": "wss://host/agents/a9/ws"},
            })

        async with make_client(handler) as client:
            session = await client.connect("a9")

        assert session.agent_id == "a9"
        assert session.websocket_url == "wss://host/agents/a9/ws"
        assert session.is_connected is False

    @pytest.mark.asyncio
    async def test_failure_envelope_raises(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error": {"message": "Agent not found"}})

        async with make_client(handler) as client:
            with pytest.raises(AgentApiError, match="Agent not found"):
                await client.connect("missing")

    @pytest.mark.asyncio
    async def test_missing_websocket_url_raises(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "data": {"agentId": "a9"}})

        async with make_client(handler) as client:
            with pytest.raises(AgentApiError, match="No websocket URL"):
                await client.connect("a9")


# ---------------------------------------------------------------------------
# Apps
# ---------------------------------------------------------------------------

class TestApps:

    @pytest.mark.asyncio
    async def test_list_public_sends_only_given_params(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"success": True, "data": {"apps": []}})

        async with make_client(handler) as client:
            result = await client.apps.list_public(limit=5, sort="popular")

        assert result == {"success": True, "data": {"apps": []}}
        assert seen[0].url.path == "/api/apps/public"
        assert dict(seen[0].url.params) == {"limit": "5", "sort": "popular"}

    @pytest.mark.asyncio
    async def test_routes(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={"success": True, "data": {}})

        async with make_client(handler, default_headers={"X-Team": "core"}) as client:
            await client.apps.list_mine()
            await client.apps.get("app1")
            await client.apps.get_git_clone_token("app1")

        assert seen == [
            ("GET", "/api/apps"),
            ("GET", "/api/apps/app1"),
            ("POST", "/api/apps/app1/git/token"),
        ]

    @pytest.mark.asyncio
    async def test_default_headers_are_sent(self):
        seen = []

        def handler(request):
            seen.append(request.headers)
            return httpx.Response(200, json={"success": True})

        async with make_client(handler, token="jwt", default_headers={"X-Team": "core"}) as client:
            await client.apps.list_mine()

        assert seen[0]["X-Team"] == "core"
        assert seen[0]["Authorization"] == "Bearer jwt"

    @pytest.mark.asyncio
    async def test_non_json_body_raises(self):
        async with make_client(lambda request: httpx.Response(200, content=b"<html>")) as client:
            with pytest.raises(AgentApiError, match="Invalid JSON"):
                await client.apps.list_mine()

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        async with make_client(lambda request: httpx.Response(500, text="upstream down")) as client:
            with pytest.raises(AgentApiError, match="upstream down") as exc_info:
                await client.apps.get("x")

        assert exc_info.value.status_code == 500


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

class TestOptions:

    def test_invalid_base_url_raises(self):
        with pytest.raises(ConfigurationError):
            AgentClient({"base_url": "ftp://nope"})
