"""
HTTP client for the agent platform.

AgentClient creates agents (reading the NDJSON creation stream), connects to
existing agents, and wraps the app listing endpoints. Every call that yields
a live agent returns a BuildSession.
"""

import json
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any, Optional, Union

import httpx
from pydantic import ValidationError

from agentwire.config import BuildOptions, ClientOptions, coerce_options
from agentwire.errors import AgentApiError
from agentwire.logging_config import get_logger
from agentwire.messages import BuildStartEvent, Credentials
from agentwire.session import BuildSession

logger = get_logger(__name__)

ApiResponse = dict[str, Any]  # {"success": bool, "data": ...} or {"success": False, "error": {...}}


async def parse_ndjson_lines(lines: AsyncIterable[str]) -> AsyncIterator[Any]:
    """
    Decode newline-delimited JSON.

    Blank lines are skipped. A final line without a trailing newline is
    decoded like any other.

    Raises:
        AgentApiError: If a line is not valid JSON
    """
    async for line in lines:
        text = line.strip()
        if not text:
            continue
        try:
            yield json.loads(text)
        except json.JSONDecodeError as e:
            raise AgentApiError(f"Invalid NDJSON line: {e}") from e


def _error_message(response: httpx.Response) -> str:
    """Best-effort error text from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    return response.reason_phrase


def _raise_for_status(response: httpx.Response, path: str) -> None:
    if response.is_success:
        return
    message = _error_message(response)
    logger.warning(f"{response.request.method} {path} failed ({response.status_code}): {message}")
    raise AgentApiError(f"HTTP {response.status_code} from {path}: {message}", status_code=response.status_code)


class AppsApi:
    """App listing endpoints. Methods return the decoded response envelope."""

    def __init__(self, client: "AgentClient"):
        self._client = client

    async def list_public(
        self,
        limit: Optional[int] = None,
        page: Optional[int] = None,
        sort: Optional[str] = None,
        order: Optional[str] = None,
        period: Optional[str] = None,
        framework: Optional[str] = None,
        search: Optional[str] = None,
    ) -> ApiResponse:
        query = {
            "limit": limit,
            "page": page,
            "sort": sort,
            "order": order,
            "period": period,
            "framework": framework,
            "search": search,
        }
        params = {key: value for key, value in query.items() if value is not None}
        return await self._client.request_json("GET", "/api/apps/public", params=params)

    async def list_mine(self) -> ApiResponse:
        return await self._client.request_json("GET", "/api/apps")

    async def get(self, app_id: str) -> ApiResponse:
        return await self._client.request_json("GET", f"/api/apps/{app_id}")

    async def get_git_clone_token(self, app_id: str) -> ApiResponse:
        """Short-lived token and clone URL for the app's git repository."""
        return await self._client.request_json("POST", f"/api/apps/{app_id}/git/token", json={})


class AgentClient:
    """
    Entry point for creating and resuming agent build sessions.

    Usage:
        async with AgentClient({"base_url": "https://build.example.com", "token": jwt}) as client:
            session = await client.build("A todo app with dark mode")
            result = await session.wait_for_deployable()
    """

    def __init__(
        self,
        options: Union[ClientOptions, dict[str, Any]],
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize client.

        Args:
            options: ClientOptions or a dict
            transport: Custom httpx transport (e.g. httpx.MockTransport in tests)

        Raises:
            ConfigurationError: If options are invalid
        """
        self._options = coerce_options(ClientOptions, options)
        self._http = httpx.AsyncClient(
            base_url=self._options.base_url,
            timeout=self._options.timeout,
            transport=transport,
        )
        self.apps = AppsApi(self)

    @property
    def base_url(self) -> str:
        return self._options.base_url

    @property
    def options(self) -> ClientOptions:
        return self._options

    def get_token(self) -> Optional[str]:
        """Bearer token for HTTP calls and session sockets."""
        # API keys are not exchanged for tokens yet
        return self._options.token

    def headers(self, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        headers = dict(self._options.default_headers)
        token = self.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if extra:
            headers.update(extra)
        return headers

    async def request_json(self, method: str, path: str, **kwargs) -> Any:
        """
        Send a request and decode its JSON body.

        Raises:
            AgentApiError: On a non-2xx status or a non-JSON body
        """
        response = await self._http.request(method, path, headers=self.headers(), **kwargs)
        _raise_for_status(response, path)
        try:
            return response.json()
        except ValueError as e:
            raise AgentApiError(f"Invalid JSON from {path}", status_code=response.status_code) from e

    # Sessions

    async def build(
        self,
        prompt: str,
        options: Union[BuildOptions, dict[str, Any], None] = None,
    ) -> BuildSession:
        """
        Create a new agent from a prompt.

        The creation response is an NDJSON stream: the first object describes
        the agent, later objects may carry blueprint text chunks.

        Args:
            prompt: What to build
            options: BuildOptions or a dict

        Returns:
            BuildSession, connected and generating unless disabled in options

        Raises:
            AgentApiError: On HTTP failure or if the stream has no start event
        """
        opts = coerce_options(BuildOptions, options)
        path = "/api/agent"

        start: Optional[BuildStartEvent] = None
        async with self._http.stream("POST", path, json=opts.request_body(prompt), headers=self.headers()) as response:
            if not response.is_success:
                await response.aread()
                _raise_for_status(response, path)

            async for obj in parse_ndjson_lines(response.aiter_lines()):
                if start is None:
                    try:
                        start = BuildStartEvent.model_validate(obj)
                    except ValidationError as e:
                        raise AgentApiError(f"Malformed start event from {path}: {e}") from e
                    logger.info(f"Agent {start.agent_id} created")
                    continue
                chunk = obj.get("chunk") if isinstance(obj, dict) else None
                if isinstance(chunk, str) and opts.on_blueprint_chunk is not None:
                    opts.on_blueprint_chunk(chunk)

        if start is None:
            raise AgentApiError(f"No start event received from {path}")

        session = BuildSession(
            self._options,
            start,
            get_auth_token=self.get_token,
            default_credentials=opts.credentials,
        )
        if opts.auto_connect:
            session.connect()
            if opts.auto_generate:
                session.start_generation()
        return session

    async def connect(self, agent_id: str, credentials: Optional[Credentials] = None) -> BuildSession:
        """
        Attach to an existing agent.

        The returned session is not connected yet; call session.connect().

        Raises:
            AgentApiError: If the platform reports failure
        """
        envelope = await self.request_json("GET", f"/api/agent/{agent_id}/connect")
        if not isinstance(envelope, dict) or not envelope.get("success"):
            error = envelope.get("error") if isinstance(envelope, dict) else None
            message = error.get("message") if isinstance(error, dict) else None
            raise AgentApiError(message or f"Could not connect to agent {agent_id}")

        data = envelope.get("data") or {}
        start = BuildStartEvent(agent_id=data.get("agentId", agent_id), websocket_url=data.get("websocketUrl", ""))
        if not start.websocket_url:
            raise AgentApiError(f"No websocket URL returned for agent {agent_id}")

        return BuildSession(
            self._options,
            start,
            get_auth_token=self.get_token,
            default_credentials=credentials,
        )

    # Lifecycle

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "AgentClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
