"""
BuildSession - one agent, its connection, its workspace and its state.

A session is created from the start descriptor returned by the agent
creation call (or by connecting to an existing agent). connect() opens the
reconnecting socket and wires incoming messages into the workspace and the
state store; command methods send client messages; wait methods return
futures that settle on the first matching server message.
"""

import asyncio
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from agentwire.config import ClientOptions, SessionConnectOptions, coerce_options
from agentwire.connection import AgentConnection
from agentwire.errors import DeploymentError, NotConnectedError
from agentwire.events import AgentEvent, EventCallback, Unsubscribe, WildcardCallback
from agentwire.logging_config import get_logger
from agentwire.messages import (
    BehaviorType,
    BuildStartEvent,
    ClearConversationMessage,
    Credentials,
    DeployMessage,
    GenerateAllMessage,
    GetConversationStateMessage,
    PhaseEventType,
    PreviewMessage,
    ResumeGenerationMessage,
    ServerMessage,
    SessionInitMessage,
    StopGenerationMessage,
    UserSuggestionMessage,
)
from agentwire.state import SessionStateStore
from agentwire.workspace import FileTreeNode, WorkspaceStore

logger = get_logger(__name__)

DEFAULT_SESSION_WAIT_TIMEOUT = 10 * 60.0  # seconds


class SessionDeployable(BaseModel):
    """Result of waiting until the build can be deployed."""

    model_config = ConfigDict(frozen=True)

    files: int
    reason: str  # "phase_validated" or "generation_complete"
    preview_url: Optional[str] = None


class SessionFiles:
    """Read-only view of a session's workspace."""

    def __init__(self, workspace: WorkspaceStore):
        self._workspace = workspace

    def list_paths(self) -> list[str]:
        return self._workspace.paths()

    def read(self, path: str) -> Optional[str]:
        return self._workspace.read(path)

    def snapshot(self) -> dict[str, str]:
        return self._workspace.snapshot()

    def tree(self) -> list[FileTreeNode]:
        return self._workspace.tree()


class SessionWaits:
    """Short names for the session wait methods: ``session.wait.deployable()``."""

    def __init__(self, session: "BuildSession"):
        self._session = session

    def generation_started(self, timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT) -> asyncio.Future:
        return self._session.wait_for_generation_started(timeout)

    def generation_complete(self, timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT) -> asyncio.Future:
        return self._session.wait_for_generation_complete(timeout)

    def phase(
        self,
        phase_type: PhaseEventType,
        timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT,
    ) -> asyncio.Future:
        return self._session.wait_for_phase(phase_type, timeout)

    def deployable(self, timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT) -> asyncio.Future:
        return self._session.wait_for_deployable(timeout)

    def preview_deployed(self, timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT) -> asyncio.Future:
        return self._session.wait_for_preview_deployed(timeout)

    def cloudflare_deployed(self, timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT) -> asyncio.Future:
        return self._session.wait_for_cloudflare_deployed(timeout)


class BuildSession:
    """
    Addressable build session for one agent.

    Usage:
        session = BuildSession(client_options, start_event)
        session.connect()
        session.start_generation()
        result = await session.wait_for_deployable()
        session.close()
    """

    def __init__(
        self,
        client_options: Union[ClientOptions, dict[str, Any], None],
        start: Union[BuildStartEvent, dict[str, Any]],
        *,
        get_auth_token: Optional[Callable[[], Optional[str]]] = None,
        default_credentials: Optional[Credentials] = None,
    ):
        """
        Initialize session (does not connect).

        Args:
            client_options: Client options supplying default origin and socket factory
            start: Start descriptor with agent id and websocket URL
            get_auth_token: Returns the bearer token for the socket handshake
            default_credentials: Credentials sent via session_init when connect()
                                 options carry none
        """
        self._client_options = coerce_options(ClientOptions, client_options) if client_options is not None else None
        if not isinstance(start, BuildStartEvent):
            start = BuildStartEvent.model_validate(start)
        self._start = start
        self._get_auth_token = get_auth_token
        self._default_credentials = default_credentials

        self._connection: Optional[AgentConnection] = None
        self.workspace = WorkspaceStore()
        self.state = SessionStateStore()
        self.files = SessionFiles(self.workspace)
        self.wait = SessionWaits(self)

    # Properties

    @property
    def agent_id(self) -> str:
        return self._start.agent_id

    @property
    def websocket_url(self) -> str:
        return self._start.websocket_url

    @property
    def behavior_type(self) -> Optional[BehaviorType]:
        return self._start.behavior_type

    @property
    def project_type(self) -> Optional[str]:
        return self._start.project_type

    @property
    def start_event(self) -> BuildStartEvent:
        return self._start

    @property
    def connection(self) -> Optional[AgentConnection]:
        return self._connection

    @property
    def is_connected(self) -> bool:
        """True once connect() has been called and until close()."""
        return self._connection is not None

    # Connection

    def connect(self, options: Union[SessionConnectOptions, dict[str, Any], None] = None) -> AgentConnection:
        """
        Open the agent socket. Calling again returns the existing connection.

        On every open (including reconnects) the session sends session_init
        when credentials are available, then get_conversation_state unless
        auto_request_conversation_state is False.

        Args:
            options: SessionConnectOptions or a dict of overrides

        Returns:
            The session's AgentConnection
        """
        if self._connection is not None:
            return self._connection

        opts = coerce_options(SessionConnectOptions, options)

        update: dict[str, Any] = {}
        if opts.origin is None and self._client_options is not None and self._client_options.websocket_origin:
            update["origin"] = self._client_options.websocket_origin
        if opts.socket_factory is None and self._client_options is not None and self._client_options.socket_factory:
            update["socket_factory"] = self._client_options.socket_factory

        headers = dict(opts.headers)
        token = self._get_auth_token() if self._get_auth_token is not None else None
        if token and "Authorization" not in headers:
            headers["Authorization"] = f"Bearer {token}"
        update["headers"] = headers

        opts = opts.model_copy(update=update)
        credentials = opts.credentials if opts.credentials is not None else self._default_credentials
        request_state = opts.auto_request_conversation_state

        self.state.set_connection("connecting")
        logger.info(f"Connecting session for agent {self.agent_id}")
        connection = AgentConnection(self.websocket_url, opts)
        self._connection = connection

        # Workspace first so state subscribers see the files a message brought
        connection.on(AgentEvent.MESSAGE, self.workspace.apply)
        connection.on(AgentEvent.MESSAGE, self.state.apply)
        connection.on(AgentEvent.OPEN, lambda _: self.state.set_connection("connected"))
        connection.on(AgentEvent.CLOSE, lambda _: self.state.set_connection("disconnected"))

        def handshake(_) -> None:
            if credentials:
                connection.send(SessionInitMessage(credentials=credentials))
            if request_state:
                connection.send(GetConversationStateMessage())

        connection.on(AgentEvent.OPEN, handshake)
        return connection

    def close(self) -> None:
        """Close the connection, reject pending waits, and reset workspace and state."""
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.close()
        self.workspace.clear()
        self.state.clear()

    async def __aenter__(self) -> "BuildSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Commands

    def _require_connection(self) -> AgentConnection:
        if self._connection is None:
            raise NotConnectedError("BuildSession is not connected. Call connect() first.")
        return self._connection

    def start_generation(self) -> None:
        self._require_connection().send(GenerateAllMessage())

    def stop(self) -> None:
        self._require_connection().send(StopGenerationMessage())

    def resume(self) -> None:
        self._require_connection().send(ResumeGenerationMessage())

    def follow_up(self, message: str, images: Optional[list[Any]] = None) -> None:
        """Send a user suggestion to the agent."""
        self._require_connection().send(UserSuggestionMessage(message=message, images=images))

    def request_conversation_state(self) -> None:
        self._require_connection().send(GetConversationStateMessage())

    def deploy_preview(self) -> None:
        self._require_connection().send(PreviewMessage())

    def deploy_cloudflare(self) -> None:
        self._require_connection().send(DeployMessage())

    def clear_conversation(self) -> None:
        self._require_connection().send(ClearConversationMessage())

    # Subscriptions

    def on(self, event: Union[AgentEvent, str], callback: EventCallback) -> Unsubscribe:
        return self._require_connection().on(event, callback)

    def on_any(self, callback: WildcardCallback) -> Unsubscribe:
        return self._require_connection().on_any(callback)

    def on_message_type(self, message_type: str, callback: Callable[[ServerMessage], None]) -> Unsubscribe:
        """Subscribe to server messages of one exact type."""

        def filtered(message: ServerMessage) -> None:
            if message.type == message_type:
                callback(message)

        return self._require_connection().on(AgentEvent.MESSAGE, filtered)

    # Waits

    def _wait_for_message(
        self,
        predicate: Callable[[ServerMessage], bool],
        timeout: Optional[float],
        transform: Optional[Callable[[ServerMessage], Any]] = None,
    ) -> asyncio.Future:
        return self._require_connection().wait_for(AgentEvent.MESSAGE, predicate, timeout, transform=transform)

    def wait_for_message_type(
        self,
        message_type: str,
        timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT,
    ) -> asyncio.Future:
        """
        Wait for the next server message of one type.

        Args:
            message_type: Wire type, e.g. "generation_complete"
            timeout: Seconds (None = no timeout)

        Returns:
            Future resolving to the ServerMessage

        Raises:
            NotConnectedError: If connect() has not been called
        """
        return self._wait_for_message(lambda m: m.type == message_type, timeout)

    def wait_for_generation_started(self, timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT) -> asyncio.Future:
        return self.wait_for_message_type("generation_started", timeout)

    def wait_for_generation_complete(self, timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT) -> asyncio.Future:
        return self.wait_for_message_type("generation_complete", timeout)

    def wait_for_phase(
        self,
        phase_type: PhaseEventType,
        timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT,
    ) -> asyncio.Future:
        return self.wait_for_message_type(phase_type, timeout)

    def wait_until_ready(self, timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT) -> asyncio.Future:
        """Alias for wait_for_generation_started()."""
        return self.wait_for_generation_started(timeout)

    def wait_for_deployable(self, timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT) -> asyncio.Future:
        """
        Wait until the build can be deployed.

        Phasic agents are deployable after phase_validated, all others after
        generation_complete.

        Returns:
            Future resolving to SessionDeployable
        """
        reason = "phase_validated" if self.behavior_type == "phasic" else "generation_complete"

        def deployable(_message: ServerMessage) -> SessionDeployable:
            return SessionDeployable(
                files=len(self.workspace),
                reason=reason,
                preview_url=self.state.get().preview_url,
            )

        return self._wait_for_message(lambda m: m.type == reason, timeout, deployable)

    def wait_for_preview_deployed(self, timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT) -> asyncio.Future:
        """
        Wait for the preview deployment to finish.

        Returns:
            Future resolving to the deployment_completed message, or rejected
            with DeploymentError on deployment_failed
        """
        return self._wait_for_message(
            lambda m: m.type in ("deployment_completed", "deployment_failed"),
            timeout,
            _raise_on_failure("deployment_failed"),
        )

    def wait_for_cloudflare_deployed(self, timeout: Optional[float] = DEFAULT_SESSION_WAIT_TIMEOUT) -> asyncio.Future:
        """
        Wait for the Cloudflare deployment to finish.

        Returns:
            Future resolving to the cloudflare_deployment_completed message, or
            rejected with DeploymentError on cloudflare_deployment_error
        """
        return self._wait_for_message(
            lambda m: m.type in ("cloudflare_deployment_completed", "cloudflare_deployment_error"),
            timeout,
            _raise_on_failure("cloudflare_deployment_error"),
        )


def _raise_on_failure(failure_type: str) -> Callable[[ServerMessage], ServerMessage]:
    def check(message: ServerMessage) -> ServerMessage:
        if message.type == failure_type:
            error = getattr(message, "error", None)
            raise DeploymentError(str(error) if error is not None else "Deployment failed")
        return message

    return check
