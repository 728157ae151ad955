"""
Pydantic configuration models for connections, sessions and the HTTP client.

Every public entry point accepts either a model instance or a plain dict;
coerce_options() validates dicts and reports problems as ConfigurationError.
"""

from typing import Any, Callable, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from agentwire.errors import ConfigurationError
from agentwire.logging_config import get_logger
from agentwire.messages import BehaviorType, Credentials
from agentwire.retry import RetryConfig, normalize_retry_config
from agentwire.sockets import SocketFactory

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DEFAULT_MAX_PENDING_SENDS = 1000


class ConnectionOptions(BaseModel):
    """
    Options for a single AgentConnection.

    Attributes:
        origin: Origin header override for the WebSocket handshake
        credentials: Ephemeral provider credentials sent via session_init (never persisted)
        headers: Extra handshake headers (e.g. Authorization)
        protocols: Optional WebSocket subprotocols
        socket_factory: Replaces the default websockets-based socket
        retry: Reconnect policy; a dict overrides individual defaults
        max_pending_sends: Capacity of the send queue used while disconnected
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    origin: Optional[str] = None
    credentials: Optional[Credentials] = None
    headers: dict[str, str] = Field(default_factory=dict)
    protocols: Optional[list[str]] = None
    socket_factory: Optional[SocketFactory] = None
    retry: RetryConfig = Field(default_factory=RetryConfig)
    max_pending_sends: int = Field(default=DEFAULT_MAX_PENDING_SENDS, ge=1)

    @field_validator("retry", mode="before")
    @classmethod
    def merge_retry_overrides(cls, v):
        """Allow partial dicts such as {"initial_delay": 0.5}."""
        if v is None or isinstance(v, dict):
            return normalize_retry_config(v)
        return v

    def handshake_headers(self) -> dict[str, str]:
        """Headers passed to the socket factory, Origin included when set."""
        headers = dict(self.headers)
        if self.origin:
            headers["Origin"] = self.origin
        return headers


class SessionConnectOptions(ConnectionOptions):
    """Connection options plus session-level handshake behavior."""

    # Send get_conversation_state on every open
    auto_request_conversation_state: bool = True


class ClientOptions(BaseModel):
    """
    Options for AgentClient and the sessions it creates.

    Attributes:
        base_url: Platform base URL (http or https)
        token: JWT access token used as a bearer token for HTTP and WebSocket
        api_key: Reserved for API-key authentication
        default_headers: Headers added to every HTTP request
        websocket_origin: Default Origin header for session sockets
        socket_factory: Default socket factory for session sockets
        timeout: HTTP timeout in seconds
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    base_url: str
    token: Optional[str] = None
    api_key: Optional[str] = None
    default_headers: dict[str, str] = Field(default_factory=dict)
    websocket_origin: Optional[str] = None
    socket_factory: Optional[SocketFactory] = None
    timeout: float = Field(default=30.0, gt=0.0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and strip trailing slashes."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must start with http:// or https://, got '{v}'")
        return v.rstrip("/")


class BuildOptions(BaseModel):
    """
    Arguments for AgentClient.build().

    Attributes:
        language: Preferred implementation language
        frameworks: Preferred frameworks
        selected_template: Template name to start from
        behavior_type: "phasic" or "agentic"
        project_type: Project category (e.g. "app")
        images: Reference images forwarded verbatim
        credentials: Ephemeral provider credentials (never persisted)
        auto_connect: Connect the session socket immediately
        auto_generate: Send generate_all right after connecting
        on_blueprint_chunk: Called for each blueprint chunk in the creation stream
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    language: Optional[str] = None
    frameworks: Optional[list[str]] = None
    selected_template: Optional[str] = None
    behavior_type: Optional[BehaviorType] = None
    project_type: Optional[str] = None
    images: Optional[list[Any]] = None
    credentials: Optional[Credentials] = None
    auto_connect: bool = True
    auto_generate: bool = True
    on_blueprint_chunk: Optional[Callable[[str], None]] = None

    def request_body(self, prompt: str) -> dict[str, Any]:
        """Creation request body in wire form, unset fields omitted."""
        body = {
            "query": prompt,
            "language": self.language,
            "frameworks": self.frameworks,
            "selectedTemplate": self.selected_template,
            "behaviorType": self.behavior_type,
            "projectType": self.project_type,
            "images": self.images,
            "credentials": self.credentials,
        }
        return {key: value for key, value in body.items() if value is not None}


def coerce_options(model: type[ModelT], value: Union[ModelT, dict[str, Any], None]) -> ModelT:
    """
    Turn None, a dict, or a model instance into a validated model.

    Raises:
        ConfigurationError: If a dict fails validation
    """
    if isinstance(value, model):
        return value
    if isinstance(value, BaseModel):
        # e.g. plain ConnectionOptions passed where SessionConnectOptions is expected
        value = dict(value)
    try:
        return model.model_validate(value or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {model.__name__}: {e}") from e
