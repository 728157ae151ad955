"""
Agentwire: client runtime for remote build agents

Keeps a reconnecting WebSocket connection to a build agent, turns its event
stream into typed messages, and derives session state (generation, phases,
deployments) plus a reconstructed copy of the agent's file workspace.
"""

__version__ = "0.1.0"

# Main API
from .client import AgentClient, AppsApi, parse_ndjson_lines

# Configuration models
from .config import (
    BuildOptions,
    ClientOptions,
    ConnectionOptions,
    SessionConnectOptions,
)
from .connection import SUGAR_EVENTS, AgentConnection

# Exceptions
from .errors import (
    AgentApiError,
    AgentwireError,
    ConfigurationError,
    ConnectionClosedError,
    DeploymentError,
    MessageParseError,
    NotConnectedError,
    QueueOverflowError,
    WaitTimeoutError,
)

# Events
from .events import (
    AgentErrorEvent,
    AgentEvent,
    CloseInfo,
    EventBus,
    RawPayload,
    ReconnectInfo,
    TransportErrorEvent,
)

# Logging configuration
from .logging_config import (
    get_logger,
    set_module_level,
    setup_logging,
)

# Wire protocol
from .messages import (
    BuildStartEvent,
    ClientMessage,
    ServerMessage,
    Unclassified,
    classify,
    parse_payload,
)
from .retry import RetryConfig, compute_backoff
from .session import BuildSession, SessionDeployable, SessionFiles, SessionWaits

# Transport
from .sockets import SocketFactory, SocketLike, WebsocketsSocket, default_socket_factory

# State
from .state import SessionState, SessionStateStore, reduce
from .waiters import Waiter, WaiterRegistry
from .workspace import DirectoryNode, FileNode, WorkspaceStore, build_file_tree

__all__ = [
    # Version
    "__version__",
    # Main API
    "AgentClient",
    "AppsApi",
    "BuildSession",
    "SessionDeployable",
    "SessionFiles",
    "SessionWaits",
    "parse_ndjson_lines",
    # Transport
    "AgentConnection",
    "SUGAR_EVENTS",
    "SocketLike",
    "SocketFactory",
    "WebsocketsSocket",
    "default_socket_factory",
    "RetryConfig",
    "compute_backoff",
    # Events
    "EventBus",
    "AgentEvent",
    "CloseInfo",
    "TransportErrorEvent",
    "ReconnectInfo",
    "RawPayload",
    "AgentErrorEvent",
    "Waiter",
    "WaiterRegistry",
    # Wire protocol
    "ServerMessage",
    "ClientMessage",
    "BuildStartEvent",
    "Unclassified",
    "parse_payload",
    "classify",
    # State
    "SessionState",
    "SessionStateStore",
    "reduce",
    "WorkspaceStore",
    "FileNode",
    "DirectoryNode",
    "build_file_tree",
    # Configuration models
    "ClientOptions",
    "ConnectionOptions",
    "SessionConnectOptions",
    "BuildOptions",
    # Logging configuration
    "setup_logging",
    "get_logger",
    "set_module_level",
    # Exceptions
    "AgentwireError",
    "ConfigurationError",
    "MessageParseError",
    "QueueOverflowError",
    "NotConnectedError",
    "ConnectionClosedError",
    "WaitTimeoutError",
    "DeploymentError",
    "AgentApiError",
]
