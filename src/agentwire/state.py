"""
Session state derived from the agent's message stream.

reduce() is a pure projection of one server message onto an immutable
SessionState. SessionStateStore keeps the current snapshot and notifies
subscribers whenever a reduction produces a new one.
"""

import threading
from typing import Annotated, Any, Callable, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from agentwire.events import EventBus, Unsubscribe
from agentwire.logging_config import get_logger
from agentwire.messages import PHASE_EVENT_TYPES, ServerMessage

logger = get_logger(__name__)

ConnectionStatus = Literal["disconnected", "connecting", "connected"]


class _StateModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# Generation


class GenerationIdle(_StateModel):
    status: Literal["idle"] = "idle"


class GenerationRunning(_StateModel):
    status: Literal["running"] = "running"
    total_files: Optional[int] = None
    files_generated: int = 0


class GenerationStopped(_StateModel):
    status: Literal["stopped"] = "stopped"
    instance_id: Optional[str] = None
    files_generated: int = 0


class GenerationComplete(_StateModel):
    status: Literal["complete"] = "complete"
    instance_id: Optional[str] = None
    preview_url: Optional[str] = None
    files_generated: int = 0


GenerationState = Annotated[
    Union[GenerationIdle, GenerationRunning, GenerationStopped, GenerationComplete],
    Field(discriminator="status"),
]


# Phase


class PhaseIdle(_StateModel):
    status: Literal["idle"] = "idle"


class PhaseActive(_StateModel):
    status: Literal["generating", "generated", "implementing", "implemented", "validating", "validated"]
    name: Optional[str] = None
    description: Optional[str] = None


PhaseState = Annotated[Union[PhaseIdle, PhaseActive], Field(discriminator="status")]


# Preview deployment


class PreviewIdle(_StateModel):
    status: Literal["idle"] = "idle"


class PreviewRunning(_StateModel):
    status: Literal["running"] = "running"


class PreviewFailed(_StateModel):
    status: Literal["failed"] = "failed"
    error: str = ""


class PreviewComplete(_StateModel):
    status: Literal["complete"] = "complete"
    preview_url: Optional[str] = None
    tunnel_url: Optional[str] = None
    instance_id: Optional[str] = None


PreviewState = Annotated[
    Union[PreviewIdle, PreviewRunning, PreviewFailed, PreviewComplete],
    Field(discriminator="status"),
]


# Cloudflare deployment


class CloudflareIdle(_StateModel):
    status: Literal["idle"] = "idle"


class CloudflareRunning(_StateModel):
    status: Literal["running"] = "running"
    instance_id: Optional[str] = None


class CloudflareFailed(_StateModel):
    status: Literal["failed"] = "failed"
    error: str = ""
    instance_id: Optional[str] = None


class CloudflareComplete(_StateModel):
    status: Literal["complete"] = "complete"
    deployment_url: Optional[str] = None
    instance_id: Optional[str] = None
    workers_url: Optional[str] = None


CloudflareState = Annotated[
    Union[CloudflareIdle, CloudflareRunning, CloudflareFailed, CloudflareComplete],
    Field(discriminator="status"),
]


class SessionState(_StateModel):
    """
    Immutable snapshot of everything known about a session.

    Attributes:
        connection: Socket status as seen by the session
        conversation_state: Last conversation_state payload
        last_conversation_response: Last conversation_response message
        generation: Generation progress
        phase: Current phase (phasic agents)
        current_file: File being generated right now
        preview_url: Best-known preview URL
        preview: Preview deployment progress
        cloudflare: Cloudflare deployment progress
        last_error: Last server-reported error
    """

    connection: ConnectionStatus = "disconnected"
    conversation_state: Optional[Any] = None
    last_conversation_response: Optional[ServerMessage] = None
    generation: GenerationState = Field(default_factory=GenerationIdle)
    phase: PhaseState = Field(default_factory=PhaseIdle)
    current_file: Optional[str] = None
    preview_url: Optional[str] = None
    preview: PreviewState = Field(default_factory=PreviewIdle)
    cloudflare: CloudflareState = Field(default_factory=CloudflareIdle)
    last_error: Optional[str] = None


INITIAL_STATE = SessionState()


# Reducer


def _files_generated(generation: BaseModel) -> int:
    return getattr(generation, "files_generated", 0)


def _error_text(message: ServerMessage) -> str:
    error = getattr(message, "error", None)
    return str(error) if error is not None else ""


def _conversation_state(state: SessionState, message: ServerMessage) -> SessionState:
    return state.model_copy(update={"conversation_state": getattr(message, "state", None)})


def _conversation_response(state: SessionState, message: ServerMessage) -> SessionState:
    return state.model_copy(update={"last_conversation_response": message})


def _generation_started(state: SessionState, message: ServerMessage) -> SessionState:
    running = GenerationRunning(total_files=getattr(message, "total_files", None), files_generated=0)
    return state.model_copy(update={"generation": running, "current_file": None})


def _generation_complete(state: SessionState, message: ServerMessage) -> SessionState:
    preview_url = getattr(message, "preview_url", None)
    complete = GenerationComplete(
        instance_id=getattr(message, "instance_id", None),
        preview_url=preview_url,
        files_generated=_files_generated(state.generation),
    )
    update: dict[str, Any] = {"generation": complete, "current_file": None}
    if preview_url:
        update["preview_url"] = preview_url
    return state.model_copy(update=update)


def _generation_stopped(state: SessionState, message: ServerMessage) -> SessionState:
    stopped = GenerationStopped(
        instance_id=getattr(message, "instance_id", None),
        files_generated=_files_generated(state.generation),
    )
    return state.model_copy(update={"generation": stopped})


def _generation_resumed(state: SessionState, message: ServerMessage) -> SessionState:
    running = GenerationRunning(files_generated=_files_generated(state.generation))
    return state.model_copy(update={"generation": running})


def _file_generating(state: SessionState, message: ServerMessage) -> SessionState:
    return state.model_copy(update={"current_file": getattr(message, "file_path", None)})


def _file_generated(state: SessionState, message: ServerMessage) -> SessionState:
    generation = state.generation
    if not isinstance(generation, (GenerationRunning, GenerationStopped)):
        return state
    bumped = generation.model_copy(update={"files_generated": generation.files_generated + 1})
    return state.model_copy(update={"generation": bumped, "current_file": None})


def _phase(state: SessionState, message: ServerMessage) -> SessionState:
    info = getattr(message, "phase", None)
    phase = PhaseActive(
        status=message.type.removeprefix("phase_"),
        name=getattr(info, "name", None),
        description=getattr(info, "description", None),
    )
    return state.model_copy(update={"phase": phase})


def _deployment_started(state: SessionState, message: ServerMessage) -> SessionState:
    return state.model_copy(update={"preview": PreviewRunning()})


def _deployment_failed(state: SessionState, message: ServerMessage) -> SessionState:
    return state.model_copy(update={"preview": PreviewFailed(error=_error_text(message))})


def _deployment_completed(state: SessionState, message: ServerMessage) -> SessionState:
    preview_url = getattr(message, "preview_url", None)
    complete = PreviewComplete(
        preview_url=preview_url,
        tunnel_url=getattr(message, "tunnel_url", None),
        instance_id=getattr(message, "instance_id", None),
    )
    return state.model_copy(update={"preview": complete, "preview_url": preview_url})


def _cloudflare_started(state: SessionState, message: ServerMessage) -> SessionState:
    running = CloudflareRunning(instance_id=getattr(message, "instance_id", None))
    return state.model_copy(update={"cloudflare": running})


def _cloudflare_error(state: SessionState, message: ServerMessage) -> SessionState:
    failed = CloudflareFailed(
        error=_error_text(message),
        instance_id=getattr(message, "instance_id", None),
    )
    return state.model_copy(update={"cloudflare": failed})


def _cloudflare_completed(state: SessionState, message: ServerMessage) -> SessionState:
    complete = CloudflareComplete(
        deployment_url=getattr(message, "deployment_url", None),
        instance_id=getattr(message, "instance_id", None),
        workers_url=getattr(message, "workers_url", None),
    )
    return state.model_copy(update={"cloudflare": complete})


def _agent_connected(state: SessionState, message: ServerMessage) -> SessionState:
    preview_url = getattr(message, "preview_url", None)
    if not preview_url:
        return state
    return state.model_copy(update={"preview_url": preview_url})


def _error(state: SessionState, message: ServerMessage) -> SessionState:
    error = getattr(message, "error", None)
    return state.model_copy(update={"last_error": str(error) if error is not None else None})


Reducer = Callable[[SessionState, ServerMessage], SessionState]

REDUCERS: dict[str, Reducer] = {
    "conversation_state": _conversation_state,
    "conversation_response": _conversation_response,
    "generation_started": _generation_started,
    "generation_complete": _generation_complete,
    "generation_stopped": _generation_stopped,
    "generation_resumed": _generation_resumed,
    "file_generating": _file_generating,
    "file_generated": _file_generated,
    **{phase_type: _phase for phase_type in PHASE_EVENT_TYPES},
    "deployment_started": _deployment_started,
    "deployment_failed": _deployment_failed,
    "deployment_completed": _deployment_completed,
    "cloudflare_deployment_started": _cloudflare_started,
    "cloudflare_deployment_error": _cloudflare_error,
    "cloudflare_deployment_completed": _cloudflare_completed,
    "agent_connected": _agent_connected,
    "error": _error,
}


def reduce(state: SessionState, message: ServerMessage) -> SessionState:
    """
    Apply one server message to a session state.

    Pure: the input state is never modified. Unknown message types return
    the very same state object.

    Args:
        state: Current snapshot
        message: Typed server message

    Returns:
        Next snapshot
    """
    handler = REDUCERS.get(message.type)
    if handler is None:
        return state
    return handler(state, message)


# Store


class StateChange(NamedTuple):
    next: SessionState
    prev: SessionState


class SessionStateStore:
    """
    Holds the current SessionState and publishes changes.

    Every replacement of the snapshot emits a "change" event carrying both
    the next and the previous snapshot.
    """

    CHANGE_EVENT = "change"

    def __init__(self):
        self._state = INITIAL_STATE
        self._events = EventBus(name="session-state")
        self._lock = threading.RLock()

    def get(self) -> SessionState:
        """Current snapshot."""
        with self._lock:
            return self._state

    def set_connection(self, status: ConnectionStatus) -> None:
        with self._lock:
            if self._state.connection == status:
                return
            self._replace(self._state.model_copy(update={"connection": status}))

    def apply(self, message: ServerMessage) -> None:
        """Reduce message into the current snapshot."""
        with self._lock:
            self._replace(reduce(self._state, message))

    def on_change(self, callback: Callable[[SessionState, SessionState], None]) -> Unsubscribe:
        """
        Subscribe to snapshot changes.

        Args:
            callback: Function(next, prev) -> None

        Returns:
            Idempotent unsubscribe function
        """
        return self._events.on(self.CHANGE_EVENT, lambda change: callback(change.next, change.prev))

    def clear(self) -> None:
        """Reset to the initial snapshot and drop every subscriber."""
        with self._lock:
            self._state = INITIAL_STATE
        self._events.clear()

    def _replace(self, next_state: SessionState) -> None:
        prev = self._state
        if next_state is prev:
            return
        self._state = next_state
        self._events.emit(self.CHANGE_EVENT, StateChange(next=next_state, prev=prev))
