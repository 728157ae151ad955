"""
Pydantic models for the agent WebSocket protocol.

Server messages are an open-ended tagged union keyed by ``type``. Known
variants get a dedicated model; anything else is kept as a plain
ServerMessage with every wire field preserved, so newer servers never break
older clients. Wire names are camelCase and exposed as snake_case attributes.

Incoming frames are normalized in two stages: parse_payload() decodes JSON,
classify() turns the decoded value into a typed message or an Unclassified
marker by trying a fixed, ordered list of shape predicates.
"""

import json
from collections.abc import Mapping
from typing import Any, Callable, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agentwire.errors import MessageParseError
from agentwire.logging_config import get_logger

logger = get_logger(__name__)

Credentials = dict[str, Any]  # e.g. {"providers": {"openai": {"apiKey": "..."}}}

BehaviorType = str  # "phasic" | "agentic" today, open-ended on the wire

PhaseEventType = Literal[
    "phase_generating",
    "phase_generated",
    "phase_implementing",
    "phase_implemented",
    "phase_validating",
    "phase_validated",
]

PHASE_EVENT_TYPES: tuple[str, ...] = (
    "phase_generating",
    "phase_generated",
    "phase_implementing",
    "phase_implemented",
    "phase_validating",
    "phase_validated",
)

# Synthesized for payloads that carry agent state without a type envelope
AGENT_STATE_TYPE = "cf_agent_state"


class WireModel(BaseModel):
    """Base for wire models: lenient, immutable, alias-aware."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True, coerce_numbers_to_str=True)

    def to_dict(self) -> dict[str, Any]:
        """Dump using wire names, keeping only fields present on the wire."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


# Server -> client


class ServerMessage(WireModel):
    """Any server message. Unknown types are represented by this class."""

    type: str


class AgentConnectedMessage(ServerMessage):
    type: Literal["agent_connected"] = "agent_connected"
    state: Optional[dict[str, Any]] = None
    preview_url: Optional[str] = Field(None, alias="previewUrl")
    template_details: Optional[dict[str, Any]] = Field(None, alias="templateDetails")


class AgentStateMessage(ServerMessage):
    """Full agent state snapshot (explicit or synthesized by classify())."""

    type: Literal["cf_agent_state"] = "cf_agent_state"
    state: dict[str, Any]


class ConversationResponseMessage(ServerMessage):
    type: Literal["conversation_response"] = "conversation_response"
    message: Optional[str] = None
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    is_streaming: Optional[bool] = Field(None, alias="isStreaming")


class ConversationStateMessage(ServerMessage):
    type: Literal["conversation_state"] = "conversation_state"
    state: Optional[Any] = None


class PhaseInfo(WireModel):
    name: Optional[str] = None
    description: Optional[str] = None
    files: Optional[list[Any]] = None


class PhaseMessage(ServerMessage):
    """One of the six phase_* transitions."""

    type: PhaseEventType
    message: Optional[str] = None
    phase: Optional[PhaseInfo] = None


class FileOutput(WireModel):
    file_path: Optional[str] = Field(None, alias="filePath")
    file_contents: Optional[str] = Field(None, alias="fileContents")
    file_purpose: Optional[str] = Field(None, alias="filePurpose")


class FileGeneratingMessage(ServerMessage):
    type: Literal["file_generating", "file_regenerating"]
    file_path: Optional[str] = Field(None, alias="filePath")
    file_purpose: Optional[str] = Field(None, alias="filePurpose")


class FileGeneratedMessage(ServerMessage):
    """
    A finished file. Servers send it nested under ``file``; a flat
    ``filePath`` / ``fileContents`` pair is accepted as well.
    """

    type: Literal["file_generated", "file_regenerated"]
    file: Optional[FileOutput] = None
    file_path: Optional[str] = Field(None, alias="filePath")
    file_contents: Optional[str] = Field(None, alias="fileContents")

    @property
    def path(self) -> Optional[str]:
        if self.file is not None and self.file.file_path:
            return self.file.file_path
        return self.file_path

    @property
    def contents(self) -> Optional[str]:
        if self.file is not None and self.file.file_contents is not None:
            return self.file.file_contents
        return self.file_contents


class FileChunkMessage(ServerMessage):
    type: Literal["file_chunk_generated"] = "file_chunk_generated"
    file_path: Optional[str] = Field(None, alias="filePath")
    chunk: str = ""


class GenerationStartedMessage(ServerMessage):
    type: Literal["generation_started"] = "generation_started"
    message: Optional[str] = None
    total_files: Optional[int] = Field(None, alias="totalFiles")


class GenerationCompleteMessage(ServerMessage):
    type: Literal["generation_complete"] = "generation_complete"
    message: Optional[str] = None
    instance_id: Optional[str] = Field(None, alias="instanceId")
    preview_url: Optional[str] = Field(None, alias="previewURL")


class GenerationStoppedMessage(ServerMessage):
    type: Literal["generation_stopped"] = "generation_stopped"
    message: Optional[str] = None
    instance_id: Optional[str] = Field(None, alias="instanceId")


class GenerationResumedMessage(ServerMessage):
    type: Literal["generation_resumed"] = "generation_resumed"
    message: Optional[str] = None


class DeploymentStartedMessage(ServerMessage):
    type: Literal["deployment_started"] = "deployment_started"
    message: Optional[str] = None


class DeploymentCompletedMessage(ServerMessage):
    type: Literal["deployment_completed"] = "deployment_completed"
    message: Optional[str] = None
    preview_url: Optional[str] = Field(None, alias="previewURL")
    tunnel_url: Optional[str] = Field(None, alias="tunnelURL")
    instance_id: Optional[str] = Field(None, alias="instanceId")


class DeploymentFailedMessage(ServerMessage):
    type: Literal["deployment_failed"] = "deployment_failed"
    message: Optional[str] = None
    error: Optional[str] = None


class CloudflareDeploymentStartedMessage(ServerMessage):
    type: Literal["cloudflare_deployment_started"] = "cloudflare_deployment_started"
    message: Optional[str] = None
    instance_id: Optional[str] = Field(None, alias="instanceId")


class CloudflareDeploymentCompletedMessage(ServerMessage):
    type: Literal["cloudflare_deployment_completed"] = "cloudflare_deployment_completed"
    message: Optional[str] = None
    instance_id: Optional[str] = Field(None, alias="instanceId")
    deployment_url: Optional[str] = Field(None, alias="deploymentUrl")
    workers_url: Optional[str] = Field(None, alias="workersUrl")


class CloudflareDeploymentErrorMessage(ServerMessage):
    type: Literal["cloudflare_deployment_error"] = "cloudflare_deployment_error"
    message: Optional[str] = None
    instance_id: Optional[str] = Field(None, alias="instanceId")
    error: Optional[str] = None


class ErrorMessage(ServerMessage):
    type: Literal["error"] = "error"
    error: Optional[Any] = None


SERVER_MESSAGE_TYPES: dict[str, type[ServerMessage]] = {
    "agent_connected": AgentConnectedMessage,
    AGENT_STATE_TYPE: AgentStateMessage,
    "conversation_response": ConversationResponseMessage,
    "conversation_state": ConversationStateMessage,
    **{phase_type: PhaseMessage for phase_type in PHASE_EVENT_TYPES},
    "file_generating": FileGeneratingMessage,
    "file_regenerating": FileGeneratingMessage,
    "file_generated": FileGeneratedMessage,
    "file_regenerated": FileGeneratedMessage,
    "file_chunk_generated": FileChunkMessage,
    "generation_started": GenerationStartedMessage,
    "generation_complete": GenerationCompleteMessage,
    "generation_stopped": GenerationStoppedMessage,
    "generation_resumed": GenerationResumedMessage,
    "deployment_started": DeploymentStartedMessage,
    "deployment_completed": DeploymentCompletedMessage,
    "deployment_failed": DeploymentFailedMessage,
    "cloudflare_deployment_started": CloudflareDeploymentStartedMessage,
    "cloudflare_deployment_completed": CloudflareDeploymentCompletedMessage,
    "cloudflare_deployment_error": CloudflareDeploymentErrorMessage,
    "error": ErrorMessage,
}


# Client -> server


class ClientMessage(BaseModel):
    """Command sent to the agent."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: str

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class SessionInitMessage(ClientMessage):
    type: Literal["session_init"] = "session_init"
    credentials: Credentials


class GenerateAllMessage(ClientMessage):
    type: Literal["generate_all"] = "generate_all"


class StopGenerationMessage(ClientMessage):
    type: Literal["stop_generation"] = "stop_generation"


class ResumeGenerationMessage(ClientMessage):
    type: Literal["resume_generation"] = "resume_generation"


class PreviewMessage(ClientMessage):
    type: Literal["preview"] = "preview"


class DeployMessage(ClientMessage):
    type: Literal["deploy"] = "deploy"


class GetConversationStateMessage(ClientMessage):
    type: Literal["get_conversation_state"] = "get_conversation_state"


class ClearConversationMessage(ClientMessage):
    type: Literal["clear_conversation"] = "clear_conversation"


class UserSuggestionMessage(ClientMessage):
    type: Literal["user_suggestion"] = "user_suggestion"
    message: str
    images: Optional[list[Any]] = None


def serialize_client_message(message: Union[ClientMessage, Mapping[str, Any]]) -> str:
    """Serialize a client command to its JSON wire form."""
    if isinstance(message, ClientMessage):
        return message.to_json()
    return json.dumps(dict(message), separators=(",", ":"))


# HTTP descriptors


class BuildStartEvent(WireModel):
    """First object of the agent creation stream; also built by connect()."""

    message: Optional[str] = None
    agent_id: str = Field(alias="agentId")
    websocket_url: str = Field(alias="websocketUrl")
    http_status_url: Optional[str] = Field(None, alias="httpStatusUrl")
    behavior_type: Optional[BehaviorType] = Field(None, alias="behaviorType")
    project_type: Optional[str] = Field(None, alias="projectType")
    template: Optional[dict[str, Any]] = None


# Normalization


class Unclassified(NamedTuple):
    """A decoded payload that matched no known shape."""

    raw: Any


def parse_payload(data: Union[str, bytes, bytearray]) -> Any:
    """
    Decode a socket frame.

    Raises:
        MessageParseError: If the frame is not valid UTF-8 JSON
    """
    try:
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        return json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError, TypeError) as e:
        raise MessageParseError(f"Invalid JSON frame: {e}") from e


def looks_like_agent_state(value: Any) -> bool:
    """Agent state carries both a string behaviorType and a string projectType."""
    return (
        isinstance(value, Mapping)
        and isinstance(value.get("behaviorType"), str)
        and isinstance(value.get("projectType"), str)
    )


def _looks_like_embedded_json(type_value: str) -> bool:
    trimmed = type_value.strip()
    return trimmed.startswith("{") and trimmed.endswith("}")


def build_server_message(raw: Mapping[str, Any]) -> ServerMessage:
    """
    Validate a typed payload into its model.

    Fields of an unexpected type are dropped and the rest of the message
    stays typed. Only when what remains still does not fit (a required field
    was the bad one) does it fall back to a plain ServerMessage; shape checks
    never reject a message outright.
    """
    model = SERVER_MESSAGE_TYPES.get(raw["type"], ServerMessage)
    data = dict(raw)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        if model is ServerMessage:
            raise
        invalid = {error["loc"][0] for error in e.errors() if error["loc"]}

    logger.debug(f"Message '{raw['type']}' has unexpected field(s) {sorted(map(str, invalid))}, dropping them")
    try:
        return model.model_validate({key: value for key, value in data.items() if key not in invalid})
    except ValidationError as e:
        logger.debug(f"Message '{raw['type']}' did not match {model.__name__}, keeping it untyped: {e}")
        return ServerMessage.model_validate(data)


# Each shape returns a message, an Unclassified marker, or None (no match)
ShapeMatcher = Callable[[Mapping[str, Any], bool], Union[ServerMessage, Unclassified, None]]


def _typed_envelope(raw: Mapping[str, Any], allow_unwrap: bool) -> Union[ServerMessage, Unclassified, None]:
    type_value = raw.get("type")
    if not isinstance(type_value, str):
        return None

    # Some servers double-encode the whole message into the type field
    if allow_unwrap and _looks_like_embedded_json(type_value):
        try:
            inner = json.loads(type_value.strip())
        except json.JSONDecodeError:
            pass
        else:
            result = classify(inner, allow_unwrap=False)
            if isinstance(result, Unclassified):
                return Unclassified(inner)
            return result

    return build_server_message(raw)


def _nested_agent_state(raw: Mapping[str, Any], allow_unwrap: bool) -> Optional[ServerMessage]:
    state = raw.get("state")
    if looks_like_agent_state(state):
        return AgentStateMessage(type=AGENT_STATE_TYPE, state=dict(state))
    return None


def _bare_agent_state(raw: Mapping[str, Any], allow_unwrap: bool) -> Optional[ServerMessage]:
    if looks_like_agent_state(raw):
        return AgentStateMessage(type=AGENT_STATE_TYPE, state=dict(raw))
    return None


SHAPES: tuple[ShapeMatcher, ...] = (
    _typed_envelope,
    _nested_agent_state,
    _bare_agent_state,
)


def classify(raw: Any, allow_unwrap: bool = True) -> Union[ServerMessage, Unclassified]:
    """
    Turn a decoded payload into a typed server message.

    Shapes are tried in order: a string ``type`` envelope (with one level of
    unwrapping for a JSON object embedded in ``type``), agent state nested
    under ``state``, then a bare agent state object.

    Args:
        raw: Decoded JSON value
        allow_unwrap: Whether an embedded JSON ``type`` may be decoded

    Returns:
        ServerMessage, or Unclassified carrying the value to publish as raw
    """
    if not isinstance(raw, Mapping):
        return Unclassified(raw)

    for shape in SHAPES:
        result = shape(raw, allow_unwrap)
        if result is not None:
            return result

    return Unclassified(raw)
