from typing import Any, Dict, List, Optional, Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


# Inbound messages (robot/driver -> server)


class RobotAliveMessage(BaseModel):
    """Robot announces the identity it serves; binds the connection to that robot."""

    type: Literal["robot-alive"] = "robot-alive"
    robot_id: str = Field(..., min_length=1, description="Hashed robot identity.")


class JoinRobotMessage(BaseModel):
    """Driver joins the session of a robot (starts the WebRTC offer/answer exchange)."""

    type: Literal["join-robot"] = "join-robot"
    robot_id: str = Field(..., min_length=1, description="Robot identity to join.")
    driver_id: Optional[str] = Field(
        default=None, description="Driver identifier; defaults to the token subject."
    )


class ControlMessage(BaseModel):
    type: Literal["control-msg"] = "control-msg"
    robot_id: str = Field(..., min_length=1, description="Target robot identity.")
    content: Any = Field(default=None, description="Opaque control payload.")


class ClickToDriveMessage(BaseModel):
    """Normalized click on the robot's video feed. is_commit=False is a hover preview."""

    type: Literal["click-to-drive"] = "click-to-drive"
    robot_id: str = Field(..., min_length=1, description="Target robot identity.")
    x: float = Field(..., ge=0.0, le=1.0, description="Horizontal position in [0, 1].")
    y: float = Field(..., ge=0.0, le=1.0, description="Vertical position in [0, 1].")
    is_commit: bool = Field(default=False, description="True for a committed click.")


class HealthMessage(BaseModel):
    type: Literal["health-msg"] = "health-msg"
    robot_id: str = Field(..., min_length=1, description="Robot identity the status refers to.")
    health_type: str = Field(..., description="Status kind, e.g. 'battery' or 'highlight-cursor'.")
    status: Any = Field(default=None, description="Status value.")


class TriggerActionMessage(BaseModel):
    """Smart-action trigger emitted by the AR overlay."""

    type: Literal["ifttt-event"] = "ifttt-event"
    action_id: Optional[str] = Field(default=None, description="Smart action uuid.")
    url: Optional[str] = Field(
        default=None, description="Webhook url; must match a configured smart action."
    )
    robot_id: Optional[str] = Field(default=None, description="Robot the driver is operating.")

    @model_validator(mode="after")
    def require_action_or_url(self):
        if not self.action_id and not self.url:
            raise ValueError("either action_id or url is required")
        return self


class ChatMessage(BaseModel):
    type: Literal["chat-msg"] = "chat-msg"
    chat_id: str = Field(..., min_length=1, description="Directory chat identifier.")
    text: str = Field(
        default="Hi, I'm outside your office using a telepresence robot. Could we have a chat?",
        description="Message body.",
    )
    robot_id: Optional[str] = None


class OfficeCardRequest(BaseModel):
    type: Literal["get-office-card"] = "get-office-card"
    robot_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1, description="Directory user id of the occupant.")


class SignalMessage(BaseModel):
    """WebRTC offer/answer/ICE payload routed inside a session."""

    type: Literal["webrtc-signal"] = "webrtc-signal"
    robot_id: str = Field(..., min_length=1)
    to: Optional[str] = Field(
        default=None, description="Recipient connection id; whole session when omitted."
    )
    data: Dict[str, Any] = Field(default_factory=dict)


INBOUND_MESSAGES = {
    "robot-alive": RobotAliveMessage,
    "join-robot": JoinRobotMessage,
    "control-msg": ControlMessage,
    "click-to-drive": ClickToDriveMessage,
    "health-msg": HealthMessage,
    "ifttt-event": TriggerActionMessage,
    "chat-msg": ChatMessage,
    "get-office-card": OfficeCardRequest,
    "webrtc-signal": SignalMessage,
}


# Outbound events (server -> connections)


class RelayEnvelope(BaseModel):
    target: Optional[str] = Field(default=None, description="Robot identity the message is for.")
    origin: str = Field(..., description="Connection id of the sender.")
    seq: int = Field(..., description="Monotonic arrival order assigned by the relay.")


class RelayedControl(RelayEnvelope):
    type: Literal["control-msg"] = "control-msg"
    content: Any = None


class RelayedClick(RelayEnvelope):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["click-to-drive"] = "click-to-drive"
    x_coord: float = Field(..., alias="xCoord")
    y_coord: float = Field(..., alias="yCoord")
    attempt: bool = Field(..., description="True for a committed click, False for hover.")


class RelayedHealth(RelayEnvelope):
    type: Literal["health-msg"] = "health-msg"
    health_type: str
    status: Any = None


class RelayedSignal(RelayEnvelope):
    type: Literal["webrtc-signal"] = "webrtc-signal"
    to: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class PeerEvent(BaseModel):
    type: Literal["peer-joined", "peer-left"]
    target: str
    connection_id: str
    peer_id: Optional[str] = Field(default=None, description="Driver id or robot identity.")
    role: Literal["driver", "robot"]


class JoinedEvent(BaseModel):
    """Acknowledgement sent to the connection that just joined a session."""

    type: Literal["joined"] = "joined"
    target: str
    connection_id: str
    role: Literal["driver", "robot"]
    state: Literal["waiting", "active", "robot-offline"]
    controller: Optional[str] = None
    members: List[str] = Field(default_factory=list)
    health: Dict[str, Any] = Field(default_factory=dict)


class ControlGrantedEvent(BaseModel):
    type: Literal["control-granted"] = "control-granted"
    target: str
    connection_id: Optional[str] = Field(default=None, description="New controller, None if no driver left.")


class RobotPresenceEvent(BaseModel):
    type: Literal["robot-connected", "robot-disconnected"]
    target: Optional[str] = None


class OfficeCardEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["office-card"] = "office-card"
    robot_id: str = Field(..., alias="robotId")
    user_id: str = Field(..., alias="userId")
    display_name: str = Field(..., alias="displayName")
    presence_label: str = Field(..., alias="presenceLabel")
    presence_color: str = Field(..., alias="presenceColor")
    icon_ref: str = Field(..., alias="iconRef")
    photo_ref: Optional[str] = Field(default=None, alias="photoRef")


class ActionResultEvent(BaseModel):
    type: Literal["action-result"] = "action-result"
    action_id: Optional[str] = None
    ok: bool
    attempts: int
    status_code: Optional[int] = None
    error: Optional[str] = None


OUTBOUND_MESSAGES = {
    "joined": JoinedEvent,
    "peer-joined": PeerEvent,
    "peer-left": PeerEvent,
    "control-granted": ControlGrantedEvent,
    "control-msg": RelayedControl,
    "click-to-drive": RelayedClick,
    "health-msg": RelayedHealth,
    "webrtc-signal": RelayedSignal,
    "robot-connected": RobotPresenceEvent,
    "robot-disconnected": RobotPresenceEvent,
    "office-card": OfficeCardEvent,
    "action-result": ActionResultEvent,
}


# REST payloads


class RobotCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    location: Optional[str] = None


class SmartActionCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    webhook: str = Field(..., min_length=1, description="GET url fired when the action triggers.")

    @field_validator("webhook")
    @classmethod
    def webhook_must_be_http(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError("webhook must be an absolute http(s) url")
        return value


class SchemaDocument(BaseModel):
    """Documentation payload served at /docs for quick reference."""

    websocket_endpoints: Dict[str, str]
    inbound_messages: Dict[str, Dict[str, Any]]
    outbound_messages: Dict[str, Dict[str, Any]]
    examples: Dict[str, Any] = Field(default_factory=dict)
    notes: List[str] = []
