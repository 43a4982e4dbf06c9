"""Pydantic models for the relay's WebSocket and REST message schemas."""

from .messages import (
    INBOUND_MESSAGES,
    OUTBOUND_MESSAGES,
    ActionResultEvent,
    ChatMessage,
    ClickToDriveMessage,
    ControlGrantedEvent,
    ControlMessage,
    HealthMessage,
    JoinedEvent,
    JoinRobotMessage,
    OfficeCardEvent,
    OfficeCardRequest,
    PeerEvent,
    RelayedClick,
    RelayedControl,
    RelayedHealth,
    RelayedSignal,
    RelayEnvelope,
    RobotAliveMessage,
    RobotCreateRequest,
    RobotPresenceEvent,
    SchemaDocument,
    SignalMessage,
    SmartActionCreateRequest,
    TriggerActionMessage,
)

__all__ = [
    "INBOUND_MESSAGES",
    "OUTBOUND_MESSAGES",
    "ActionResultEvent",
    "ChatMessage",
    "ClickToDriveMessage",
    "ControlGrantedEvent",
    "ControlMessage",
    "HealthMessage",
    "JoinedEvent",
    "JoinRobotMessage",
    "OfficeCardEvent",
    "OfficeCardRequest",
    "PeerEvent",
    "RelayedClick",
    "RelayedControl",
    "RelayedHealth",
    "RelayedSignal",
    "RelayEnvelope",
    "RobotAliveMessage",
    "RobotCreateRequest",
    "RobotPresenceEvent",
    "SchemaDocument",
    "SignalMessage",
    "SmartActionCreateRequest",
    "TriggerActionMessage",
]
