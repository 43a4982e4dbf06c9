from .coordinator import RelayCoordinator, parse_inbound
from .directory import DirectoryService, PresenceCard, PresenceStatus, classify_presence
from .dispatch import ActionDispatcher, DispatchResult
from .jwt_service import JWTAuthService
from .registry import Connection, ConnectionRegistry
from .relay import MessageRelay
from .sessions import RobotSession, SessionManager

__all__ = [
    "ActionDispatcher",
    "Connection",
    "ConnectionRegistry",
    "DirectoryService",
    "DispatchResult",
    "JWTAuthService",
    "MessageRelay",
    "PresenceCard",
    "PresenceStatus",
    "RelayCoordinator",
    "RobotSession",
    "SessionManager",
    "classify_presence",
    "parse_inbound",
]
