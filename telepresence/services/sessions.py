import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from telepresence.models import ControlGrantedEvent, JoinedEvent, PeerEvent
from telepresence.services.registry import Connection, ConnectionRegistry
from telepresence.services.relay import MessageRelay

logger = logging.getLogger(__name__)

ROLE_DRIVER = "driver"
ROLE_ROBOT = "robot"

STATE_WAITING = "waiting"
STATE_ACTIVE = "active"
STATE_ROBOT_OFFLINE = "robot-offline"

# Message kinds each kind of session member may send.
ROBOT_KINDS = frozenset({"control-msg", "health-msg", "webrtc-signal"})
CONTROLLER_KINDS = frozenset(
    {"control-msg", "click-to-drive", "ifttt-event", "webrtc-signal", "get-office-card", "chat-msg"}
)
OBSERVER_KINDS = frozenset({"webrtc-signal", "get-office-card", "chat-msg"})


@dataclass
class SessionMember:
    connection_id: str
    role: str
    peer_id: Optional[str] = None


@dataclass
class RobotSession:
    robot_id: str
    members: Dict[str, SessionMember] = field(default_factory=dict)
    robot_connection_id: Optional[str] = None
    controller_id: Optional[str] = None
    last_health: Dict[str, Any] = field(default_factory=dict)
    robot_seen: bool = False

    @property
    def state(self) -> str:
        if self.robot_connection_id is not None:
            return STATE_ACTIVE
        if self.robot_seen:
            return STATE_ROBOT_OFFLINE
        return STATE_WAITING

    def drivers(self) -> List[str]:
        # dicts keep insertion order, which is join order
        return [cid for cid, member in self.members.items() if member.role == ROLE_DRIVER]

    def robots(self) -> List[str]:
        return [cid for cid, member in self.members.items() if member.role == ROLE_ROBOT]


class SessionManager:
    """Groups connections into one session per robot identity.

    Membership changes are announced on the robot's relay topic. The manager
    listens for registry removals so a disconnected connection leaves its
    session before ``ConnectionRegistry.unregister`` returns.
    """

    def __init__(self, registry: ConnectionRegistry, relay: MessageRelay):
        self.registry = registry
        self.relay = relay
        self._sessions: Dict[str, RobotSession] = {}
        self._membership: Dict[str, str] = {}
        registry.add_removal_listener(self._on_connection_removed)

    def get(self, robot_id: str) -> Optional[RobotSession]:
        return self._sessions.get(robot_id)

    def session_of(self, connection_id: str) -> Optional[RobotSession]:
        robot_id = self._membership.get(connection_id)
        if robot_id is None:
            return None
        return self._sessions.get(robot_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def join(self, connection_id: str, robot_id: str, role: str) -> RobotSession:
        if role not in (ROLE_DRIVER, ROLE_ROBOT):
            raise ValueError(f"unknown role {role!r}")
        connection = self.registry.get(connection_id)
        if connection is None:
            raise KeyError(f"connection {connection_id} is not registered")

        current = self._membership.get(connection_id)
        if current == robot_id and self._sessions[robot_id].members[connection_id].role == role:
            session = self._sessions[robot_id]
            self.relay.send_to(connection_id, self._joined_event(session, connection_id))
            return session
        if current is not None:
            self.leave(connection_id)

        session = self._sessions.get(robot_id)
        if session is None:
            session = RobotSession(robot_id=robot_id)
            self._sessions[robot_id] = session

        peer_id = connection.driver_id if role == ROLE_DRIVER else robot_id
        self.relay.publish(
            robot_id,
            PeerEvent(type="peer-joined", target=robot_id, connection_id=connection_id, peer_id=peer_id, role=role),
        )

        session.members[connection_id] = SessionMember(connection_id=connection_id, role=role, peer_id=peer_id)
        self._membership[connection_id] = robot_id
        self.relay.subscribe(robot_id, connection_id)

        if role == ROLE_ROBOT:
            session.robot_connection_id = connection_id
            session.robot_seen = True
        elif session.controller_id is None:
            session.controller_id = connection_id
            self.relay.publish(
                robot_id, ControlGrantedEvent(target=robot_id, connection_id=connection_id), exclude=connection_id
            )

        self.relay.send_to(connection_id, self._joined_event(session, connection_id))
        logger.info("%s %s joined session %s (%d members)", role, connection_id, robot_id, len(session.members))
        return session

    def leave(self, connection_id: str) -> Optional[str]:
        robot_id = self._membership.pop(connection_id, None)
        if robot_id is None:
            return None
        session = self._sessions[robot_id]
        member = session.members.pop(connection_id)
        self.relay.unsubscribe(robot_id, connection_id)

        if session.robot_connection_id == connection_id:
            # a reconnected robot may already hold a newer connection
            robots = session.robots()
            session.robot_connection_id = robots[-1] if robots else None

        self.relay.publish(
            robot_id,
            PeerEvent(
                type="peer-left",
                target=robot_id,
                connection_id=connection_id,
                peer_id=member.peer_id,
                role=member.role,
            ),
        )

        if session.controller_id == connection_id:
            drivers = session.drivers()
            session.controller_id = drivers[0] if drivers else None
            if session.controller_id is not None:
                self.relay.publish(robot_id, ControlGrantedEvent(target=robot_id, connection_id=session.controller_id))

        if not session.members:
            del self._sessions[robot_id]
            logger.info("Session %s closed", robot_id)
        else:
            logger.info("%s %s left session %s", member.role, connection_id, robot_id)
        return robot_id

    def permits(self, connection_id: str, robot_id: str, kind: str) -> bool:
        session = self._sessions.get(robot_id)
        if session is None:
            return False
        member = session.members.get(connection_id)
        if member is None:
            return False
        if member.role == ROLE_ROBOT:
            return kind in ROBOT_KINDS
        if session.controller_id == connection_id:
            return kind in CONTROLLER_KINDS
        return kind in OBSERVER_KINDS

    def record_health(self, robot_id: str, health_type: str, status: Any) -> None:
        session = self._sessions.get(robot_id)
        if session is not None:
            session.last_health[health_type] = status

    def _joined_event(self, session: RobotSession, connection_id: str) -> JoinedEvent:
        return JoinedEvent(
            target=session.robot_id,
            connection_id=connection_id,
            role=session.members[connection_id].role,
            state=session.state,
            controller=session.controller_id,
            members=list(session.members),
            health=dict(session.last_health),
        )

    def _on_connection_removed(self, connection: Connection) -> None:
        self.leave(connection.connection_id)
