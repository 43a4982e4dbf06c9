import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """A live transport connection and the identities bound to it."""

    connection_id: str
    role: str
    robot_id: Optional[str] = None
    driver_id: Optional[str] = None
    connected_at: float = field(default_factory=time.time)


RemovalListener = Callable[[Connection], None]


class ConnectionRegistry:
    """Maps connection ids to robot/driver identities for the process lifetime.

    The registry is the source of truth for which connections exist. Listeners
    added with ``add_removal_listener`` run synchronously inside ``unregister``,
    so anything keyed by connection id is cleaned up before the call returns.
    """

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._removal_listeners: List[RemovalListener] = []
        self._robot_lost_listeners: List[Callable[[str], None]] = []

    def add_removal_listener(self, listener: RemovalListener) -> None:
        self._removal_listeners.append(listener)

    def add_robot_lost_listener(self, listener: Callable[[str], None]) -> None:
        self._robot_lost_listeners.append(listener)

    def connect(self, connection_id: str, role: str) -> Connection:
        connection = self._connections.get(connection_id)
        if connection is None:
            connection = Connection(connection_id=connection_id, role=role)
            self._connections[connection_id] = connection
        return connection

    def register(self, connection_id: str, robot_id: str) -> Connection:
        # A robot may announce itself before any other event from that connection.
        connection = self.connect(connection_id, role="robot")
        if connection.robot_id and connection.robot_id != robot_id:
            logger.info(
                "Connection %s rebinding robot %s -> %s", connection_id, connection.robot_id, robot_id
            )
        connection.robot_id = robot_id
        return connection

    def bind_driver(self, connection_id: str, driver_id: Optional[str]) -> Connection:
        connection = self.connect(connection_id, role="driver")
        connection.driver_id = driver_id
        return connection

    def unregister(self, connection_id: str) -> Optional[str]:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None
        for listener in self._removal_listeners:
            listener(connection)
        # another live connection bound to the same robot keeps it active
        if connection.robot_id is not None and connection.robot_id not in self.list_active_robots():
            for listener in self._robot_lost_listeners:
                listener(connection.robot_id)
        return connection.robot_id

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def list_active_robots(self) -> Set[str]:
        return {c.robot_id for c in self._connections.values() if c.robot_id is not None}
