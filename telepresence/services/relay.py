import itertools
import logging
import os
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from pydantic import BaseModel

from telepresence.models import (
    ClickToDriveMessage,
    ControlMessage,
    HealthMessage,
    RelayedClick,
    RelayedControl,
    RelayedHealth,
    RelayedSignal,
    RelayEnvelope,
    SignalMessage,
)

logger = logging.getLogger(__name__)

Sink = Callable[[str], None]
RelayableMessage = Union[ControlMessage, ClickToDriveMessage, HealthMessage, SignalMessage]

SCOPE_SESSION = "session"
SCOPE_BROADCAST = "broadcast"


def encode(event: BaseModel) -> str:
    return event.model_dump_json(by_alias=True)


class MessageRelay:
    """Fan-out of relay events over per-robot topics.

    Every connection attaches a sink (a callable taking the encoded JSON text).
    Session members subscribe to the topic named by the robot identity; relayed
    control, click, health and signal messages go only to that topic unless the
    relay runs in ``broadcast`` scope, where every attached sink receives them and
    consumers filter on ``target``.

    Delivery is synchronous: a single call hands the encoded event to every
    recipient before returning, so messages from one origin leave in the order
    they were submitted.
    """

    def __init__(self, scope: Optional[str] = None):
        self.scope = scope or os.getenv("RELAY_SCOPE", SCOPE_SESSION)
        if self.scope not in (SCOPE_SESSION, SCOPE_BROADCAST):
            raise RuntimeError(f"RELAY_SCOPE must be '{SCOPE_SESSION}' or '{SCOPE_BROADCAST}'")
        self._sinks: Dict[str, Sink] = {}
        self._topics: Dict[str, Set[str]] = {}
        self._seq = itertools.count(1)

    # Sinks

    def attach(self, connection_id: str, sink: Sink) -> None:
        self._sinks[connection_id] = sink

    def detach(self, connection_id: str) -> None:
        self._sinks.pop(connection_id, None)
        for robot_id in list(self._topics):
            self.unsubscribe(robot_id, connection_id)

    def is_attached(self, connection_id: str) -> bool:
        return connection_id in self._sinks

    # Topics

    def subscribe(self, robot_id: str, connection_id: str) -> None:
        self._topics.setdefault(robot_id, set()).add(connection_id)

    def unsubscribe(self, robot_id: str, connection_id: str) -> None:
        members = self._topics.get(robot_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._topics[robot_id]

    def subscribers(self, robot_id: str) -> Set[str]:
        return set(self._topics.get(robot_id, ()))

    # Delivery

    def send_to(self, connection_id: str, event: BaseModel) -> bool:
        sink = self._sinks.get(connection_id)
        if sink is None:
            return False
        sink(encode(event))
        return True

    def _deliver(self, recipients: Iterable[str], event: BaseModel, exclude: Optional[str]) -> int:
        message = encode(event)
        delivered = 0
        for connection_id in sorted(recipients):
            if connection_id == exclude:
                continue
            sink = self._sinks.get(connection_id)
            if sink is None:
                continue
            sink(message)
            delivered += 1
        return delivered

    def publish(self, robot_id: str, event: BaseModel, exclude: Optional[str] = None) -> int:
        """Deliver to the members of one robot's topic."""
        return self._deliver(self.subscribers(robot_id), event, exclude)

    def broadcast(self, event: BaseModel, exclude: Optional[str] = None) -> int:
        """Deliver to every attached connection."""
        return self._deliver(list(self._sinks), event, exclude)

    def relay(self, origin: str, message: RelayableMessage) -> RelayEnvelope:
        envelope = self.envelope(origin, message)
        if self.scope == SCOPE_BROADCAST:
            recipients: List[str] = list(self._sinks)
        else:
            recipients = list(self.subscribers(message.robot_id))

        if isinstance(envelope, RelayedSignal) and envelope.to is not None:
            recipients = [envelope.to] if envelope.to in recipients else []

        delivered = self._deliver(recipients, envelope, exclude=origin)
        if delivered == 0:
            logger.debug("No recipients for %s targeting %s", envelope.type, envelope.target)
        else:
            logger.debug(
                "Relayed %s #%d from %s to %d connection(s)", envelope.type, envelope.seq, origin, delivered
            )
        return envelope

    def envelope(self, origin: str, message: RelayableMessage) -> RelayEnvelope:
        seq = next(self._seq)
        if isinstance(message, ClickToDriveMessage):
            return RelayedClick(
                target=message.robot_id,
                origin=origin,
                seq=seq,
                x_coord=message.x,
                y_coord=message.y,
                attempt=message.is_commit,
            )
        if isinstance(message, HealthMessage):
            return RelayedHealth(
                target=message.robot_id,
                origin=origin,
                seq=seq,
                health_type=message.health_type,
                status=message.status,
            )
        if isinstance(message, SignalMessage):
            return RelayedSignal(
                target=message.robot_id, origin=origin, seq=seq, to=message.to, data=message.data
            )
        if isinstance(message, ControlMessage):
            return RelayedControl(target=message.robot_id, origin=origin, seq=seq, content=message.content)
        raise TypeError(f"cannot relay {type(message).__name__}")
