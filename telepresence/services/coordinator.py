import json
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ValidationError

from telepresence.models import (
    INBOUND_MESSAGES,
    ActionResultEvent,
    ChatMessage,
    ClickToDriveMessage,
    ControlMessage,
    HealthMessage,
    JoinRobotMessage,
    OfficeCardEvent,
    OfficeCardRequest,
    RobotAliveMessage,
    RobotPresenceEvent,
    SignalMessage,
    TriggerActionMessage,
)
from telepresence.services.directory import DirectoryService, PresenceCard
from telepresence.services.dispatch import ActionDispatcher, DispatchResult
from telepresence.services.registry import ConnectionRegistry
from telepresence.services.relay import MessageRelay, Sink
from telepresence.services.sessions import ROLE_DRIVER, ROLE_ROBOT, SessionManager

logger = logging.getLogger(__name__)


def parse_inbound(raw: Any) -> Optional[BaseModel]:
    """Decode a JSON text frame into its typed message, or None when malformed."""
    if isinstance(raw, (bytes, str)):
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
    else:
        payload = raw
    if not isinstance(payload, dict):
        return None
    model = INBOUND_MESSAGES.get(payload.get("type"))
    if model is None:
        return None
    try:
        return model.model_validate(payload)
    except ValidationError:
        return None


class RelayCoordinator:
    """Processes connection events for the whole relay.

    Every inbound event (open, message, close) is handled to completion without
    suspending, so registry and session state never needs a lock. Directory
    lookups and webhook calls run as separate tasks; when they finish, their
    result is delivered to the originating connection if it is still connected.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        sessions: SessionManager,
        relay: MessageRelay,
        dispatcher: ActionDispatcher,
        directory: DirectoryService,
    ):
        self.registry = registry
        self.sessions = sessions
        self.relay = relay
        self.dispatcher = dispatcher
        self.directory = directory
        self._identities: Dict[str, Optional[str]] = {}
        registry.add_robot_lost_listener(self._on_robot_lost)

    def open(self, connection_id: str, role: str, sink: Sink, identity: Optional[str] = None) -> None:
        self.registry.connect(connection_id, role)
        self.relay.attach(connection_id, sink)
        self._identities[connection_id] = identity
        logger.info("%s connection %s opened", role, connection_id)

    def close(self, connection_id: str) -> None:
        self.relay.detach(connection_id)
        robot_id = self.registry.unregister(connection_id)
        self._identities.pop(connection_id, None)
        logger.info("Connection %s closed (robot=%s)", connection_id, robot_id)

    def handle(self, connection_id: str, raw: Any) -> None:
        connection = self.registry.get(connection_id)
        if connection is None:
            logger.warning("Message from unknown connection %s dropped", connection_id)
            return
        message = parse_inbound(raw)
        if message is None:
            logger.warning("Malformed message from %s dropped", connection_id)
            return

        if isinstance(message, RobotAliveMessage):
            self._robot_alive(connection_id, connection.role, message)
        elif isinstance(message, JoinRobotMessage):
            self._join_robot(connection_id, connection.role, message)
        elif isinstance(message, HealthMessage):
            self._health(connection_id, message)
        elif isinstance(message, (ControlMessage, ClickToDriveMessage, SignalMessage)):
            self._relay(connection_id, message)
        elif isinstance(message, TriggerActionMessage):
            self._trigger(connection_id, message)
        elif isinstance(message, OfficeCardRequest):
            self._office_card(connection_id, message)
        elif isinstance(message, ChatMessage):
            self._chat(connection_id, message)

    # Session lifecycle

    def _robot_alive(self, connection_id: str, role: str, message: RobotAliveMessage) -> None:
        if role != ROLE_ROBOT:
            logger.warning("robot-alive from %s connection %s dropped", role, connection_id)
            return
        previous = self.registry.get(connection_id).robot_id
        was_active = message.robot_id in self.registry.list_active_robots()
        self.registry.register(connection_id, message.robot_id)
        self.sessions.join(connection_id, message.robot_id, ROLE_ROBOT)
        if previous not in (None, message.robot_id) and previous not in self.registry.list_active_robots():
            self._on_robot_lost(previous)
        if not was_active:
            self.relay.broadcast(RobotPresenceEvent(type="robot-connected", target=message.robot_id))

    def _join_robot(self, connection_id: str, role: str, message: JoinRobotMessage) -> None:
        if role != ROLE_DRIVER:
            logger.warning("join-robot from %s connection %s dropped", role, connection_id)
            return
        driver_id = message.driver_id or self._identities.get(connection_id)
        self.registry.bind_driver(connection_id, driver_id)
        self.sessions.join(connection_id, message.robot_id, ROLE_DRIVER)

    def _on_robot_lost(self, robot_id: str) -> None:
        self.relay.broadcast(RobotPresenceEvent(type="robot-disconnected", target=robot_id))

    # Relay

    def _allowed(self, connection_id: str, robot_id: str, kind: str) -> bool:
        # Unknown targets are still emitted; there is simply nobody subscribed.
        if self.sessions.get(robot_id) is None:
            return True
        if self.sessions.permits(connection_id, robot_id, kind):
            return True
        logger.warning("%s from %s to %s not permitted, dropped", kind, connection_id, robot_id)
        return False

    def _relay(self, connection_id: str, message) -> None:
        if self._allowed(connection_id, message.robot_id, message.type):
            self.relay.relay(connection_id, message)

    def _health(self, connection_id: str, message: HealthMessage) -> None:
        if not self._allowed(connection_id, message.robot_id, message.type):
            return
        self.sessions.record_health(message.robot_id, message.health_type, message.status)
        self.relay.relay(connection_id, message)

    # External calls

    def _trigger(self, connection_id: str, message: TriggerActionMessage) -> None:
        session = self.sessions.session_of(connection_id)
        robot_id = message.robot_id or (session.robot_id if session else None)
        if robot_id is None or not self.sessions.permits(connection_id, robot_id, message.type):
            logger.warning("Trigger from %s without driving control dropped", connection_id)
            return
        if message.action_id:
            work = self.dispatcher.dispatch(message.action_id)
        else:
            work = self.dispatcher.dispatch_url(message.url)
        self.dispatcher.schedule(self._report_dispatch(connection_id, work))

    async def _report_dispatch(self, connection_id: str, work) -> None:
        result: DispatchResult = await work
        self.deliver(
            connection_id,
            ActionResultEvent(
                action_id=result.action_id,
                ok=result.ok,
                attempts=result.attempts,
                status_code=result.status_code,
                error=result.error,
            ),
        )

    def _office_card(self, connection_id: str, message: OfficeCardRequest) -> None:
        if not self._allowed(connection_id, message.robot_id, message.type):
            return
        self.dispatcher.schedule(self._report_office_card(connection_id, message))

    async def _report_office_card(self, connection_id: str, message: OfficeCardRequest) -> None:
        card: PresenceCard = await self.directory.get_presence_card(message.robot_id, message.user_id)
        self.deliver(
            connection_id,
            OfficeCardEvent(
                robot_id=card.robot_id,
                user_id=card.user_id,
                display_name=card.display_name,
                presence_label=card.status.label,
                presence_color=card.status.color_hex,
                icon_ref=card.status.icon,
                photo_ref=card.photo_ref,
            ),
        )

    def _chat(self, connection_id: str, message: ChatMessage) -> None:
        session = self.sessions.session_of(connection_id)
        robot_id = message.robot_id or (session.robot_id if session else None)
        # only driver members of a session may chat
        if robot_id is None or not self.sessions.permits(connection_id, robot_id, message.type):
            logger.warning("Chat from %s outside a driver session dropped", connection_id)
            return
        self.dispatcher.schedule(self.directory.send_chat(message.chat_id, message.text))

    def deliver(self, connection_id: str, event: BaseModel) -> None:
        """Follow-up delivery for finished external work; a closed connection is a no-op."""
        if connection_id not in self.registry:
            logger.debug("Dropping %s for closed connection %s", getattr(event, "type", "event"), connection_id)
            return
        self.relay.send_to(connection_id, event)
