import asyncio
import json

import pytest

from telepresence.services.coordinator import RelayCoordinator, parse_inbound
from telepresence.services.directory import AVAILABLE, PresenceCard
from telepresence.services.dispatch import DispatchResult
from telepresence.services.registry import ConnectionRegistry
from telepresence.services.relay import MessageRelay
from telepresence.services.sessions import SessionManager


class RecordingSink:
    def __init__(self):
        self.messages = []

    def __call__(self, text):
        self.messages.append(json.loads(text))

    def of_type(self, kind):
        return [m for m in self.messages if m["type"] == kind]


class FakeDispatcher:
    def __init__(self):
        self.dispatched = []
        self.tasks = []

    def schedule(self, coro):
        task = asyncio.ensure_future(coro)
        self.tasks.append(task)
        return task

    async def dispatch(self, action_id):
        self.dispatched.append(action_id)
        return DispatchResult(action_id=action_id, url="https://hooks.example/x", ok=True, attempts=1, status_code=200)

    async def dispatch_url(self, url):
        self.dispatched.append(url)
        return DispatchResult(action_id=None, url=url, ok=False, attempts=0, error="unknown webhook")


class FakeDirectory:
    def __init__(self):
        self.gate = asyncio.Event()
        self.gate.set()
        self.lookups = []
        self.chats = []

    async def get_presence_card(self, robot_id, user_id):
        self.lookups.append((robot_id, user_id))
        await self.gate.wait()
        return PresenceCard(robot_id, user_id, "Ada Lovelace", AVAILABLE, f"/photos/{user_id}.png")

    async def send_chat(self, chat_id, text):
        self.chats.append((chat_id, text))
        return True


def make_coordinator(scope="session"):
    registry = ConnectionRegistry()
    relay = MessageRelay(scope=scope)
    sessions = SessionManager(registry, relay)
    dispatcher = FakeDispatcher()
    directory = FakeDirectory()
    coordinator = RelayCoordinator(registry, sessions, relay, dispatcher, directory)
    return coordinator, dispatcher, directory


def open_connection(coordinator, connection_id, role, identity=None):
    sink = RecordingSink()
    coordinator.open(connection_id, role, sink, identity=identity)
    return sink


def send(coordinator, connection_id, **payload):
    coordinator.handle(connection_id, json.dumps(payload))


def test_parse_inbound_rejects_malformed_frames():
    assert parse_inbound("not json") is None
    assert parse_inbound("[1, 2]") is None
    assert parse_inbound(json.dumps({"type": "unknown"})) is None
    assert parse_inbound(json.dumps({"type": "click-to-drive", "x": 0.5, "y": 0.5})) is None
    assert parse_inbound(json.dumps({"type": "click-to-drive", "robot_id": "R1", "x": 1.5, "y": 0.5})) is None
    assert parse_inbound(json.dumps({"type": "ifttt-event"})) is None
    click = parse_inbound(json.dumps({"type": "click-to-drive", "robot_id": "R1", "x": 0.5, "y": 0.5}))
    assert click.is_commit is False


def test_robot_driver_click_and_disconnect_end_to_end():
    coordinator, _, _ = make_coordinator()
    robot = open_connection(coordinator, "robot", "robot")
    driver = open_connection(coordinator, "driver", "driver")

    send(coordinator, "robot", type="robot-alive", robot_id="R1")
    assert coordinator.registry.list_active_robots() == {"R1"}
    assert driver.of_type("robot-connected") == [{"type": "robot-connected", "target": "R1"}]

    send(coordinator, "driver", type="join-robot", robot_id="R1", driver_id="D1")
    assert robot.of_type("peer-joined")[0]["peer_id"] == "D1"

    send(coordinator, "driver", type="click-to-drive", robot_id="R1", x=0.5, y=0.5, is_commit=True)
    clicks = robot.of_type("click-to-drive")
    assert len(clicks) == 1
    assert clicks[0]["target"] == "R1"
    assert clicks[0]["xCoord"] == 0.5 and clicks[0]["yCoord"] == 0.5
    assert clicks[0]["attempt"] is True

    coordinator.close("robot")
    assert driver.of_type("robot-disconnected") == [{"type": "robot-disconnected", "target": "R1"}]
    assert coordinator.registry.list_active_robots() == set()
    assert coordinator.sessions.get("R1").state == "robot-offline"


def test_malformed_message_is_dropped_without_reaching_peers():
    coordinator, _, _ = make_coordinator()
    robot = open_connection(coordinator, "robot", "robot")
    open_connection(coordinator, "driver", "driver")
    send(coordinator, "robot", type="robot-alive", robot_id="R1")
    send(coordinator, "driver", type="join-robot", robot_id="R1")
    before = list(robot.messages)

    coordinator.handle("driver", "{broken")
    send(coordinator, "driver", type="control-msg", content="no target")

    assert robot.messages == before


def test_driver_id_defaults_to_token_subject():
    coordinator, _, _ = make_coordinator()
    robot = open_connection(coordinator, "robot", "robot")
    open_connection(coordinator, "driver", "driver", identity="alice")
    send(coordinator, "robot", type="robot-alive", robot_id="R1")

    send(coordinator, "driver", type="join-robot", robot_id="R1")

    assert robot.of_type("peer-joined")[0]["peer_id"] == "alice"


def test_role_mismatched_messages_are_dropped():
    coordinator, _, _ = make_coordinator()
    open_connection(coordinator, "driver", "driver")
    open_connection(coordinator, "robot", "robot")

    send(coordinator, "driver", type="robot-alive", robot_id="R1")
    send(coordinator, "robot", type="join-robot", robot_id="R1")

    assert coordinator.registry.list_active_robots() == set()
    assert coordinator.sessions.get("R1") is None


def test_observer_cannot_drive_and_outsider_cannot_control():
    coordinator, _, _ = make_coordinator()
    robot = open_connection(coordinator, "robot", "robot")
    open_connection(coordinator, "d1", "driver")
    open_connection(coordinator, "d2", "driver")
    open_connection(coordinator, "outsider", "driver")
    send(coordinator, "robot", type="robot-alive", robot_id="R1")
    send(coordinator, "d1", type="join-robot", robot_id="R1")
    send(coordinator, "d2", type="join-robot", robot_id="R1")

    send(coordinator, "d2", type="click-to-drive", robot_id="R1", x=0.1, y=0.1, is_commit=True)
    send(coordinator, "outsider", type="control-msg", robot_id="R1", content="forward")
    assert robot.of_type("click-to-drive") == []
    assert robot.of_type("control-msg") == []

    coordinator.close("d1")
    send(coordinator, "d2", type="click-to-drive", robot_id="R1", x=0.1, y=0.1, is_commit=True)
    assert len(robot.of_type("click-to-drive")) == 1


def test_health_is_relayed_and_remembered_for_late_joiners():
    coordinator, _, _ = make_coordinator()
    open_connection(coordinator, "robot", "robot")
    first = open_connection(coordinator, "d1", "driver")
    send(coordinator, "robot", type="robot-alive", robot_id="R1")
    send(coordinator, "d1", type="join-robot", robot_id="R1")

    send(coordinator, "robot", type="health-msg", robot_id="R1", health_type="highlight-cursor", status=True)

    health = first.of_type("health-msg")
    assert health[0]["health_type"] == "highlight-cursor" and health[0]["status"] is True

    late = open_connection(coordinator, "d2", "driver")
    send(coordinator, "d2", type="join-robot", robot_id="R1")
    assert late.of_type("joined")[0]["health"] == {"highlight-cursor": True}


def test_webrtc_signal_reaches_addressed_peer():
    coordinator, _, _ = make_coordinator()
    open_connection(coordinator, "robot", "robot")
    driver = open_connection(coordinator, "driver", "driver")
    send(coordinator, "robot", type="robot-alive", robot_id="R1")
    send(coordinator, "driver", type="join-robot", robot_id="R1")

    send(coordinator, "robot", type="webrtc-signal", robot_id="R1", to="driver", data={"type": "offer", "sdp": "v=0"})

    signal = driver.of_type("webrtc-signal")[0]
    assert signal["origin"] == "robot"
    assert signal["data"]["sdp"] == "v=0"


@pytest.mark.asyncio
async def test_trigger_dispatches_and_reports_result_to_origin():
    coordinator, dispatcher, _ = make_coordinator()
    open_connection(coordinator, "robot", "robot")
    driver = open_connection(coordinator, "driver", "driver")
    send(coordinator, "robot", type="robot-alive", robot_id="R1")
    send(coordinator, "driver", type="join-robot", robot_id="R1")

    send(coordinator, "driver", type="ifttt-event", action_id="a1")
    await asyncio.gather(*dispatcher.tasks)

    assert dispatcher.dispatched == ["a1"]
    result = driver.of_type("action-result")[0]
    assert result["ok"] is True and result["action_id"] == "a1"


@pytest.mark.asyncio
async def test_trigger_without_control_is_dropped():
    coordinator, dispatcher, _ = make_coordinator()
    open_connection(coordinator, "driver", "driver")

    send(coordinator, "driver", type="ifttt-event", url="https://hooks.example/x")

    assert dispatcher.tasks == []


@pytest.mark.asyncio
async def test_office_card_is_delivered_to_requester():
    coordinator, dispatcher, directory = make_coordinator()
    driver = open_connection(coordinator, "driver", "driver")
    send(coordinator, "driver", type="join-robot", robot_id="R1")

    send(coordinator, "driver", type="get-office-card", robot_id="R1", user_id="user-1")
    await asyncio.gather(*dispatcher.tasks)

    assert directory.lookups == [("R1", "user-1")]
    assert driver.of_type("office-card") == [
        {
            "type": "office-card",
            "robotId": "R1",
            "userId": "user-1",
            "displayName": "Ada Lovelace",
            "presenceLabel": "Available",
            "presenceColor": "#93c353",
            "iconRef": "/ar/assets/presence/ms-available.png",
            "photoRef": "/photos/user-1.png",
        }
    ]


@pytest.mark.asyncio
async def test_disconnect_during_lookup_discards_response():
    coordinator, dispatcher, directory = make_coordinator()
    driver = open_connection(coordinator, "driver", "driver")
    directory.gate.clear()

    send(coordinator, "driver", type="get-office-card", robot_id="R1", user_id="user-1")
    await asyncio.sleep(0)
    coordinator.close("driver")
    directory.gate.set()
    await asyncio.gather(*dispatcher.tasks)

    assert driver.of_type("office-card") == []


@pytest.mark.asyncio
async def test_chat_message_is_sent_through_directory():
    coordinator, dispatcher, directory = make_coordinator()
    open_connection(coordinator, "driver", "driver")
    send(coordinator, "driver", type="join-robot", robot_id="R1")

    send(coordinator, "driver", type="chat-msg", chat_id="chat-1")
    await asyncio.gather(*dispatcher.tasks)

    assert directory.chats[0][0] == "chat-1"
    assert "telepresence robot" in directory.chats[0][1]


def test_broadcast_scope_delivers_to_non_members():
    coordinator, _, _ = make_coordinator(scope="broadcast")
    open_connection(coordinator, "robot", "robot")
    driver = open_connection(coordinator, "driver", "driver")
    lobby = open_connection(coordinator, "lobby", "driver")
    send(coordinator, "robot", type="robot-alive", robot_id="R1")
    send(coordinator, "driver", type="join-robot", robot_id="R1")

    send(coordinator, "robot", type="health-msg", robot_id="R1", health_type="battery", status=50)

    assert driver.of_type("health-msg")[0]["status"] == 50
    assert lobby.of_type("health-msg")[0]["target"] == "R1"


@pytest.mark.asyncio
async def test_chat_from_robot_or_outsider_is_dropped():
    coordinator, dispatcher, directory = make_coordinator()
    open_connection(coordinator, "robot", "robot")
    open_connection(coordinator, "lobby", "driver")
    send(coordinator, "robot", type="robot-alive", robot_id="R1")

    send(coordinator, "robot", type="chat-msg", chat_id="chat-1")
    send(coordinator, "lobby", type="chat-msg", chat_id="chat-1")
    send(coordinator, "lobby", type="chat-msg", chat_id="chat-1", robot_id="R1")
    await asyncio.gather(*dispatcher.tasks)

    assert directory.chats == []
    assert dispatcher.tasks == []


def test_overlapping_robot_reconnect_keeps_robot_online():
    coordinator, _, _ = make_coordinator()
    open_connection(coordinator, "robot-old", "robot")
    driver = open_connection(coordinator, "driver", "driver")
    send(coordinator, "robot-old", type="robot-alive", robot_id="R1")
    send(coordinator, "driver", type="join-robot", robot_id="R1")

    robot_new = open_connection(coordinator, "robot-new", "robot")
    send(coordinator, "robot-new", type="robot-alive", robot_id="R1")
    coordinator.close("robot-old")

    assert coordinator.registry.list_active_robots() == {"R1"}
    assert driver.of_type("robot-disconnected") == []
    session = coordinator.sessions.get("R1")
    assert session.state == "active"
    assert session.robot_connection_id == "robot-new"

    send(coordinator, "driver", type="control-msg", robot_id="R1", content="forward")
    assert robot_new.of_type("control-msg")[0]["content"] == "forward"


def test_newer_robot_connection_closing_first_hands_back_to_older():
    coordinator, _, _ = make_coordinator()
    open_connection(coordinator, "robot-old", "robot")
    driver = open_connection(coordinator, "driver", "driver")
    send(coordinator, "robot-old", type="robot-alive", robot_id="R1")
    send(coordinator, "driver", type="join-robot", robot_id="R1")
    open_connection(coordinator, "robot-new", "robot")
    send(coordinator, "robot-new", type="robot-alive", robot_id="R1")

    coordinator.close("robot-new")

    assert coordinator.sessions.get("R1").robot_connection_id == "robot-old"
    assert coordinator.sessions.get("R1").state == "active"
    assert driver.of_type("robot-disconnected") == []

    coordinator.close("robot-old")
    assert driver.of_type("robot-disconnected") == [{"type": "robot-disconnected", "target": "R1"}]
    assert coordinator.sessions.get("R1").state == "robot-offline"


def test_robot_reconnect_after_disconnect_restores_session():
    coordinator, _, _ = make_coordinator()
    open_connection(coordinator, "robot", "robot")
    driver = open_connection(coordinator, "driver", "driver")
    send(coordinator, "robot", type="robot-alive", robot_id="R1")
    send(coordinator, "driver", type="join-robot", robot_id="R1")
    coordinator.close("robot")
    assert coordinator.sessions.get("R1").state == "robot-offline"

    # the offline session stays joinable
    late = open_connection(coordinator, "late", "driver")
    send(coordinator, "late", type="join-robot", robot_id="R1")
    assert late.of_type("joined")[0]["state"] == "robot-offline"

    robot = open_connection(coordinator, "robot-2", "robot")
    send(coordinator, "robot-2", type="robot-alive", robot_id="R1")

    assert driver.of_type("robot-connected")[-1] == {"type": "robot-connected", "target": "R1"}
    assert driver.of_type("peer-joined")[-1]["role"] == "robot"
    assert coordinator.sessions.get("R1").state == "active"
    send(coordinator, "driver", type="click-to-drive", robot_id="R1", x=0.1, y=0.9)
    assert len(robot.of_type("click-to-drive")) == 1
