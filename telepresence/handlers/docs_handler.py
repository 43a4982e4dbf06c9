import tornado.web

from telepresence.models import INBOUND_MESSAGES, OUTBOUND_MESSAGES, SchemaDocument


class DocsHandler(tornado.web.RequestHandler):
    def get(self):
        examples = {
            "robot_alive": {"type": "robot-alive", "robot_id": "R1"},
            "join_robot": {"type": "join-robot", "robot_id": "R1", "driver_id": "D1"},
            "click_to_drive": {"type": "click-to-drive", "robot_id": "R1", "x": 0.5, "y": 0.5, "is_commit": True},
            "relayed_click": {
                "type": "click-to-drive",
                "target": "R1",
                "xCoord": 0.5,
                "yCoord": 0.5,
                "attempt": True,
                "origin": "3f2c9a...",
                "seq": 7,
            },
            "health": {"type": "health-msg", "robot_id": "R1", "health_type": "highlight-cursor", "status": True},
            "trigger": {"type": "ifttt-event", "action_id": "6f1d2c3e-...", "robot_id": "R1"},
            "office_card": {
                "type": "office-card",
                "robotId": "R1",
                "userId": "user-guid",
                "displayName": "Ada Lovelace",
                "presenceLabel": "Available",
                "presenceColor": "#93c353",
                "iconRef": "/ar/assets/presence/ms-available.png",
                "photoRef": "/photos/user-guid.png",
            },
        }

        schema = SchemaDocument(
            websocket_endpoints={
                "robot": "/ws/robot",
                "driver": "/ws/driver",
            },
            inbound_messages={
                kind: model.model_json_schema() for kind, model in INBOUND_MESSAGES.items()
            },
            outbound_messages={
                kind: model.model_json_schema(by_alias=True) for kind, model in OUTBOUND_MESSAGES.items()
            },
            examples=examples,
            notes=[
                "All WebSocket messages are JSON objects with a 'type' field.",
                "Relayed messages reach only the members of the target robot's session unless RELAY_SCOPE=broadcast.",
                "The first driver to join a session holds driving control; others observe until promoted.",
                "robot-connected and robot-disconnected are broadcast to every connection.",
                "Authentication: provide Bearer token via 'Authorization: Bearer <token>' header or '?token=' query param on WebSocket connect.",
                "/ws/robot only accepts tokens with a 'robot' role claim.",
            ],
        )
        self.set_header("Content-Type", "application/json")
        self.write(schema.model_dump(mode="json"))
