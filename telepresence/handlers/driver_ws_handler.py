from telepresence.handlers.base_ws_handler import RelayWebSocketHandler


class DriverWebSocketHandler(RelayWebSocketHandler):
    """Driver endpoint: joins robot sessions, drives, triggers smart actions."""

    role = "driver"
