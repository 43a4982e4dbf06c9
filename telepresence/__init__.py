"""
Telepresence relay service package.

This service is responsible for:
- Brokering WebSocket sessions between robots and remote drivers.
- Relaying control, click-to-drive, health and WebRTC signaling messages.
- Firing smart-action webhooks and serving directory presence cards.

The HTTP/WebSocket server is implemented with Tornado.
"""
