"""WebSocket layer: hub, event emitter, delivery fan-out and event handlers."""

from chat_server.websocket.event_emitter import EventEmitter
from chat_server.websocket.fanout import DeliveryFanout, SessionRegistry

__all__ = ['EventEmitter', 'DeliveryFanout', 'SessionRegistry']
