"""Event emitter for real-time Socket.IO communication.

Broadcasts are at-most-once and best effort: a failed emit is logged and
dropped, never retried and never reported back to the caller's operation.

Usage:
    emitter = EventEmitter(socketio)
    emitter.emit_to_room(conversation_room(conversation_id), EventEmitter.NEW_MESSAGE, data)
    emitter.emit_to_user(external_id, EventEmitter.USER_STATUS_CHANGED, data)
"""
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def conversation_room(conversation_id) -> str:
    return f"conversation-{conversation_id}"


def user_room(external_id) -> str:
    return f"user-{external_id}"


class EventEmitter:
    """Thin wrapper over the Socket.IO server used by the fan-out and the handlers."""

    # =========================================================================
    # Event names
    # =========================================================================

    WELCOME = 'welcome'
    ERROR = 'error'

    # Messages
    NEW_MESSAGE = 'new-message'
    MESSAGE_EDITED = 'message-edited'
    MESSAGE_DELETED_EVERYONE = 'message-deleted-everyone'
    REACTION_ADDED = 'reaction-added'
    REACTION_REMOVED = 'reaction-removed'
    MESSAGE_DELIVERED = 'mark-message-delivered'

    # Ephemeral
    TYPING_START = 'typing-start'
    TYPING_STOP = 'typing-stop'

    # Presence
    USER_STATUS_CHANGED = 'user-status-changed'

    def __init__(self, socketio=None, namespace: str = '/'):
        self.socketio = socketio
        self.namespace = namespace

    def bind(self, socketio):
        """Attach the Socket.IO instance once the hub is initialised."""
        self.socketio = socketio
        logger.debug("EventEmitter bound to Socket.IO instance")

    # =========================================================================
    # Emit
    # =========================================================================

    def emit_to_room(self, room: str, event: str, data: Dict[str, Any], skip_sid: Optional[str] = None) -> bool:
        if not self.socketio:
            logger.error("Socket.IO not initialized, cannot emit %s to room %s", event, room)
            return False
        try:
            self.socketio.emit(event, data, to=room, skip_sid=skip_sid, namespace=self.namespace)
            logger.debug("Emitted %s to room %s", event, room)
            return True
        except Exception as e:
            logger.error("Error emitting %s to room %s: %s", event, room, e)
            return False

    def emit_to_user(self, external_id: str, event: str, data: Dict[str, Any]) -> bool:
        """Emit to every connected device of a user through their user room."""
        return self.emit_to_room(user_room(external_id), event, data)

    def emit_to_session(self, sid: str, event: str, data: Dict[str, Any]) -> bool:
        return self.emit_to_room(sid, event, data)

    # =========================================================================
    # Room membership
    # =========================================================================

    def join(self, sid: str, room: str) -> bool:
        if not self.socketio or not self.socketio.server:
            logger.error("Socket.IO not initialized, cannot join %s to %s", sid, room)
            return False
        try:
            self.socketio.server.enter_room(sid, room, namespace=self.namespace)
            logger.debug("Socket %s joined %s", sid, room)
            return True
        except Exception as e:
            logger.error("Error joining %s to %s: %s", sid, room, e)
            return False

    def leave(self, sid: str, room: str) -> bool:
        if not self.socketio or not self.socketio.server:
            return False
        try:
            self.socketio.server.leave_room(sid, room, namespace=self.namespace)
            logger.debug("Socket %s left %s", sid, room)
            return True
        except Exception as e:
            logger.error("Error removing %s from %s: %s", sid, room, e)
            return False
