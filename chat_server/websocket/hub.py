"""WebSocket hub.

Authenticates Socket.IO connections, hands them to the delivery fan-out and
registers the chat and conversation event handlers.
"""
import logging
from typing import Any, Dict, Optional

from flask import Flask, request
from flask_socketio import SocketIO, emit

from chat_server.exception.AppError import AppError
from chat_server.exception.UnauthorizedError import UnauthorizedError
from chat_server.messaging.models import PresenceStatus, parse_enum
from chat_server.websocket.handlers.base import SocketHandler, socket_ack
from chat_server.websocket.handlers.chat_handler import ChatHandler
from chat_server.websocket.handlers.conversation_handler import ConversationHandler

logger = logging.getLogger(__name__)


class WebSocketHub(SocketHandler):
    """Connection lifecycle and presence events."""

    def __init__(self, socketio: SocketIO, context):
        super().__init__(socketio, context)
        self.handlers = []

    def init_app(self, app: Flask):
        logger.debug("WS_HUB: init app=%s, mode=%s", app.name, getattr(self.socketio, 'async_mode', '?'))
        self.context.emitter.bind(self.socketio)
        self._register_handlers()
        for handler_cls in (ChatHandler, ConversationHandler):
            handler = handler_cls(self.socketio, self.context)
            handler.register_handlers()
            self.handlers.append(handler)
        logger.debug("WS_HUB: initialized")
        return self

    @staticmethod
    def extract_token(auth: Optional[Dict[str, Any]]) -> Optional[str]:
        """Token from the handshake auth payload, the Authorization header or the ``token`` query arg."""
        token = None
        if auth and isinstance(auth, dict):
            token = auth.get('token')
        if not token:
            token = request.headers.get('Authorization', '').replace('Bearer ', '').strip()
        if not token:
            token = request.args.get('token', '')
        return token or None

    def authenticate(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise UnauthorizedError('Authentication token missing')
        identity = self.context.authenticate(token)
        user = self.context.users.get_by_external_id(identity['external_id'])
        if not user:
            raise UnauthorizedError('User not found')
        return user

    def _register_handlers(self):

        @self.socketio.on_error_default
        def default_error_handler(e):
            logger.error("WS error: %s", e)

        @self.socketio.on('connect')
        def handle_connect(auth=None):
            socket_id = request.sid
            try:
                user = self.authenticate(self.extract_token(auth))
            except AppError as e:
                logger.warning("WS auth failed: sid=%s, reason=%s", socket_id, e.message)
                emit('error', {'code': 'UNAUTHORIZED', 'message': e.message})
                return False

            logger.info("WS connected: user=%s, sid=%s", user['external_id'], socket_id)
            self.context.fanout.on_connect(user, socket_id)
            return True

        @self.socketio.on('disconnect')
        def handle_disconnect(*args):
            info = self.context.fanout.on_disconnect(request.sid)
            if info:
                logger.info("WS disconnected: user=%s, sid=%s", info['external_id'], request.sid)

        @self.socketio.on('update-status')
        @socket_ack
        def handle_update_status(data=None):
            data = self.payload(data)
            user = self.current_user()
            status = parse_enum(PresenceStatus, data.get('status', PresenceStatus.ONLINE.value), 'status')
            updated = self.context.fanout.set_presence(user, status)
            return {'message': 'Status updated', 'status': updated.get('presence_status')}
