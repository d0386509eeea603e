"""Socket.IO conversation room events: join, leave and typing relay."""
import logging

from flask import request
from flask_socketio import join_room, leave_room

from chat_server.exception.AppError import ForbiddenError
from chat_server.messaging.models import ConversationStatus
from chat_server.websocket.event_emitter import EventEmitter, conversation_room
from chat_server.websocket.handlers.base import SocketHandler, socket_ack

logger = logging.getLogger(__name__)


class ConversationHandler(SocketHandler):

    def register_handlers(self):
        ctx = self.context

        @self.socketio.on('join-conversation')
        @socket_ack
        def handle_join_conversation(data=None):
            data = self.payload(data)
            user = self.current_user()
            conversation_id = self.object_id(data, 'conversationId', 'conversation_id')
            conversation = ctx.conversations.get_for_participant(conversation_id, user['_id'])
            if conversation.get('conversation_status') != ConversationStatus.ACCEPTED.value:
                raise ForbiddenError('Conversation is not accepted')

            join_room(conversation_room(conversation_id))
            ctx.fanout.send_participant_statuses(request.sid, conversation)
            logger.debug("User %s joined %s", user['external_id'], conversation_id)
            return {'message': 'Joined conversation', 'conversationId': str(conversation_id)}

        @self.socketio.on('leave-conversation')
        @socket_ack
        def handle_leave_conversation(data=None):
            data = self.payload(data)
            self.current_user()
            conversation_id = self.object_id(data, 'conversationId', 'conversation_id')
            leave_room(conversation_room(conversation_id))
            return {'message': 'Left conversation', 'conversationId': str(conversation_id)}

        @self.socketio.on('typing-start')
        def handle_typing_start(data=None):
            self._relay_typing(EventEmitter.TYPING_START, data)

        @self.socketio.on('typing-stop')
        def handle_typing_stop(data=None):
            self._relay_typing(EventEmitter.TYPING_STOP, data)

    def _relay_typing(self, event, data):
        """Forward a typing indicator to the rest of the room; nothing is stored or acknowledged."""
        info = self.context.sessions.get(request.sid)
        conversation_id = self.payload(data).get('conversationId')
        if not info or not conversation_id:
            return
        room = conversation_room(conversation_id)
        # only relay into rooms this session was subscribed to
        if room not in self.socketio.server.rooms(request.sid, namespace='/'):
            return
        self.context.emitter.emit_to_room(room, event, {
            'conversationId': conversation_id,
            'uid': info['external_id'],
        }, skip_sid=request.sid)
