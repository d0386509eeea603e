"""Socket.IO message events.

Every mutation is persisted before it is broadcast. ``send-message`` goes to
the other sessions in the conversation room; edits, deletions for everyone
and reactions go to the whole room so all of the actor's devices converge.

Client -> server events (all acknowledged with ``{success, message?, error?}``):
- send-message {conversationId, content, type?, caption?, replyTo?, metadata?}
- edit-message {messageId, newContent}
- delete-message-everyone {messageId}
- delete-message-me {messageId}
- add-reaction / remove-reaction {messageId, emoji}
"""
import logging

from flask import request

from chat_server.exception.AppError import LastMessagePointerError
from chat_server.utils.helpers import normalize_doc
from chat_server.websocket.handlers.base import SocketHandler, socket_ack

logger = logging.getLogger(__name__)


class ChatHandler(SocketHandler):

    def register_handlers(self):
        ctx = self.context

        @self.socketio.on('send-message')
        @socket_ack
        def handle_send_message(data=None):
            data = self.payload(data)
            user = self.current_user()
            conversation_id = self.object_id(data, 'conversationId', 'conversation_id')
            reply_to = self.object_id(data, 'replyTo', 'reply_to', required=False)
            try:
                message = ctx.messages.send(
                    conversation_id,
                    user['_id'],
                    data.get('content'),
                    data.get('type') or 'text',
                    caption=data.get('caption'),
                    reply_to=reply_to,
                    metadata=data.get('metadata'),
                )
            except LastMessagePointerError as e:
                # stored anyway, so the room still hears about it
                ctx.fanout.message_created(ctx.messages.get(e.message_id), skip_sid=request.sid)
                raise
            ctx.fanout.message_created(message, skip_sid=request.sid)
            return {'message': 'Message sent', 'data': normalize_doc(ctx.projections.broadcast_view(message))}

        @self.socketio.on('edit-message')
        @socket_ack
        def handle_edit_message(data=None):
            data = self.payload(data)
            user = self.current_user()
            message_id = self.object_id(data, 'messageId', 'message_id')
            message = ctx.messages.edit(message_id, user['_id'], data.get('newContent') or data.get('content'))
            ctx.fanout.message_edited(message)
            return {'message': 'Message edited'}

        @self.socketio.on('delete-message-everyone')
        @socket_ack
        def handle_delete_for_everyone(data=None):
            data = self.payload(data)
            user = self.current_user()
            message = ctx.messages.delete_for_everyone(self.object_id(data, 'messageId', 'message_id'), user['_id'])
            ctx.fanout.message_deleted_for_everyone(message)
            return {'message': 'Message deleted for everyone'}

        @self.socketio.on('delete-message-me')
        @socket_ack
        def handle_delete_for_me(data=None):
            data = self.payload(data)
            user = self.current_user()
            ctx.messages.delete_for_me(self.object_id(data, 'messageId', 'message_id'), user['_id'])
            return {'message': 'Message deleted for you'}

        @self.socketio.on('add-reaction')
        @socket_ack
        def handle_add_reaction(data=None):
            data = self.payload(data)
            user = self.current_user()
            emoji = data.get('emoji')
            message = ctx.messages.add_reaction(self.object_id(data, 'messageId', 'message_id'), user['_id'], emoji)
            ctx.fanout.reaction_added(message, user['_id'], emoji)
            return {'message': 'Reaction added'}

        @self.socketio.on('remove-reaction')
        @socket_ack
        def handle_remove_reaction(data=None):
            data = self.payload(data)
            user = self.current_user()
            emoji = data.get('emoji')
            message = ctx.messages.remove_reaction(self.object_id(data, 'messageId', 'message_id'), user['_id'], emoji)
            ctx.fanout.reaction_removed(message, user['_id'], emoji)
            return {'message': 'Reaction removed'}

        logger.info("Chat handlers registered")
