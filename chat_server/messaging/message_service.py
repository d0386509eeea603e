"""Message engine: send, status, edit, soft deletion and reactions."""
import logging
from typing import Optional, Dict, Any

from chat_server.exception.AppError import (
    NotFoundError, ForbiddenError, ConflictError, InvalidArgumentError
)
from chat_server.messaging.conversation_service import ConversationService
from chat_server.messaging.models import (
    ConversationStatus, Message, MessageStatus, MessageType, MAX_CONTENT_LENGTH,
    is_blocked, is_deleted_for_everyone, is_deleted_for_user, parse_enum,
)
from chat_server.repository.message_repository import MessageRepository
from chat_server.utils.time_utils import now_utc, seconds_ago

logger = logging.getLogger(__name__)

DEFAULT_RETRACTION_WINDOW_SECONDS = 600


class MessageService:

    def __init__(self, conversations: ConversationService, messages: MessageRepository,
                 retraction_window_seconds: int = DEFAULT_RETRACTION_WINDOW_SECONDS,
                 enforce_block_on_send: bool = False):
        self.conversations = conversations
        self.messages = messages
        self.retraction_window_seconds = retraction_window_seconds
        self.enforce_block_on_send = enforce_block_on_send

    def get(self, message_id) -> Dict[str, Any]:
        message = self.messages.get(message_id)
        if not message:
            raise NotFoundError('Message not found')
        return message

    def send(self, conversation_id, sender_id, content: str, message_type=MessageType.TEXT,
             caption: Optional[str] = None, reply_to=None, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Persist a message and move the conversation's last-message pointer to it.

        Raises LastMessagePointerError when the message was stored but the
        pointer could not be updated; the message is durable in that case.
        """
        conversation = self.conversations.get_for_participant(conversation_id, sender_id)
        if conversation.get('conversation_status') != ConversationStatus.ACCEPTED.value:
            raise ForbiddenError('Conversation is not accepted')
        if self.enforce_block_on_send and is_blocked(conversation):
            raise ForbiddenError('Conversation is blocked')

        if reply_to is not None:
            target = self.messages.get(reply_to)
            if not target or target.get('conversation_id') != conversation_id:
                raise InvalidArgumentError('Replied message does not belong to this conversation')

        doc = Message(conversation_id, sender_id, content, message_type, caption, reply_to, metadata).to_db_doc()
        message = self.messages.insert(doc)
        logger.info("Message %s sent to %s by %s", message['_id'], conversation_id, sender_id)

        self.conversations.update_last_message_pointer(conversation_id, message['_id'])
        return message

    def update_status(self, message_id, new_status, requesting_user_id) -> Dict[str, Any]:
        """Advance delivery state. Repeating the current status is a no-op; going back is a Conflict."""
        new_status = parse_enum(MessageStatus, new_status, 'status')
        message = self.get(message_id)
        self.conversations.get_for_participant(message['conversation_id'], requesting_user_id)

        updated = self.messages.advance_status(message_id, new_status, now_utc())
        if updated:
            return updated
        current = self.get(message_id)
        if current['status'] == new_status.value:
            return current
        raise ConflictError(f"Message is already {current['status']}")

    def edit(self, message_id, user_id, new_content: str) -> Dict[str, Any]:
        if not isinstance(new_content, str) or not new_content.strip():
            raise InvalidArgumentError('Message content is required')
        if len(new_content) > MAX_CONTENT_LENGTH:
            raise InvalidArgumentError(f'Message cannot exceed {MAX_CONTENT_LENGTH} characters')

        updated = self.messages.edit_content(message_id, user_id, new_content, now_utc())
        if updated:
            logger.info("Message %s edited by %s", message_id, user_id)
            return updated

        message = self.get(message_id)
        if message['sender_id'] != user_id:
            raise ForbiddenError('You can only edit your own messages')
        raise InvalidArgumentError('Cannot edit a message deleted for everyone')

    def delete_for_everyone(self, message_id, user_id) -> Dict[str, Any]:
        now = now_utc()
        not_before = seconds_ago(self.retraction_window_seconds, now)
        updated = self.messages.delete_for_everyone(message_id, user_id, not_before, now)
        if updated:
            logger.info("Message %s deleted for everyone by %s", message_id, user_id)
            return updated

        message = self.get(message_id)
        if message['sender_id'] != user_id:
            raise ForbiddenError('You can only delete your own messages for everyone')
        if is_deleted_for_everyone(message):
            raise InvalidArgumentError('Message already deleted for everyone')
        raise InvalidArgumentError(
            f'Messages can only be deleted for everyone within {self.retraction_window_seconds // 60} minutes'
        )

    def delete_for_me(self, message_id, user_id) -> Dict[str, Any]:
        updated = self.messages.delete_for_user(message_id, user_id, now_utc())
        if updated:
            logger.debug("Message %s deleted for %s", message_id, user_id)
            return updated
        message = self.get(message_id)
        if is_deleted_for_user(message, user_id):
            raise InvalidArgumentError('Message already deleted for you')
        raise ConflictError('Message could not be deleted')

    def add_reaction(self, message_id, user_id, emoji: str) -> Dict[str, Any]:
        if not emoji:
            raise InvalidArgumentError('emoji is required')
        updated = self.messages.push_reaction(message_id, user_id, emoji, now_utc())
        if updated:
            return updated
        self.get(message_id)
        raise ConflictError('You already reacted with this emoji')

    def remove_reaction(self, message_id, user_id, emoji: str) -> Dict[str, Any]:
        updated = self.messages.pull_reaction(message_id, user_id, emoji, now_utc())
        if not updated:
            raise NotFoundError('Message not found')
        return updated

    def get_unread_count(self, conversation_id, user_id) -> int:
        conversation = self.conversations.get_for_participant(conversation_id, user_id)
        since = None
        for receipt in conversation.get('read_receipts', []):
            if receipt.get('user_id') == user_id:
                since = receipt.get('last_read_at')
        return self.messages.count_unread(conversation_id, user_id, since)
