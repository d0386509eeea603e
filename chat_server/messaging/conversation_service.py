"""Conversation engine: DM request lifecycle, blocking, group membership, read receipts.

Accept is allowed from pending or rejected, reject from pending or accepted;
a rejected DM can be requested again and returns to pending under the same id.
"""
import logging
from typing import Optional, Dict, Any, List

from chat_server.exception.AppError import (
    NotFoundError, ForbiddenError, ConflictError, InvalidArgumentError, LastMessagePointerError
)
from chat_server.messaging.models import (
    ConversationKind, ConversationStatus, ResponseAction, ParticipantRole,
    DirectConversation, GroupConversation, MAX_GROUP_MEMBERS,
    is_participant, participant_doc, parse_enum,
)
from chat_server.repository.conversation_repository import ConversationRepository
from chat_server.repository.user_repository import UserRepository
from chat_server.utils.time_utils import now_utc

logger = logging.getLogger(__name__)

ACCEPT_FROM = [ConversationStatus.PENDING.value, ConversationStatus.REJECTED.value]
REJECT_FROM = [ConversationStatus.PENDING.value, ConversationStatus.ACCEPTED.value]


class ConversationService:

    def __init__(self, users: UserRepository, conversations: ConversationRepository):
        self.users = users
        self.conversations = conversations

    # =========================================================================
    # Lookups shared with the message engine
    # =========================================================================

    def get(self, conversation_id) -> Dict[str, Any]:
        conversation = self.conversations.get(conversation_id)
        if not conversation:
            raise NotFoundError('Conversation not found')
        return conversation

    def get_for_participant(self, conversation_id, user_id) -> Dict[str, Any]:
        conversation = self.get(conversation_id)
        if not is_participant(conversation, user_id):
            raise ForbiddenError('You are not a participant of this conversation')
        return conversation

    # =========================================================================
    # DM requests
    # =========================================================================

    def create_direct_request(self, sender_id, receiver_email: str) -> Dict[str, Any]:
        receiver = self.users.get_by_email(receiver_email)
        if not receiver:
            raise NotFoundError('User not found with the provided email')
        receiver_id = receiver['_id']
        if receiver_id == sender_id:
            raise InvalidArgumentError('Cannot send conversation request to yourself')

        doc = DirectConversation(sender_id, receiver_id).to_db_doc()
        conversation, created = self.conversations.insert_dm_if_absent(doc)
        if created:
            logger.info("DM %s requested by %s", conversation['_id'], sender_id)
            return conversation

        status = conversation.get('conversation_status')
        if status == ConversationStatus.REJECTED.value:
            participants = [
                dict(p, role=(ParticipantRole.INITIATOR if p['user_id'] == sender_id
                              else ParticipantRole.RECEIVER).value)
                for p in conversation['participants']
            ]
            reopened = self.conversations.reopen_rejected_dm(conversation['_id'], sender_id, participants, now_utc())
            if reopened:
                logger.info("DM %s re-requested by %s", reopened['_id'], sender_id)
                return reopened
            # lost a race with another transition; report what is there now
            status = self.get(conversation['_id']).get('conversation_status')
        if status == ConversationStatus.PENDING.value:
            raise ConflictError('Conversation request already pending')
        raise ConflictError('Conversation already exists between these users')

    def respond(self, conversation_id, responding_user_id, action) -> Dict[str, Any]:
        action = parse_enum(ResponseAction, action, 'action')
        allowed_from = ACCEPT_FROM if action == ResponseAction.ACCEPTED else REJECT_FROM
        updated = self.conversations.transition_status(
            conversation_id, responding_user_id, allowed_from, action.value, now_utc()
        )
        if updated:
            logger.info("Conversation %s %s by %s", conversation_id, action.value, responding_user_id)
            return updated

        conversation = self.get_for_participant(conversation_id, responding_user_id)
        raise ConflictError(f"Conversation request is already {conversation.get('conversation_status')}")

    # =========================================================================
    # Blocking (DM only)
    # =========================================================================

    def block(self, conversation_id, user_id) -> Dict[str, Any]:
        return self._set_block(conversation_id, user_id, True)

    def unblock(self, conversation_id, user_id) -> Dict[str, Any]:
        return self._set_block(conversation_id, user_id, False)

    def _set_block(self, conversation_id, user_id, blocked: bool) -> Dict[str, Any]:
        updated = self.conversations.set_block(conversation_id, user_id, blocked, now_utc())
        if updated:
            logger.info("Conversation %s %s by %s", conversation_id, 'blocked' if blocked else 'unblocked', user_id)
            return updated
        conversation = self.get(conversation_id)
        if conversation.get('kind') != ConversationKind.DM.value:
            raise InvalidArgumentError('Only direct conversations can be blocked')
        raise ForbiddenError('You are not a participant of this conversation')

    # =========================================================================
    # Groups
    # =========================================================================

    def create_group(self, creator_id, participant_ids: List, name: str, image: Optional[str] = None,
                     description: Optional[str] = None, settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        wanted = {pid for pid in participant_ids if pid != creator_id}
        found = {u['_id'] for u in self.users.find_many_by_ids(wanted)}
        missing = wanted - found
        if missing:
            raise NotFoundError(f"Users not found: {', '.join(sorted(str(m) for m in missing))}")

        group = GroupConversation(creator_id, list(participant_ids), name, image, description, settings)
        doc = group.to_db_doc()
        doc['_id'] = self.conversations.create(doc)
        logger.info("Group %s created by %s with %d participants", doc['_id'], creator_id, len(doc['participants']))
        return doc

    def add_participant(self, conversation_id, user_id, role: ParticipantRole = ParticipantRole.MEMBER) -> Dict[str, Any]:
        role = parse_enum(ParticipantRole, role, 'role')
        if role not in (ParticipantRole.MEMBER, ParticipantRole.ADMIN):
            raise InvalidArgumentError('Group participants are members or admins')
        conversation = self.get(conversation_id)
        if conversation.get('kind') != ConversationKind.GROUP.value:
            raise InvalidArgumentError('Participants can only be added to group conversations')
        if not self.users.get(user_id):
            raise NotFoundError('User not found')

        max_members = (conversation.get('group_details') or {}).get('settings', {}).get('max_members', MAX_GROUP_MEMBERS)
        updated = self.conversations.push_participant(
            conversation_id, participant_doc(user_id, role), max_members, now_utc()
        )
        if updated:
            logger.info("User %s added to group %s", user_id, conversation_id)
            return updated

        conversation = self.get(conversation_id)
        if is_participant(conversation, user_id):
            return conversation
        raise InvalidArgumentError(f'A group cannot have more than {max_members} members')

    def remove_participant(self, conversation_id, user_id) -> Dict[str, Any]:
        updated = self.conversations.pull_participant(conversation_id, user_id, now_utc())
        if updated:
            logger.info("User %s removed from group %s", user_id, conversation_id)
            return updated
        conversation = self.get(conversation_id)
        if conversation.get('kind') != ConversationKind.GROUP.value:
            raise InvalidArgumentError('Participants can only be removed from group conversations')
        if not is_participant(conversation, user_id):
            return conversation
        raise InvalidArgumentError('A group needs at least 2 participants')

    # =========================================================================
    # Read receipts and last-message pointer
    # =========================================================================

    def mark_read(self, conversation_id, user_id) -> Dict[str, Any]:
        self.get_for_participant(conversation_id, user_id)
        self.conversations.upsert_read_receipt(conversation_id, user_id, now_utc())
        return self.get(conversation_id)

    def update_last_message_pointer(self, conversation_id, message_id):
        try:
            matched = self.conversations.set_last_message(conversation_id, message_id, now_utc())
        except Exception as e:
            logger.exception("Failed to update last message of %s", conversation_id)
            raise LastMessagePointerError(conversation_id, message_id) from e
        if not matched:
            logger.error("Conversation %s vanished before its last message %s was recorded",
                         conversation_id, message_id)
            raise LastMessagePointerError(conversation_id, message_id)
