"""Read-only views over conversations and messages.

Views resolve the other participant of a DM (or the group's display data),
join the last message and apply the message visibility rule. Deletion
bookkeeping is used for filtering but never returned.
"""
import logging
from datetime import timedelta
from typing import Optional, Dict, Any, List

from chat_server.exception.AppError import NotFoundError, ForbiddenError
from chat_server.messaging.models import (
    ConversationKind, ConversationStatus, apply_visibility, is_deleted_for_everyone,
    is_participant, participant_ids,
)
from chat_server.repository.conversation_repository import ConversationRepository
from chat_server.repository.message_repository import MessageRepository
from chat_server.repository.user_repository import UserRepository
from chat_server.utils.time_utils import now_utc

logger = logging.getLogger(__name__)

DEFAULT_PLACEHOLDER = 'This message was deleted'


def user_summary(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    return {
        '_id': user['_id'],
        'uid': user.get('external_id'),
        'name': user.get('name'),
        'email': user.get('email'),
        'presence_status': user.get('presence_status'),
        'last_seen': user.get('last_seen'),
    }


class ProjectionService:

    def __init__(self, users: UserRepository, conversations: ConversationRepository, messages: MessageRepository,
                 placeholder: str = DEFAULT_PLACEHOLDER, retraction_window_seconds: int = 600):
        self.users = users
        self.conversations = conversations
        self.messages = messages
        self.placeholder = placeholder
        self.retraction_window_seconds = retraction_window_seconds

    # =========================================================================
    # Conversation views
    # =========================================================================

    def list_for_user(self, user_id, status: Optional[str] = None, kind: Optional[str] = None,
                      limit: int = 50, skip: int = 0) -> Dict[str, Any]:
        docs = self.conversations.find_for_participant(user_id, status=status, kind=kind, skip=skip, limit=limit)
        total = self.conversations.count_for_participant(user_id, status=status, kind=kind)
        return {'conversations': self._conversation_views(docs, user_id), 'total_count': total}

    def list_initiated_by(self, user_id) -> List[Dict[str, Any]]:
        return self._conversation_views(self.conversations.find_initiated_by(user_id), user_id)

    def find_direct_between(self, user_id, other_user_id) -> Optional[Dict[str, Any]]:
        doc = self.conversations.find_dm_between(user_id, other_user_id)
        if not doc:
            return None
        return self._conversation_views([doc], user_id)[0]

    def get_for_user(self, user_id, conversation_id) -> Dict[str, Any]:
        doc = self.conversations.get(conversation_id)
        if not doc or not is_participant(doc, user_id):
            raise NotFoundError('Conversation not found')
        view = self._conversation_views([doc], user_id)[0]
        members = {u['_id']: u for u in self.users.find_many_by_ids(participant_ids(doc))}
        view['members'] = [
            {
                'user': user_summary(members.get(p['user_id'])),
                'role': p.get('role'),
                'membership_state': p.get('membership_state'),
                'joined_at': p.get('joined_at'),
            }
            for p in doc.get('participants', [])
        ]
        view['read_receipts'] = doc.get('read_receipts', [])
        for field in ('responded_by', 'response_action', 'response_time', 'initiated_at'):
            view[field] = doc.get(field)
        return view

    def _conversation_views(self, docs: List[Dict[str, Any]], viewer_id) -> List[Dict[str, Any]]:
        user_ids = set()
        for doc in docs:
            user_ids.update(participant_ids(doc))
        last_messages = {m['_id']: m for m in self.messages.get_many(d.get('last_message_id') for d in docs)}
        user_ids.update(m['sender_id'] for m in last_messages.values())
        users = {u['_id']: u for u in self.users.find_many_by_ids(user_ids)}

        views = []
        for doc in docs:
            if doc.get('kind') == ConversationKind.DM.value:
                other = next((pid for pid in participant_ids(doc) if pid != viewer_id), None)
                display = user_summary(users.get(other))
            else:
                details = doc.get('group_details') or {}
                display = {'name': details.get('name'), 'image': details.get('image'),
                           'description': details.get('description')}

            last = last_messages.get(doc.get('last_message_id'))
            preview = self._last_message_preview(last, viewer_id, users)
            views.append({
                '_id': doc['_id'],
                'kind': doc.get('kind'),
                'conversation_status': doc.get('conversation_status'),
                'participants': display,
                'initiated_by': doc.get('initiated_by'),
                'block_details': doc.get('block_details'),
                'last_message': preview,
                'has_unread': self._has_unread(doc, last, viewer_id),
                'created_at': doc.get('created_at'),
                'updated_at': doc.get('updated_at'),
            })
        return views

    def _last_message_preview(self, message, viewer_id, users) -> Optional[Dict[str, Any]]:
        if not message:
            return None
        view = apply_visibility(message, viewer_id, self.placeholder)
        if view is None:
            return None
        sender = users.get(view['sender_id']) or {}
        return {
            '_id': view['_id'],
            'sender_id': view['sender_id'],
            'sender_name': sender.get('name'),
            'type': view.get('type'),
            'content': view.get('content'),
            'is_deleted': view.get('is_deleted'),
            'created_at': view.get('created_at'),
            'updated_at': view.get('updated_at'),
        }

    @staticmethod
    def _has_unread(conversation, last_message, viewer_id) -> bool:
        if not last_message or last_message.get('sender_id') == viewer_id:
            return False
        receipt = next((r for r in conversation.get('read_receipts', []) if r.get('user_id') == viewer_id), None)
        if not receipt or not receipt.get('last_read_at'):
            return True
        return last_message['created_at'] > receipt['last_read_at']

    # =========================================================================
    # Message views
    # =========================================================================

    def message_feed(self, conversation_id, viewer_id, limit: int = 50, skip: int = 0,
                     search: Optional[str] = None) -> Dict[str, Any]:
        conversation = self.conversations.get(conversation_id)
        if not conversation:
            raise NotFoundError('Conversation not found')
        if conversation.get('conversation_status') != ConversationStatus.ACCEPTED.value:
            raise ForbiddenError('Conversation is not accepted')
        if not is_participant(conversation, viewer_id):
            raise ForbiddenError('You are not authorized to view this conversation')

        docs = self.messages.feed(conversation_id, viewer_id, skip=skip, limit=limit, search=search)
        total = self.messages.feed_count(conversation_id, viewer_id, search=search)
        return {'messages': self.message_views(docs, viewer_id), 'total_count': total}

    def message_views(self, docs: List[Dict[str, Any]], viewer_id) -> List[Dict[str, Any]]:
        replies = {m['_id']: m for m in self.messages.get_many(d.get('reply_to') for d in docs)}
        user_ids = {d['sender_id'] for d in docs}
        user_ids.update(m['sender_id'] for m in replies.values())
        for doc in docs:
            user_ids.update(r['user_id'] for r in doc.get('reactions', []))
        users = {u['_id']: u for u in self.users.find_many_by_ids(user_ids)}

        views = []
        now = now_utc()
        window = timedelta(seconds=self.retraction_window_seconds)
        for doc in docs:
            view = apply_visibility(doc, viewer_id, self.placeholder)
            if view is None:
                continue
            view['sender'] = user_summary(users.get(doc['sender_id']))
            view['reply_to'] = self._reply_preview(replies.get(doc.get('reply_to')), viewer_id, users)
            view['reactions'] = [
                {'emoji': r['emoji'], 'reacted_at': r.get('reacted_at'), 'user': user_summary(users.get(r['user_id']))}
                for r in doc.get('reactions', [])
            ]
            view['can_delete_for_everyone'] = (
                doc['sender_id'] == viewer_id
                and not is_deleted_for_everyone(doc)
                and now - doc['created_at'] <= window
            )
            view['can_delete_for_me'] = True
            views.append(view)
        return views

    def _reply_preview(self, message, viewer_id, users) -> Optional[Dict[str, Any]]:
        if not message:
            return None
        view = apply_visibility(message, viewer_id, self.placeholder)
        if view is None:
            return None
        sender = users.get(view['sender_id']) or {}
        return {
            '_id': view['_id'],
            'content': view.get('content'),
            'type': view.get('type'),
            'sender_id': view['sender_id'],
            'sender_name': sender.get('name'),
        }

    def broadcast_view(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Viewer-independent rendering used for room broadcasts."""
        view = apply_visibility(message, None, self.placeholder)
        sender = self.users.get(message['sender_id'])
        view['sender'] = user_summary(sender)
        return view
