"""Message repository.

Reactions and deletion history are embedded arrays; each mutation is a single
``find_one_and_update`` filtered on the state that must hold for it to apply.
"""
import logging
import re
from datetime import datetime
from typing import Optional, Dict, Any, List, Iterable

from pymongo import ReturnDocument, ASCENDING, DESCENDING

from chat_server.messaging.models import DeletedFor, MessageStatus
from chat_server.repository.base_repository import BaseRepository
from chat_server.repository.mongo_helper import MESSAGES

logger = logging.getLogger(__name__)

NOT_DELETED_FOR_EVERYONE = {'deletion_history.deleted_for': {'$ne': DeletedFor.EVERYONE.value}}


def _not_hidden_for(user_id) -> Dict[str, Any]:
    return {'deletion_history': {'$not': {'$elemMatch': {'deleted_for': DeletedFor.ME.value, 'user_id': user_id}}}}


class MessageRepository(BaseRepository):
    collection_name = MESSAGES

    def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        doc['_id'] = self.create(doc)
        return doc

    def get_many(self, message_ids: Iterable) -> List[Dict[str, Any]]:
        ids = list({mid for mid in message_ids if mid is not None})
        if not ids:
            return []
        return self.find({'_id': {'$in': ids}})

    # =========================================================================
    # Conditional mutations
    # =========================================================================

    def advance_status(self, message_id, new_status: MessageStatus, now: datetime) -> Optional[Dict[str, Any]]:
        """Move the status forward; never matches when it would regress or repeat."""
        lower = [s.value for s in MessageStatus if s.rank < new_status.rank]
        return self.collection.find_one_and_update(
            {'_id': message_id, 'status': {'$in': lower}},
            {'$set': {'status': new_status.value, 'updated_at': now}},
            return_document=ReturnDocument.AFTER,
        )

    def mark_delivered_if_sent(self, message_id, now: datetime) -> Optional[Dict[str, Any]]:
        return self.collection.find_one_and_update(
            {'_id': message_id, 'status': MessageStatus.SENT.value},
            {'$set': {'status': MessageStatus.DELIVERED.value, 'updated_at': now}},
            return_document=ReturnDocument.AFTER,
        )

    def edit_content(self, message_id, sender_id, content: str, now: datetime) -> Optional[Dict[str, Any]]:
        query = {'_id': message_id, 'sender_id': sender_id}
        query.update(NOT_DELETED_FOR_EVERYONE)
        return self.collection.find_one_and_update(
            query,
            {'$set': {'content': content, 'edited': True, 'edited_at': now, 'updated_at': now}},
            return_document=ReturnDocument.AFTER,
        )

    def delete_for_everyone(self, message_id, sender_id, not_before: datetime, now: datetime) -> Optional[Dict[str, Any]]:
        query = {'_id': message_id, 'sender_id': sender_id, 'created_at': {'$gte': not_before}}
        query.update(NOT_DELETED_FOR_EVERYONE)
        entry = {'deleted_for': DeletedFor.EVERYONE.value, 'user_id': sender_id, 'time': now}
        return self.collection.find_one_and_update(
            query,
            {'$push': {'deletion_history': entry}, '$set': {'updated_at': now}},
            return_document=ReturnDocument.AFTER,
        )

    def delete_for_user(self, message_id, user_id, now: datetime) -> Optional[Dict[str, Any]]:
        query = {'_id': message_id}
        query.update(_not_hidden_for(user_id))
        entry = {'deleted_for': DeletedFor.ME.value, 'user_id': user_id, 'time': now}
        return self.collection.find_one_and_update(
            query,
            {'$push': {'deletion_history': entry}, '$set': {'updated_at': now}},
            return_document=ReturnDocument.AFTER,
        )

    def push_reaction(self, message_id, user_id, emoji: str, now: datetime) -> Optional[Dict[str, Any]]:
        return self.collection.find_one_and_update(
            {'_id': message_id, 'reactions': {'$not': {'$elemMatch': {'user_id': user_id, 'emoji': emoji}}}},
            {'$push': {'reactions': {'user_id': user_id, 'emoji': emoji, 'reacted_at': now}},
             '$set': {'updated_at': now}},
            return_document=ReturnDocument.AFTER,
        )

    def pull_reaction(self, message_id, user_id, emoji: str, now: datetime) -> Optional[Dict[str, Any]]:
        return self.collection.find_one_and_update(
            {'_id': message_id},
            {'$pull': {'reactions': {'user_id': user_id, 'emoji': emoji}}, '$set': {'updated_at': now}},
            return_document=ReturnDocument.AFTER,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def _feed_query(self, conversation_id, viewer_id, search: Optional[str] = None) -> Dict[str, Any]:
        query = {'conversation_id': conversation_id}
        query.update(_not_hidden_for(viewer_id))
        if search:
            # placeholder rows must not match on the retracted text
            query['content'] = {'$regex': re.escape(search), '$options': 'i'}
            query.update(NOT_DELETED_FOR_EVERYONE)
        return query

    def feed(self, conversation_id, viewer_id, skip: int = 0, limit: int = 50,
             search: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.find(self._feed_query(conversation_id, viewer_id, search),
                         sort=[('created_at', DESCENDING), ('_id', DESCENDING)], skip=skip, limit=limit)

    def feed_count(self, conversation_id, viewer_id, search: Optional[str] = None) -> int:
        return self.count(self._feed_query(conversation_id, viewer_id, search))

    def undelivered_for(self, conversation_ids: List, recipient_id) -> List[Dict[str, Any]]:
        """Messages in ``conversation_ids`` still ``sent`` that ``recipient_id`` did not author."""
        if not conversation_ids:
            return []
        return self.find(
            {
                'conversation_id': {'$in': conversation_ids},
                'status': MessageStatus.SENT.value,
                'sender_id': {'$ne': recipient_id},
            },
            sort=[('created_at', ASCENDING)],
        )

    def count_unread(self, conversation_id, user_id, since: Optional[datetime]) -> int:
        query = {'conversation_id': conversation_id, 'sender_id': {'$ne': user_id}}
        query.update(_not_hidden_for(user_id))
        if since is not None:
            query['created_at'] = {'$gt': since}
        return self.count(query)
