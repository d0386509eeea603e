"""Conversation repository.

Every state transition is one conditional update whose filter encodes the
allowed source state, so concurrent callers cannot overwrite each other.
A ``None`` result means the filter did not match; the engine re-reads the
document to decide which error to report.
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple

from pymongo import ReturnDocument, DESCENDING
from pymongo.errors import DuplicateKeyError

from chat_server.messaging.models import (
    ConversationKind, ConversationStatus, dm_key_for
)
from chat_server.repository.base_repository import BaseRepository
from chat_server.repository.mongo_helper import CONVERSATIONS

logger = logging.getLogger(__name__)


class ConversationRepository(BaseRepository):
    """Repository for DM and group conversations."""
    collection_name = CONVERSATIONS

    # =========================================================================
    # Creation
    # =========================================================================

    def insert_dm_if_absent(self, doc: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        """Insert a DM unless one already exists for the same pair.

        Returns ``(conversation, created)``. The upsert on ``dm_key`` is a single
        atomic operation; the unique index turns a lost race into a re-read.
        """
        dm_key = doc['dm_key']
        on_insert = {k: v for k, v in doc.items() if k != 'dm_key'}
        try:
            before = self.collection.find_one_and_update(
                {'dm_key': dm_key},
                {'$setOnInsert': on_insert},
                upsert=True,
                return_document=ReturnDocument.BEFORE,
            )
        except DuplicateKeyError:
            logger.debug("Concurrent DM insert for %s, reading winner", dm_key)
            before = self.collection.find_one({'dm_key': dm_key})
        if before is not None:
            return before, False
        return self.collection.find_one({'dm_key': dm_key}), True

    def reopen_rejected_dm(self, conversation_id, requester_id, participants: List[Dict[str, Any]],
                           now: datetime) -> Optional[Dict[str, Any]]:
        """Move a rejected DM back to pending with ``requester_id`` as the initiator.

        ``participants`` carries the roles already reassigned to match.
        """
        return self.collection.find_one_and_update(
            {'_id': conversation_id, 'conversation_status': ConversationStatus.REJECTED.value},
            {
                '$set': {
                    'conversation_status': ConversationStatus.PENDING.value,
                    'initiated_by': requester_id,
                    'participants': participants,
                    'initiated_at': now,
                    'updated_at': now,
                },
                '$unset': {'responded_by': '', 'response_action': '', 'response_time': ''},
            },
            return_document=ReturnDocument.AFTER,
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    def transition_status(self, conversation_id, user_id, allowed_from: List[str], new_status: str,
                          now: datetime) -> Optional[Dict[str, Any]]:
        return self.collection.find_one_and_update(
            {
                '_id': conversation_id,
                'participants.user_id': user_id,
                'conversation_status': {'$in': allowed_from},
            },
            {'$set': {
                'conversation_status': new_status,
                'responded_by': user_id,
                'response_action': new_status,
                'response_time': now,
                'updated_at': now,
            }},
            return_document=ReturnDocument.AFTER,
        )

    def set_block(self, conversation_id, user_id, blocked: bool, now: datetime) -> Optional[Dict[str, Any]]:
        block_details = {'is_blocked': blocked, 'blocked_by': user_id if blocked else None, 'time': now}
        return self.collection.find_one_and_update(
            {'_id': conversation_id, 'kind': ConversationKind.DM.value, 'participants.user_id': user_id},
            {'$set': {'block_details': block_details, 'updated_at': now}},
            return_document=ReturnDocument.AFTER,
        )

    def push_participant(self, conversation_id, participant: Dict[str, Any], max_members: int,
                         now: datetime) -> Optional[Dict[str, Any]]:
        return self.collection.find_one_and_update(
            {
                '_id': conversation_id,
                'kind': ConversationKind.GROUP.value,
                'participants.user_id': {'$ne': participant['user_id']},
                f'participants.{max_members - 1}': {'$exists': False},
            },
            {'$push': {'participants': participant}, '$set': {'updated_at': now}},
            return_document=ReturnDocument.AFTER,
        )

    def pull_participant(self, conversation_id, user_id, now: datetime) -> Optional[Dict[str, Any]]:
        # a group keeps at least two members, so only pull from groups of three or more
        return self.collection.find_one_and_update(
            {
                '_id': conversation_id,
                'kind': ConversationKind.GROUP.value,
                'participants.user_id': user_id,
                'participants.2': {'$exists': True},
            },
            {'$pull': {'participants': {'user_id': user_id}}, '$set': {'updated_at': now}},
            return_document=ReturnDocument.AFTER,
        )

    def upsert_read_receipt(self, conversation_id, user_id, now: datetime) -> bool:
        """Set the caller's ``last_read_at``, adding the receipt row on first read."""
        for _ in range(2):
            result = self.collection.update_one(
                {'_id': conversation_id, 'read_receipts.user_id': user_id},
                {'$set': {'read_receipts.$.last_read_at': now}},
            )
            if result.matched_count:
                return True
            result = self.collection.update_one(
                {'_id': conversation_id, 'read_receipts.user_id': {'$ne': user_id}},
                {'$push': {'read_receipts': {'user_id': user_id, 'last_read_at': now}}},
            )
            if result.matched_count:
                return True
        return False

    def set_last_message(self, conversation_id, message_id, now: datetime) -> int:
        result = self.collection.update_one(
            {'_id': conversation_id},
            {'$set': {'last_message_id': message_id, 'updated_at': now}},
        )
        return result.matched_count

    # =========================================================================
    # Reads
    # =========================================================================

    def find_for_participant(self, user_id, status: Optional[str] = None, kind: Optional[str] = None,
                             skip: int = 0, limit: int = 0) -> List[Dict[str, Any]]:
        query = {'participants.user_id': user_id}
        if status:
            query['conversation_status'] = status
        if kind:
            query['kind'] = kind
        return self.find(query, sort=[('updated_at', DESCENDING)], skip=skip, limit=limit)

    def count_for_participant(self, user_id, status: Optional[str] = None, kind: Optional[str] = None) -> int:
        query = {'participants.user_id': user_id}
        if status:
            query['conversation_status'] = status
        if kind:
            query['kind'] = kind
        return self.count(query)

    def find_initiated_by(self, user_id) -> List[Dict[str, Any]]:
        return self.find({'initiated_by': user_id}, sort=[('updated_at', DESCENDING)])

    def find_dm_between(self, user_a, user_b) -> Optional[Dict[str, Any]]:
        return self.find_one({'dm_key': dm_key_for(user_a, user_b)})

    def accepted_ids_for(self, user_id) -> List:
        cursor = self.collection.find(
            {'participants.user_id': user_id, 'conversation_status': ConversationStatus.ACCEPTED.value},
            {'_id': 1},
        )
        return [doc['_id'] for doc in cursor]
