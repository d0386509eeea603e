import logging
from typing import Dict, Iterable, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from chat_server.exception.AppError import ConflictError, InvalidArgumentError
from chat_server.messaging.models import PresenceStatus
from chat_server.repository.base_repository import BaseRepository
from chat_server.repository.mongo_helper import USERS
from chat_server.utils.time_utils import now_utc

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository):
    """Identity store: user records keyed by the external identity id."""
    collection_name = USERS

    def register(self, external_id: str, name: str, email: str) -> Dict:
        if not external_id or not name or not email:
            raise InvalidArgumentError('external_id, name and email are required')
        email = email.strip().lower()
        existing = self.find_one({'$or': [{'external_id': external_id}, {'email': email}]})
        if existing:
            field = 'uid' if existing.get('external_id') == external_id else 'email'
            raise ConflictError(f'User with this {field} already exists')
        now = now_utc()
        doc = {
            'external_id': external_id,
            'name': name.strip(),
            'email': email,
            'presence_status': PresenceStatus.OFFLINE.value,
            'last_seen': None,
            'last_login': now,
            'created_at': now,
            'updated_at': now,
        }
        try:
            doc['_id'] = self.create(doc)
        except DuplicateKeyError:
            raise ConflictError('User already exists')
        logger.info("Registered user %s (%s)", external_id, email)
        return doc

    def get_by_external_id(self, external_id: str) -> Optional[Dict]:
        return self.find_one({'external_id': external_id})

    def get_by_email(self, email: str) -> Optional[Dict]:
        if not email:
            return None
        return self.find_one({'email': email.strip().lower()})

    def find_many_by_ids(self, user_ids: Iterable) -> List[Dict]:
        ids = list({uid for uid in user_ids if uid is not None})
        if not ids:
            return []
        return self.find({'_id': {'$in': ids}})

    def set_presence(self, user_id, status: PresenceStatus) -> Optional[Dict]:
        now = now_utc()
        return self.collection.find_one_and_update(
            {'_id': user_id},
            {'$set': {'presence_status': PresenceStatus(status).value, 'last_seen': now, 'updated_at': now}},
            return_document=ReturnDocument.AFTER,
        )

    def touch_last_login(self, user_id):
        self.collection.update_one({'_id': user_id}, {'$set': {'last_login': now_utc()}})
