import logging

from pymongo import ASCENDING, DESCENDING, MongoClient

logger = logging.getLogger(__name__)

USERS = 'users'
CONVERSATIONS = 'conversations'
MESSAGES = 'messages'


def get_db(mongo_uri, db_name, client_cls=MongoClient):
    """Open a client and return the database handle.

    ``client_cls`` lets tests pass ``mongomock.MongoClient``.
    """
    logger.info("Connecting to MongoDB URI: %s, DB: %s", _redact(mongo_uri), db_name)
    client = client_cls(mongo_uri)
    return client[db_name]


def get_collection(db, collection_name):
    """
    Get a collection from the database, creating it if it does not exist.
    """
    try:
        if collection_name not in db.list_collection_names():
            db.create_collection(collection_name)
            logger.info("Created '%s' collection in DB.", collection_name)
    except Exception as e:
        logger.warning("Error ensuring '%s' collection exists: %s", collection_name, e)
    return db[collection_name]


def ensure_indexes(db):
    """Create the indexes the chat query paths and uniqueness rules depend on (idempotent)."""
    db[USERS].create_index([('external_id', ASCENDING)], unique=True, name='users_external_id')
    db[USERS].create_index([('email', ASCENDING)], unique=True, name='users_email')
    # one DM per unordered pair; groups carry no dm_key
    db[CONVERSATIONS].create_index([('dm_key', ASCENDING)], unique=True, sparse=True, name='conversations_dm_key')
    db[CONVERSATIONS].create_index([('participants.user_id', ASCENDING), ('updated_at', DESCENDING)],
                                   name='conversations_participant_updated_at')
    db[MESSAGES].create_index([('conversation_id', ASCENDING), ('created_at', DESCENDING)],
                              name='messages_conversation_created_at')
    db[MESSAGES].create_index([('conversation_id', ASCENDING), ('status', ASCENDING)],
                              name='messages_conversation_status')
    logger.info('Ensured chat DB indexes')


def _redact(uri):
    if '@' not in uri:
        return uri
    scheme, _, rest = uri.partition('://')
    return f"{scheme}://***@{rest.split('@', 1)[1]}"
