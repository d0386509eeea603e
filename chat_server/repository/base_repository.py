from abc import ABC

from chat_server.repository.mongo_helper import get_collection


class BaseRepository(ABC):
    """Thin wrapper around one collection; subclasses add the domain queries."""
    collection_name = None

    def __init__(self, db, collection_name=None):
        self.collection_name = collection_name or self.collection_name
        self.collection = get_collection(db, self.collection_name)

    def create(self, data):
        """Insert a new document and return its ObjectId."""
        return self.collection.insert_one(data).inserted_id

    def find(self, query=None, sort=None, skip=0, limit=0):
        cursor = self.collection.find(query or {})
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def find_one(self, query):
        return self.collection.find_one(query)

    def get(self, doc_id):
        return self.collection.find_one({'_id': doc_id})

    def count(self, query=None):
        return self.collection.count_documents(query or {})
