# core/document_store.py
"""
Document entity stores on MongoDB through pymongo.

Documents carry a native `_id` ObjectId; records leaving this module carry a
single `id` string instead. Unset fields are left out of the document rather
than stored as null, which keeps sparse unique indexes (newsletter slugs)
from colliding on missing values.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from core.entity_store import ALL_SCHEMAS, E, EntitySchema, EntityStore, SortOrder, StorageBackend
from core.errors import ConfigurationError, ConflictError, StorageError

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_NAME = 'newsletter'


def _object_id(entity_id: Any) -> Optional[ObjectId]:
    try:
        return ObjectId(entity_id)
    except (InvalidId, TypeError):
        return None


class DocumentEntityStore(EntityStore[E]):
    """Entity store backed by one MongoDB collection"""

    def __init__(self, schema: EntitySchema[E], collection: Collection):
        super().__init__(schema)
        self.collection = collection

    @contextmanager
    def _errors(self) -> Iterator[None]:
        try:
            yield
        except DuplicateKeyError as e:
            field = self._conflicting_field(e)
            raise ConflictError(f"A {self.schema.name} record with this {field or 'key'} already exists",
                                field=field) from e
        except ConnectionFailure as e:
            logger.error(f"MongoDB unavailable during {self.schema.name} operation: {e}")
            raise ConfigurationError('Database is unavailable') from e
        except PyMongoError as e:
            logger.error(f"MongoDB error during {self.schema.name} operation: {e}", exc_info=True)
            raise StorageError(f"Storage failure on {self.schema.name}") from e

    def _conflicting_field(self, error: DuplicateKeyError) -> Optional[str]:
        details = error.details or {}
        key_value = details.get('keyValue') or details.get('keyPattern') or {}
        message = str(error)
        for name in self.schema.unique_fields + self.schema.sparse_unique_fields:
            if name in key_value or name in message:
                return name
        return None

    def _record(self, document: Dict[str, Any], include_hidden: bool = False) -> E:
        record = dict(document)
        record['id'] = str(record.pop('_id'))
        return self._to_entity(record, include_hidden)

    def get(self, entity_id: str, include_hidden: bool = False) -> Optional[E]:
        oid = _object_id(entity_id)
        if oid is None:
            return None
        with self._errors():
            document = self.collection.find_one({'_id': oid})
        return self._record(document, include_hidden) if document else None

    def find_one(self, criteria: Dict[str, Any], include_hidden: bool = False) -> Optional[E]:
        with self._errors():
            document = self.collection.find_one(criteria)
        return self._record(document, include_hidden) if document else None

    def find_many(self, criteria: Dict[str, Any], sort: Optional[SortOrder] = None) -> List[E]:
        with self._errors():
            cursor = self.collection.find(criteria)
            if sort is not None:
                cursor = cursor.sort(sort.field, DESCENDING if sort.descending else ASCENDING)
            documents = list(cursor)
        return [self._record(document) for document in documents]

    def insert(self, values: Dict[str, Any]) -> E:
        document = {key: value for key, value in values.items() if value is not None}
        with self._errors():
            result = self.collection.insert_one(document)
        document['_id'] = result.inserted_id
        return self._record(document)

    def update(self, entity_id: str, patch: Dict[str, Any]) -> Optional[E]:
        oid = _object_id(entity_id)
        if oid is None:
            return None

        to_set = {key: value for key, value in patch.items() if value is not None}
        to_unset = {key: '' for key, value in patch.items() if value is None}
        operations: Dict[str, Any] = {}
        if to_set:
            operations['$set'] = to_set
        if to_unset:
            operations['$unset'] = to_unset

        with self._errors():
            if not operations:
                document = self.collection.find_one({'_id': oid})
            else:
                document = self.collection.find_one_and_update(
                    {'_id': oid}, operations, return_document=ReturnDocument.AFTER
                )
        return self._record(document) if document else None

    def delete(self, entity_id: str) -> bool:
        oid = _object_id(entity_id)
        if oid is None:
            return False
        with self._errors():
            result = self.collection.delete_one({'_id': oid})
        return result.deleted_count == 1

    def purge(self) -> int:
        with self._errors():
            result = self.collection.delete_many({})
        return result.deleted_count


class DocumentBackend(StorageBackend):
    """MongoDB storage backend"""

    database_type = 'mongodb'

    def __init__(self, client: MongoClient, database_name: Optional[str] = None):
        super().__init__()
        self.client = client
        if database_name:
            self.db = client[database_name]
        else:
            self.db = client.get_default_database(DEFAULT_DATABASE_NAME)

    @classmethod
    def from_uri(cls, uri: str, server_selection_timeout_ms: int = 5000) -> 'DocumentBackend':
        client = MongoClient(uri, serverSelectionTimeoutMS=server_selection_timeout_ms, tz_aware=False)
        return cls(client)

    def _create_store(self, schema: EntitySchema[E]) -> EntityStore[E]:
        return DocumentEntityStore(schema, self.db[schema.name])

    def initialize(self) -> None:
        """Create unique and lookup indexes for every collection"""
        try:
            for schema in ALL_SCHEMAS:
                collection = self.db[schema.name]
                for name in schema.unique_fields:
                    collection.create_index(name, unique=True)
                for name in schema.sparse_unique_fields:
                    collection.create_index(name, unique=True, sparse=True)
                for name in schema.indexed_fields:
                    collection.create_index(name)
        except ConnectionFailure as e:
            raise ConfigurationError('Cannot initialize MongoDB indexes') from e
        logger.info(f"MongoDB indexes ensured on database {self.db.name}")

    def ping(self) -> None:
        try:
            self.client.admin.command('ping')
        except PyMongoError as e:
            raise ConfigurationError('Database is unavailable') from e

    def close(self) -> None:
        self.client.close()
        logger.info("MongoDB client closed")
