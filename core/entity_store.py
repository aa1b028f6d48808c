# core/entity_store.py
"""
Generic entity store interface.

One `EntityStore` serves one entity type; a `StorageBackend` hands out stores
for every schema and owns the engine connection. The relational and document
backends implement the same contract, so the database adapter never branches
on the engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Tuple, Type, TypeVar

from core.entities import Newsletter, Subscription, User

E = TypeVar('E')


@dataclass(frozen=True)
class EntitySchema(Generic[E]):
    """Engine-independent description of an entity set"""
    name: str
    entity_type: Type[E]
    unique_fields: Tuple[str, ...] = ()
    sparse_unique_fields: Tuple[str, ...] = ()  # unique only when set
    indexed_fields: Tuple[str, ...] = ()
    hidden_fields: Tuple[str, ...] = ()  # stripped from reads unless requested


@dataclass(frozen=True)
class SortOrder:
    field: str
    descending: bool = True


USER_SCHEMA = EntitySchema(
    name='users',
    entity_type=User,
    unique_fields=('email',),
    hidden_fields=('password',),
)

NEWSLETTER_SCHEMA = EntitySchema(
    name='newsletters',
    entity_type=Newsletter,
    sparse_unique_fields=('slug',),
    indexed_fields=('published', 'published_at', 'created_at'),
)

SUBSCRIPTION_SCHEMA = EntitySchema(
    name='subscriptions',
    entity_type=Subscription,
    unique_fields=('email',),
    indexed_fields=('is_active', 'subscribed_at'),
)

ALL_SCHEMAS = (USER_SCHEMA, NEWSLETTER_SCHEMA, SUBSCRIPTION_SCHEMA)


class EntityStore(ABC, Generic[E]):
    """CRUD and equality queries over one entity set"""

    def __init__(self, schema: EntitySchema[E]):
        self.schema = schema

    @abstractmethod
    def get(self, entity_id: str, include_hidden: bool = False) -> Optional[E]:
        """Fetch by id; malformed ids count as not found"""

    @abstractmethod
    def find_one(self, criteria: Dict[str, Any], include_hidden: bool = False) -> Optional[E]:
        """First entity whose fields equal every value in criteria"""

    @abstractmethod
    def find_many(self, criteria: Dict[str, Any], sort: Optional[SortOrder] = None) -> List[E]:
        """All matching entities, optionally ordered"""

    @abstractmethod
    def insert(self, values: Dict[str, Any]) -> E:
        """Persist a new entity and return it as stored"""

    @abstractmethod
    def update(self, entity_id: str, patch: Dict[str, Any]) -> Optional[E]:
        """Apply patch and return the full updated entity, None if missing"""

    @abstractmethod
    def delete(self, entity_id: str) -> bool:
        """Remove by id; False when nothing matched"""

    @abstractmethod
    def purge(self) -> int:
        """Remove every entity of this type, returning the count"""

    def _to_entity(self, record: Dict[str, Any], include_hidden: bool = False) -> E:
        """Map a normalized record (single `id` key) onto the entity type"""
        if not include_hidden:
            for name in self.schema.hidden_fields:
                record.pop(name, None)
        return self.schema.entity_type.from_record(record)


class StorageBackend(ABC):
    """Owns the engine connection and builds one store per schema"""

    database_type: str = ''

    def __init__(self):
        self._stores: Dict[str, EntityStore] = {}

    def store(self, schema: EntitySchema[E]) -> EntityStore[E]:
        if schema.name not in self._stores:
            self._stores[schema.name] = self._create_store(schema)
        return self._stores[schema.name]

    @abstractmethod
    def _create_store(self, schema: EntitySchema[E]) -> EntityStore[E]:
        pass

    @abstractmethod
    def initialize(self) -> None:
        """Create tables/indexes; safe to call repeatedly"""

    @abstractmethod
    def ping(self) -> None:
        """Round-trip to the engine; raises ConfigurationError when unreachable"""

    @abstractmethod
    def close(self) -> None:
        pass
