# core/sql_store.py
"""
Relational entity stores on SQLAlchemy (PostgreSQL in production, SQLite for
development and tests).
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, delete, desc, asc, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.database_models import Base, NewsletterRecord, SubscriptionRecord, UserRecord
from core.entity_store import E, EntitySchema, EntityStore, SortOrder, StorageBackend
from core.errors import ConfigurationError, ConflictError, StorageError

logger = logging.getLogger(__name__)

MODELS = {
    'users': UserRecord,
    'newsletters': NewsletterRecord,
    'subscriptions': SubscriptionRecord,
}


class SQLEntityStore(EntityStore[E]):
    """Entity store backed by one SQLAlchemy mapped table"""

    def __init__(self, schema: EntitySchema[E], session_factory: sessionmaker):
        super().__init__(schema)
        self.model = MODELS[schema.name]
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except IntegrityError as e:
            session.rollback()
            field = self._conflicting_field(str(e.orig))
            raise ConflictError(f"A {self.schema.name} record with this {field or 'key'} already exists",
                                field=field) from e
        except OperationalError as e:
            session.rollback()
            logger.error(f"Database unavailable during {self.schema.name} operation: {e}")
            raise ConfigurationError('Database is unavailable') from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error during {self.schema.name} operation: {e}", exc_info=True)
            raise StorageError(f"Storage failure on {self.schema.name}") from e
        finally:
            session.close()

    def _conflicting_field(self, message: str) -> Optional[str]:
        for name in self.schema.unique_fields + self.schema.sparse_unique_fields:
            if name in message:
                return name
        return None

    def _record(self, row, include_hidden: bool = False) -> E:
        data = {column.name: getattr(row, column.name) for column in self.model.__table__.columns}
        return self._to_entity(data, include_hidden)

    def get(self, entity_id: str, include_hidden: bool = False) -> Optional[E]:
        if not isinstance(entity_id, str):
            return None
        with self._session() as session:
            row = session.get(self.model, entity_id)
            return self._record(row, include_hidden) if row is not None else None

    def find_one(self, criteria: Dict[str, Any], include_hidden: bool = False) -> Optional[E]:
        with self._session() as session:
            row = session.scalars(select(self.model).filter_by(**criteria).limit(1)).first()
            return self._record(row, include_hidden) if row is not None else None

    def find_many(self, criteria: Dict[str, Any], sort: Optional[SortOrder] = None) -> List[E]:
        stmt = select(self.model).filter_by(**criteria)
        if sort is not None:
            column = getattr(self.model, sort.field)
            stmt = stmt.order_by(desc(column) if sort.descending else asc(column))
        with self._session() as session:
            return [self._record(row) for row in session.scalars(stmt).all()]

    def insert(self, values: Dict[str, Any]) -> E:
        with self._session() as session:
            row = self.model(**values)
            session.add(row)
            session.commit()
            return self._record(row)

    def update(self, entity_id: str, patch: Dict[str, Any]) -> Optional[E]:
        if not isinstance(entity_id, str):
            return None
        with self._session() as session:
            row = session.get(self.model, entity_id)
            if row is None:
                return None
            for key, value in patch.items():
                setattr(row, key, value)
            session.commit()
            return self._record(row)

    def delete(self, entity_id: str) -> bool:
        if not isinstance(entity_id, str):
            return False
        with self._session() as session:
            row = session.get(self.model, entity_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def purge(self) -> int:
        with self._session() as session:
            result = session.execute(delete(self.model))
            session.commit()
            return result.rowcount or 0


def build_engine_options(database_url: str, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Engine options per dialect

    In-memory SQLite shares one connection across threads so every session
    sees the same database; PostgreSQL gets pooling and connect timeouts.
    """
    options: Dict[str, Any] = {'pool_pre_ping': True, 'future': True}

    if database_url.startswith('sqlite'):
        options['connect_args'] = {'check_same_thread': False}
        if database_url in ('sqlite://', 'sqlite:///:memory:'):
            options['poolclass'] = StaticPool
    elif database_url.startswith('postgresql'):
        options.update({
            'pool_size': 10,
            'max_overflow': 20,
            'pool_recycle': 3600,
            'connect_args': {
                'application_name': 'newsletter',
                'connect_timeout': 10,
            }
        })

    options.update(overrides or {})
    return options


class SQLBackend(StorageBackend):
    """Relational storage backend"""

    def __init__(self, engine: Engine):
        super().__init__()
        self.engine = engine
        self.database_type = engine.dialect.name
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, engine_options: Optional[Dict[str, Any]] = None) -> 'SQLBackend':
        engine = create_engine(database_url, **build_engine_options(database_url, engine_options))
        return cls(engine)

    def _create_store(self, schema: EntitySchema[E]) -> EntityStore[E]:
        return SQLEntityStore(schema, self._session_factory)

    def initialize(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except OperationalError as e:
            raise ConfigurationError(f"Cannot initialize {self.database_type} schema") from e

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text('SELECT 1'))
        except SQLAlchemyError as e:
            raise ConfigurationError('Database is unavailable') from e

    def close(self) -> None:
        self.engine.dispose()
        logger.info(f"{self.database_type} engine disposed")
