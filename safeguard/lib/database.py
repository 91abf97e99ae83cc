"""
Persistence collaborator: repository interface plus in-memory and PostgreSQL
implementations.

Every entity lives in its own collection keyed by id. Writes that move a
state machine go through `update`, which is conditional on the version the
caller read, so concurrent writers cannot silently overwrite each other.
"""
import copy
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar
from urllib.parse import urlparse

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2 import pool
from psycopg2.extras import Json, RealDictCursor

from safeguard.lib.errors import (
    ConcurrencyConflictError, DuplicateError, NotFoundError, PersistenceError
)
from safeguard.models.base import Entity
from safeguard.models.content import ContentFilter, ModerationRecord
from safeguard.models.reports import (
    ContentReport, Notification, ReportCategory, ReportSubmission, ReportTemplate
)
from safeguard.models.review import ModerationAction, ModerationQueueEntry
from safeguard.models.security import (
    BlockedIP, RateLimitRecord, SecurityAlert, SecurityConfigEntry,
    SecurityEvent, SecurityThreat
)
from safeguard.models.user import AppealRequest, UserModerationStatus

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)

ENTITY_MODELS: List[Type[Entity]] = [
    ModerationRecord,
    ModerationQueueEntry,
    ModerationAction,
    UserModerationStatus,
    AppealRequest,
    ContentReport,
    ReportCategory,
    ReportTemplate,
    ReportSubmission,
    Notification,
    ContentFilter,
    SecurityEvent,
    SecurityThreat,
    SecurityAlert,
    RateLimitRecord,
    BlockedIP,
    SecurityConfigEntry,
]

_TIMESTAMP_COLUMNS = {"created_at", "updated_at"}
_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass
class Query:
    """
    Filtered listing: field equality, field inequality and a created_at range
    (inclusive on both ends).
    """
    equals: Dict[str, Any] = field(default_factory=dict)
    not_equals: Dict[str, Any] = field(default_factory=dict)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    order_by: str = "created_at"
    descending: bool = True
    limit: Optional[int] = None

    def where(self, **equals: Any) -> "Query":
        self.equals.update({k: v for k, v in equals.items() if v is not None})
        return self

    def matches(self, entity: Entity) -> bool:
        for name, expected in self.equals.items():
            if _plain(getattr(entity, name, None)) != _plain(expected):
                return False
        for name, rejected in self.not_equals.items():
            if _plain(getattr(entity, name, None)) == _plain(rejected):
                return False
        if self.start_date is not None and entity.created_at < self.start_date:
            return False
        if self.end_date is not None and entity.created_at > self.end_date:
            return False
        return True


class ModerationRepository(ABC):
    """CRUD plus filtered listing and version-conditional updates."""

    @abstractmethod
    def insert(self, entity: E) -> E:
        """Store a new row. Raises DuplicateError when the id (or a unique key) exists."""

    @abstractmethod
    def get(self, model: Type[E], entity_id: str) -> Optional[E]:
        pass

    @abstractmethod
    def update(self, entity: E) -> E:
        """
        Replace a row only if its stored version equals `entity.version`.
        Returns the stored row with the incremented version.
        """

    @abstractmethod
    def upsert(self, entity: E) -> E:
        """Insert, or overwrite regardless of version."""

    @abstractmethod
    def find(self, model: Type[E], query: Optional[Query] = None) -> List[E]:
        pass

    @abstractmethod
    def delete(self, model: Type[E], entity_id: str) -> bool:
        pass

    def require(self, model: Type[E], entity_id: str) -> E:
        entity = self.get(model, entity_id)
        if entity is None:
            raise NotFoundError(model.collection, entity_id)
        return entity

    def count(self, model: Type[E], query: Optional[Query] = None) -> int:
        return len(self.find(model, query))

    def delete_where(self, model: Type[E], query: Query) -> int:
        removed = 0
        for entity in self.find(model, query):
            if self.delete(model, entity.id):
                removed += 1
        return removed


class InMemoryRepository(ModerationRepository):
    """Thread-safe dictionary store used in tests and single-process deployments."""

    def __init__(self):
        self._lock = threading.Lock()
        self._tables: Dict[str, Dict[str, Entity]] = {}

    def _table(self, collection: str) -> Dict[str, Entity]:
        return self._tables.setdefault(collection, {})

    def insert(self, entity: E) -> E:
        with self._lock:
            table = self._table(entity.collection)
            if entity.id in table:
                raise DuplicateError(entity.collection, entity.id)
            stored = entity.model_copy(deep=True)
            table[entity.id] = stored
            return stored.model_copy(deep=True)

    def get(self, model: Type[E], entity_id: str) -> Optional[E]:
        with self._lock:
            entity = self._table(model.collection).get(entity_id)
            return entity.model_copy(deep=True) if entity is not None else None

    def update(self, entity: E) -> E:
        with self._lock:
            table = self._table(entity.collection)
            current = table.get(entity.id)
            if current is None:
                raise NotFoundError(entity.collection, entity.id)
            if current.version != entity.version:
                raise ConcurrencyConflictError(entity.collection, entity.id, entity.version)
            stored = entity.model_copy(update={"version": entity.version + 1}, deep=True)
            table[entity.id] = stored
            return stored.model_copy(deep=True)

    def upsert(self, entity: E) -> E:
        with self._lock:
            table = self._table(entity.collection)
            current = table.get(entity.id)
            version = current.version + 1 if current is not None else 0
            updates = {"version": version}
            if current is not None:
                updates["created_at"] = current.created_at
            stored = entity.model_copy(update=updates, deep=True)
            table[entity.id] = stored
            return stored.model_copy(deep=True)

    def find(self, model: Type[E], query: Optional[Query] = None) -> List[E]:
        query = query or Query()
        with self._lock:
            rows = [e for e in self._table(model.collection).values() if query.matches(e)]
            rows = copy.copy(rows)
        rows.sort(
            key=lambda e: _plain(getattr(e, query.order_by)),
            reverse=query.descending,
        )
        if query.limit is not None:
            rows = rows[:query.limit]
        return [e.model_copy(deep=True) for e in rows]

    def delete(self, model: Type[E], entity_id: str) -> bool:
        with self._lock:
            return self._table(model.collection).pop(entity_id, None) is not None


class PostgresRepository(ModerationRepository):
    """
    PostgreSQL store: one JSONB table per collection.

    Equality filters use JSONB containment; the partial unique index on the
    queue table enforces one open entry per content_id across processes.
    """

    def __init__(self, minconn: int = 1, maxconn: int = 20):
        self.connection_pool = None
        self._initialize_pool(minconn, maxconn)

    def _initialize_pool(self, minconn: int, maxconn: int):
        """Create connection pool"""
        try:
            database_url = os.getenv("DATABASE_URL")

            if database_url:
                parsed = urlparse(database_url)
                host = parsed.hostname or "localhost"
                port = parsed.port or 5432
                database = (parsed.path or "/").lstrip("/") or "safeguard"
                user = parsed.username or "postgres"
                password = parsed.password or "postgres"
            else:
                host = os.getenv('DB_HOST', 'localhost')
                port = int(os.getenv('DB_PORT', '5432'))
                database = os.getenv('DB_NAME', 'safeguard')
                user = os.getenv('DB_USER', 'postgres')
                password = os.getenv('DB_PASSWORD', 'postgres')

            timeout_ms = int(os.getenv('DB_STATEMENT_TIMEOUT_MS', '5000'))

            self.connection_pool = pool.ThreadedConnectionPool(
                minconn=minconn,
                maxconn=maxconn,
                host=host,
                port=int(port),
                database=database,
                user=user,
                password=password,
                options=f"-c statement_timeout={timeout_ms}",
            )
            logger.info("Database connection pool initialized")
        except psycopg2.Error as e:
            logger.error(f"Failed to create connection pool: {e}")
            raise PersistenceError(str(e)) from e

    @contextmanager
    def get_cursor(self, cursor_factory=RealDictCursor) -> Iterator[Any]:
        """Get database cursor with automatic connection handling"""
        try:
            conn = self.connection_pool.getconn()
        except psycopg2.Error as e:
            logger.error(f"Could not get database connection: {e}")
            raise PersistenceError(str(e)) from e
        cursor = None
        try:
            cursor = conn.cursor(cursor_factory=cursor_factory)
            yield cursor
            conn.commit()
        except pg_errors.UniqueViolation as e:
            self._rollback(conn)
            raise DuplicateError("row", str(e.diag.constraint_name or "")) from e
        except psycopg2.Error as e:
            self._rollback(conn)
            logger.error(f"Database error: {e}")
            raise PersistenceError(str(e)) from e
        except Exception:
            self._rollback(conn)
            raise
        finally:
            if cursor is not None:
                cursor.close()
            self.connection_pool.putconn(conn)

    @staticmethod
    def _rollback(conn) -> None:
        # A dead connection cannot roll back; the original error is the one to raise
        try:
            conn.rollback()
        except psycopg2.Error as e:
            logger.warning(f"Rollback failed: {e}")

    @staticmethod
    def _table(model: Type[Entity]) -> str:
        name = model.collection
        if not _IDENTIFIER.match(name):
            raise PersistenceError(f"Invalid collection name {name!r}")
        return name

    @staticmethod
    def _row_to_entity(model: Type[E], row: Dict[str, Any]) -> E:
        data = dict(row["data"])
        data["version"] = row["version"]
        return model.model_validate(data)

    def create_schema(self) -> None:
        """Create one table per collection plus the open-queue-entry constraint."""
        with self.get_cursor() as cursor:
            for model in ENTITY_MODELS:
                table = self._table(model)
                cursor.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        version INTEGER NOT NULL DEFAULT 0,
                        created_at TIMESTAMP NOT NULL,
                        updated_at TIMESTAMP NOT NULL,
                        data JSONB NOT NULL
                    )
                    """
                )
                cursor.execute(
                    f"CREATE INDEX IF NOT EXISTS {table}_created_at ON {table} (created_at)"
                )
                cursor.execute(
                    f"CREATE INDEX IF NOT EXISTS {table}_data ON {table} USING GIN (data)"
                )
            cursor.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS moderation_queue_open_content
                ON moderation_queue ((data->>'content_id'))
                WHERE data->>'status' <> 'resolved'
                """
            )
            cursor.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS content_moderation_content
                ON content_moderation ((data->>'content_id'))
                """
            )
        logger.info("Database schema ensured")

    def insert(self, entity: E) -> E:
        table = self._table(type(entity))
        try:
            with self.get_cursor() as cursor:
                cursor.execute(
                    f"""
                    INSERT INTO {table} (id, version, created_at, updated_at, data)
                    VALUES (%(id)s, %(version)s, %(created_at)s, %(updated_at)s, %(data)s)
                    RETURNING version
                    """,
                    {
                        "id": entity.id,
                        "version": entity.version,
                        "created_at": entity.created_at,
                        "updated_at": entity.updated_at,
                        "data": Json(entity.model_dump(mode="json")),
                    },
                )
        except DuplicateError as e:
            raise DuplicateError(entity.collection, entity.id) from e
        return entity.model_copy(deep=True)

    def get(self, model: Type[E], entity_id: str) -> Optional[E]:
        table = self._table(model)
        with self.get_cursor() as cursor:
            cursor.execute(
                f"SELECT version, data FROM {table} WHERE id = %s",
                (entity_id,),
            )
            row = cursor.fetchone()
        return self._row_to_entity(model, row) if row else None

    def update(self, entity: E) -> E:
        table = self._table(type(entity))
        stored = entity.model_copy(update={"version": entity.version + 1})
        with self.get_cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE {table}
                SET data = %(data)s, version = version + 1, updated_at = %(updated_at)s
                WHERE id = %(id)s AND version = %(version)s
                RETURNING version
                """,
                {
                    "id": entity.id,
                    "version": entity.version,
                    "updated_at": entity.updated_at,
                    "data": Json(stored.model_dump(mode="json")),
                },
            )
            row = cursor.fetchone()
            if row is None:
                cursor.execute(f"SELECT 1 FROM {table} WHERE id = %s", (entity.id,))
                if cursor.fetchone() is None:
                    raise NotFoundError(entity.collection, entity.id)
                raise ConcurrencyConflictError(entity.collection, entity.id, entity.version)
        return stored

    def upsert(self, entity: E) -> E:
        table = self._table(type(entity))
        with self.get_cursor() as cursor:
            cursor.execute(
                f"""
                INSERT INTO {table} (id, version, created_at, updated_at, data)
                VALUES (%(id)s, 0, %(created_at)s, %(updated_at)s, %(data)s)
                ON CONFLICT (id) DO UPDATE SET
                    data = EXCLUDED.data,
                    version = {table}.version + 1,
                    updated_at = EXCLUDED.updated_at
                RETURNING version, created_at
                """,
                {
                    "id": entity.id,
                    "created_at": entity.created_at,
                    "updated_at": entity.updated_at,
                    "data": Json(entity.model_dump(mode="json")),
                },
            )
            row = cursor.fetchone()
        return entity.model_copy(update={"version": row["version"], "created_at": row["created_at"]})

    def _where(self, query: Query) -> tuple:
        clauses: List[str] = []
        params: Dict[str, Any] = {}
        if query.equals:
            clauses.append("data @> %(equals)s")
            params["equals"] = Json({k: _plain(v) for k, v in query.equals.items()})
        for i, (name, value) in enumerate(query.not_equals.items()):
            clauses.append(f"NOT (data @> %(not_{i})s)")
            params[f"not_{i}"] = Json({name: _plain(value)})
        if query.start_date is not None:
            clauses.append("created_at >= %(start_date)s")
            params["start_date"] = query.start_date
        if query.end_date is not None:
            clauses.append("created_at <= %(end_date)s")
            params["end_date"] = query.end_date
        where = " AND ".join(clauses) if clauses else "TRUE"
        return where, params

    def _order(self, query: Query) -> str:
        direction = "DESC" if query.descending else "ASC"
        if query.order_by in _TIMESTAMP_COLUMNS:
            return f"{query.order_by} {direction}"
        if not _IDENTIFIER.match(query.order_by):
            raise PersistenceError(f"Invalid order field {query.order_by!r}")
        return f"data->>'{query.order_by}' {direction}"

    def find(self, model: Type[E], query: Optional[Query] = None) -> List[E]:
        query = query or Query()
        table = self._table(model)
        where, params = self._where(query)
        sql = f"SELECT version, data FROM {table} WHERE {where} ORDER BY {self._order(query)}"
        if query.limit is not None:
            sql += " LIMIT %(limit)s"
            params["limit"] = query.limit
        with self.get_cursor() as cursor:
            cursor.execute(sql, params)
            rows = cursor.fetchall()
        return [self._row_to_entity(model, row) for row in rows]

    def count(self, model: Type[E], query: Optional[Query] = None) -> int:
        table = self._table(model)
        where, params = self._where(query or Query())
        with self.get_cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS n FROM {table} WHERE {where}", params)
            return int(cursor.fetchone()["n"])

    def delete(self, model: Type[E], entity_id: str) -> bool:
        table = self._table(model)
        with self.get_cursor() as cursor:
            cursor.execute(f"DELETE FROM {table} WHERE id = %s", (entity_id,))
            return cursor.rowcount > 0

    def delete_where(self, model: Type[E], query: Query) -> int:
        table = self._table(model)
        where, params = self._where(query)
        with self.get_cursor() as cursor:
            cursor.execute(f"DELETE FROM {table} WHERE {where}", params)
            return cursor.rowcount

    def close(self) -> None:
        if self.connection_pool is not None:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")
