"""
Pytest configuration and fixtures for safeguard tests.
"""

import psycopg2
import pytest

from safeguard.engine import SafeguardEngine
from safeguard.lib.config import SecurityConfig
from safeguard.lib.database import InMemoryRepository, PostgresRepository
from safeguard.lib.errors import PersistenceError
from safeguard.lib.notifications import InMemoryDispatcher
from safeguard.models.content import ContentItem


class FailingRepository(InMemoryRepository):
    """In-memory store whose named methods raise PersistenceError."""

    def __init__(self, failing=()):
        super().__init__()
        self.failing = set(failing)

    def _maybe_fail(self, name):
        if name in self.failing:
            raise PersistenceError(f"simulated {name} failure")

    def insert(self, entity):
        self._maybe_fail("insert")
        return super().insert(entity)

    def get(self, model, entity_id):
        self._maybe_fail("get")
        return super().get(model, entity_id)

    def find(self, model, query=None):
        self._maybe_fail("find")
        return super().find(model, query)

    def count(self, model, query=None):
        self._maybe_fail("count")
        return super().count(model, query)


class UnreachablePool:
    """Connection pool for a database server that is down."""

    def getconn(self):
        raise psycopg2.OperationalError("could not connect to server")

    def putconn(self, conn):
        raise AssertionError("no connection was handed out")


def unreachable_postgres():
    repo = object.__new__(PostgresRepository)
    repo.connection_pool = UnreachablePool()
    return repo


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def dispatcher():
    return InMemoryDispatcher()


@pytest.fixture
def config(repository):
    return SecurityConfig(repository)


@pytest.fixture
def engine(repository, dispatcher, config):
    return SafeguardEngine(
        repository=repository,
        dispatcher=dispatcher,
        config=config,
        moderator_ids=["mod-a", "mod-b"],
    )


@pytest.fixture
def make_item():
    counter = {"n": 0}

    def _make(text="hello there", user_id="user-1", content_type="post", images=None, content_id=None):
        counter["n"] += 1
        return ContentItem(
            id=content_id or f"content-{counter['n']}",
            content_type=content_type,
            user_id=user_id,
            text=text,
            images=images or [],
        )

    return _make
