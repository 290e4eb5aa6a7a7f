import os

# Run submitted imports in-process during tests
os.environ.setdefault("IMPORT_DISPATCH", "background")

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.orm import sessionmaker

from finance_importer.api.dependencies.imports import ImportDispatcher, get_import_dispatcher
from finance_importer.db import models  # noqa: F401
from finance_importer.db.base import Base
from finance_importer.db.session import build_engine, get_session_factory
from finance_importer.main import app
from finance_importer.services.job_tracker import JobTracker
from finance_importer.utils.redis_client import set_redis_client


class FakeRedis:
    """In-memory stand-in for the handful of Redis calls the app makes."""

    def __init__(self, available: bool = True):
        self.available = available
        self.store: dict[str, bytes] = {}

    def _check(self):
        if not self.available:
            raise RedisConnectionError("redis unavailable")

    def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value if isinstance(value, bytes) else str(value).encode()
        return True

    def get(self, key):
        self._check()
        return self.store.get(key)

    def delete(self, *keys):
        self._check()
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    def ping(self):
        self._check()
        return True

    def close(self):
        pass


@pytest.fixture()
def fake_redis():
    client = FakeRedis()
    set_redis_client(client)
    yield client
    set_redis_client(None)


@pytest.fixture()
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'imports.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def tracker(session_factory):
    return JobTracker(session_factory)


@pytest.fixture()
def client(session_factory, fake_redis):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_import_dispatcher] = lambda: ImportDispatcher(
        "background", session_factory
    )
    yield TestClient(app)
    app.dependency_overrides.clear()
