from typing import Generator

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from db.session_cache import SessionCacheBase, SqliteSessionCache
from tests.helpers.clock import FakeClock

# One shared connection, so worker threads see the same in-memory database.
engine: Engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
session_factory = sessionmaker(engine)


@pytest.fixture(scope="function")
def test_session() -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture(scope="function", autouse=True)
def reset_db() -> Generator[None, None, None]:
    SessionCacheBase.metadata.create_all(engine)
    yield
    SessionCacheBase.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="function")
def session_cache(test_session: Session, clock: FakeClock) -> SqliteSessionCache:
    return SqliteSessionCache(test_session, clock=clock)
