# pylint: disable=redefined-outer-name
import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, clear_mappers
from sqlalchemy.pool import StaticPool

from inventory.adapters import orm
from inventory.adapters.redis_publisher import AbstractEventPublisher, PublishError


class FakePublisher(AbstractEventPublisher):
    """Records published events instead of talking to Redis."""

    def __init__(self, fail=False):
        self.published = []
        self.fail = fail

    def publish(self, event):
        if self.fail:
            raise PublishError(event.book_id, event.event_id, "redis is down")
        self.published.append(event)
        return f"{len(self.published)}-0"


@pytest.fixture
def fake_publisher():
    return FakePublisher()


@pytest.fixture
def failing_publisher():
    return FakePublisher(fail=True)


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def sqlite_session_factory():
    """Create SQLite in-memory database for fast testing."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    orm.metadata.create_all(engine)
    orm.start_mappers()

    yield sessionmaker(bind=engine)

    clear_mappers()
    engine.dispose()


@pytest.fixture
def sqlite_file_session_factory(tmp_path):
    """File backed SQLite so that every session gets its own connection."""
    engine = create_engine(f"sqlite:///{tmp_path / 'library.db'}")
    orm.metadata.create_all(engine)
    orm.start_mappers()

    yield sessionmaker(bind=engine)

    clear_mappers()
    engine.dispose()
