# pylint: disable=attribute-defined-outside-init
from __future__ import annotations
import abc
import logging
from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.orm.session import Session

import config
from inventory.adapters import repository, redis_publisher
from inventory.domain.errors import ConflictError, StorageError

logger = logging.getLogger(__name__)


class AbstractUnitOfWork(abc.ABC):
    """
    One inventory transaction plus the publisher used for its events.

    Leaving the ``with`` block without calling commit() rolls back.
    """
    books: repository.AbstractRepository
    publisher: redis_publisher.AbstractEventPublisher

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args):
        self.rollback()

    def commit(self):
        self._commit()

    def collect_new_events(self):
        for book in self.books.seen:
            while book.events:
                yield book.events.pop(0)

    @abc.abstractmethod
    def _commit(self):
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self):
        raise NotImplementedError


DEFAULT_SESSION_FACTORY = sessionmaker(
    bind=create_engine(
        config.get_postgres_uri(),
        isolation_level="REPEATABLE READ",
    )
)


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    def __init__(self, session_factory=DEFAULT_SESSION_FACTORY, publisher_impl=None):
        self.session_factory = session_factory
        # events are published after the session is closed, so the publisher outlives it
        self.publisher = publisher_impl or redis_publisher.RedisStreamPublisher()

    def __enter__(self):
        self.session = self.session_factory()  # type: Session
        self.books = repository.SqlAlchemyRepository(self.session)
        return super().__enter__()

    def __exit__(self, *args):
        super().__exit__(*args)
        self.session.close()

    def _commit(self):
        """
        Commit the session.

        A version mismatch, or PostgreSQL aborting the transaction because a
        concurrent one wrote the same rows, means another writer got there
        first and becomes a ConflictError. IntegrityError is left to the
        handlers, which know which uniqueness rule it stands for.
        """
        try:
            self.session.commit()
        except StaleDataError as e:
            logger.error(f"Concurrent modification detected on commit: {e}")
            raise ConflictError("Book was modified concurrently, fetch it again and retry") from e
        except IntegrityError:
            raise
        except DBAPIError as e:
            if not repository.is_write_conflict(e):
                logger.error(f"Database error on commit: {e}")
                raise StorageError(f"Database operation failed: {e}") from e
            logger.error(f"Concurrent transaction conflict on commit: {e.orig}")
            raise ConflictError("Book was modified concurrently, fetch it again and retry") from e
        except SQLAlchemyError as e:
            logger.error(f"Database error on commit: {e}")
            raise StorageError(f"Database operation failed: {e}") from e

    def rollback(self):
        self.session.rollback()
