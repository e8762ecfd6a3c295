import abc
import contextlib
import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy import false, update
from sqlalchemy.exc import DBAPIError, IntegrityError

from inventory.adapters import orm
from inventory.domain import model
from inventory.domain.errors import ConflictError, DuplicateError

logger = logging.getLogger(__name__)

# serialization_failure and deadlock_detected
CONFLICT_SQLSTATES = frozenset({"40001", "40P01"})


def is_write_conflict(error: DBAPIError) -> bool:
    """True if the database aborted the statement because of a concurrent transaction."""
    orig = error.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return sqlstate in CONFLICT_SQLSTATES


@contextlib.contextmanager
def translate_write_conflicts():
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as e:
        if not is_write_conflict(e):
            raise
        logger.warning(f"Concurrent transaction conflict: {e.orig}")
        raise ConflictError("Book was modified concurrently, fetch it again and retry") from e


class AbstractRepository(abc.ABC):
    """
    Inventory store. Every read skips soft deleted books.
    """

    def __init__(self):
        self.seen = set()  # type: Set[model.Book]

    def add(self, book: model.Book) -> int:
        self._add(book)
        self.seen.add(book)
        return book.id

    def get(self, book_id: int) -> Optional[model.Book]:
        book = self._get(book_id)
        if book:
            self.seen.add(book)
        return book

    def get_many(self, book_ids: Iterable[int]) -> List[model.Book]:
        """Fetch all requested books that exist in a single read."""
        books = self._get_many(set(book_ids))
        for book in books:
            self.seen.add(book)
        return books

    def isbn_exists(self, isbn: str, exclude_id: Optional[int] = None) -> bool:
        return self._isbn_exists(isbn, exclude_id)

    def soft_delete(self, book_id: int) -> bool:
        """Flag one book as deleted unless it is borrowed. Returns False if nothing matched."""
        return self._soft_delete(book_id)

    def soft_delete_many(self, book_ids: Iterable[int]) -> int:
        """Flag the given live, not borrowed books as deleted with one bulk update."""
        book_ids = set(book_ids)
        if not book_ids:
            return 0
        return self._soft_delete_many(book_ids)

    @abc.abstractmethod
    def _add(self, book: model.Book):
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, book_id: int) -> Optional[model.Book]:
        raise NotImplementedError

    @abc.abstractmethod
    def _get_many(self, book_ids: Set[int]) -> List[model.Book]:
        raise NotImplementedError

    @abc.abstractmethod
    def _isbn_exists(self, isbn: str, exclude_id: Optional[int]) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def _soft_delete(self, book_id: int) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def _soft_delete_many(self, book_ids: Set[int]) -> int:
        raise NotImplementedError


class SqlAlchemyRepository(AbstractRepository):
    def __init__(self, session):
        super().__init__()
        self.session = session

    def _add(self, book):
        self.session.add(book)
        try:
            # flush so the store assigns the id
            self.session.flush()
        except IntegrityError as e:
            logger.error(f"Integrity error inserting book with ISBN {book.isbn}: {e}")
            raise DuplicateError(book.isbn) from e

    def _get(self, book_id):
        return self.session.query(model.Book).filter_by(id=book_id, is_deleted=False).first()

    def _get_many(self, book_ids):
        if not book_ids:
            return []
        # Rows stay locked until commit so the batch classification cannot go stale
        with translate_write_conflicts():
            return (
                self.session.query(model.Book)
                .filter(orm.books.c.id.in_(book_ids))
                .filter_by(is_deleted=False)
                .with_for_update()
                .all()
            )

    def _isbn_exists(self, isbn, exclude_id):
        query = self.session.query(model.Book).filter_by(isbn=isbn, is_deleted=False)
        if exclude_id is not None:
            query = query.filter(orm.books.c.id != exclude_id)
        return self.session.query(query.exists()).scalar()

    def _soft_delete(self, book_id):
        with translate_write_conflicts():
            result = self.session.execute(_deletable(update(orm.books).where(orm.books.c.id == book_id)))
        return result.rowcount > 0

    def _soft_delete_many(self, book_ids):
        with translate_write_conflicts():
            result = self.session.execute(_deletable(update(orm.books).where(orm.books.c.id.in_(book_ids))))
        return result.rowcount


def _deletable(statement):
    """Restrict a books UPDATE to live, not borrowed rows and flag them deleted."""
    return (
        statement
        .where(orm.books.c.is_deleted == false())
        .where(orm.books.c.availability_status != model.AvailabilityStatus.BORROWED)
        .values(is_deleted=True, version_number=orm.books.c.version_number + 1)
    )
