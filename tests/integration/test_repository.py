"""Integration tests for the SQLAlchemy book repository on SQLite."""

import pytest
from sqlalchemy import select

from inventory.adapters import orm
from inventory.adapters.repository import SqlAlchemyRepository
from inventory.domain.errors import DuplicateError
from inventory.domain.model import AvailabilityStatus, Book


def new_book(isbn, status=AvailabilityStatus.AVAILABLE, title="Dune"):
    return Book(
        title=title,
        author="Frank Herbert",
        isbn=isbn,
        published_year=1965,
        availability_status=status,
    )


def raw_row(session, book_id):
    return session.execute(select(orm.books).where(orm.books.c.id == book_id)).mappings().one()


class TestSqlAlchemyRepository:

    def test_add_assigns_id(self, sqlite_session_factory):
        """Test that adding flushes and returns the generated id."""
        session = sqlite_session_factory()
        repo = SqlAlchemyRepository(session)

        book_id = repo.add(new_book("9780441172719"))
        session.commit()

        assert book_id is not None
        fetched = SqlAlchemyRepository(sqlite_session_factory()).get(book_id)
        assert fetched.isbn == "9780441172719"
        assert fetched.availability_status == AvailabilityStatus.AVAILABLE
        assert fetched.events == []

    def test_loaded_book_is_tracked_as_seen(self, sqlite_session_factory):
        """Test that reads register books for event collection."""
        session = sqlite_session_factory()
        repo = SqlAlchemyRepository(session)
        book_id = repo.add(new_book("9780441172719"))
        session.commit()

        repo = SqlAlchemyRepository(sqlite_session_factory())
        book = repo.get(book_id)

        assert book in repo.seen

    def test_soft_delete_keeps_row(self, sqlite_session_factory):
        """Test that deletion flags the row and hides it from reads."""
        session = sqlite_session_factory()
        repo = SqlAlchemyRepository(session)
        book_id = repo.add(new_book("9780441172719"))
        session.commit()

        assert repo.soft_delete(book_id) is True
        session.commit()

        assert repo.get(book_id) is None
        assert repo.isbn_exists("9780441172719") is False
        assert raw_row(session, book_id)["is_deleted"] is True

    def test_soft_delete_refuses_borrowed_book(self, sqlite_session_factory):
        """Test that the guarded update does not match a borrowed book."""
        session = sqlite_session_factory()
        repo = SqlAlchemyRepository(session)
        book_id = repo.add(new_book("9780441172719", AvailabilityStatus.BORROWED))
        session.commit()

        assert repo.soft_delete(book_id) is False
        assert raw_row(session, book_id)["is_deleted"] is False

    def test_isbn_exists_with_exclusion(self, sqlite_session_factory):
        """Test the ISBN check used by updates."""
        session = sqlite_session_factory()
        repo = SqlAlchemyRepository(session)
        book_id = repo.add(new_book("9780441172719"))

        assert repo.isbn_exists("9780441172719") is True
        assert repo.isbn_exists("9780441172719", exclude_id=book_id) is False
        assert repo.isbn_exists("0441172717") is False

    def test_live_isbn_is_unique(self, sqlite_session_factory):
        """Test that the store rejects a second live book with the same ISBN."""
        session = sqlite_session_factory()
        repo = SqlAlchemyRepository(session)
        repo.add(new_book("9780441172719"))

        with pytest.raises(DuplicateError):
            repo.add(new_book("9780441172719", title="Dune again"))

    def test_isbn_reusable_after_soft_delete(self, sqlite_session_factory):
        """Test that the unique index only covers non-deleted rows."""
        session = sqlite_session_factory()
        repo = SqlAlchemyRepository(session)
        first_id = repo.add(new_book("9780441172719"))
        repo.soft_delete(first_id)

        second_id = repo.add(new_book("9780441172719"))
        session.commit()

        assert second_id != first_id
        assert repo.get(second_id).isbn == "9780441172719"

    def test_get_many_skips_missing_and_deleted(self, sqlite_session_factory):
        """Test the single batch read."""
        session = sqlite_session_factory()
        repo = SqlAlchemyRepository(session)
        kept = repo.add(new_book("9780441172719"))
        deleted = repo.add(new_book("0441172717"))
        repo.soft_delete(deleted)
        session.commit()

        books = repo.get_many([kept, deleted, 999])

        assert [b.id for b in books] == [kept]
        assert repo.get_many([]) == []

    def test_soft_delete_many(self, sqlite_session_factory):
        """Test that one bulk update flags all given books."""
        session = sqlite_session_factory()
        repo = SqlAlchemyRepository(session)
        ids = [repo.add(new_book(isbn)) for isbn in ("9780441172719", "0441172717", "1234567890")]
        session.commit()

        assert repo.soft_delete_many(ids[:2]) == 2
        session.commit()

        assert [raw_row(session, i)["is_deleted"] for i in ids] == [True, True, False]
        assert repo.soft_delete_many([]) == 0

    def test_soft_delete_many_skips_borrowed_and_deleted(self, sqlite_session_factory):
        """Test that the bulk update never flags a borrowed book or counts a deleted one."""
        session = sqlite_session_factory()
        repo = SqlAlchemyRepository(session)
        available = repo.add(new_book("9780441172719"))
        borrowed = repo.add(new_book("0441172717", AvailabilityStatus.BORROWED))
        session.commit()
        version = raw_row(session, available)["version_number"]

        assert repo.soft_delete_many([available, borrowed]) == 1
        session.commit()

        assert raw_row(session, borrowed)["is_deleted"] is False
        assert repo.soft_delete_many([available]) == 0
        assert raw_row(session, available)["version_number"] == version + 1

    def test_version_increments_on_update(self, sqlite_session_factory):
        """Test the optimistic locking counter."""
        session = sqlite_session_factory()
        repo = SqlAlchemyRepository(session)
        book_id = repo.add(new_book("9780441172719"))
        session.commit()
        version = raw_row(session, book_id)["version_number"]

        book = repo.get(book_id)
        book.update({"title": "Dune Messiah"})
        session.commit()

        assert raw_row(session, book_id)["version_number"] == version + 1
