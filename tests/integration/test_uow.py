"""
Integration tests for the unit of work and message bus on SQLite.

Tests verify that:
1. Commands commit through the real repository
2. Availability events are published only after the commit
3. Concurrent modification is reported as a conflict
"""
import pytest
from sqlalchemy import select

from conftest import FakePublisher
from inventory.adapters import orm
from inventory.adapters.redis_publisher import PublishError
from inventory.domain import commands
from inventory.domain.errors import ConflictError
from inventory.domain.model import AvailabilityStatus
from inventory.service_layer import messagebus
from inventory.service_layer.unit_of_work import SqlAlchemyUnitOfWork


def add_book(session_factory, isbn, status=AvailabilityStatus.AVAILABLE, publisher=None):
    uow = SqlAlchemyUnitOfWork(session_factory, publisher_impl=publisher or FakePublisher())
    [book_id] = messagebus.handle(
        commands.CreateBook(
            title="Dune",
            author="Frank Herbert",
            isbn=isbn,
            published_year=1965,
            availability_status=status,
        ),
        uow,
    )
    return book_id


def stored_row(session_factory, book_id):
    with session_factory() as session:
        return session.execute(select(orm.books).where(orm.books.c.id == book_id)).mappings().one()


def test_returning_book_commits_then_publishes(sqlite_session_factory, fake_publisher):
    """Test the Borrowed -> Available path end to end."""
    book_id = add_book(sqlite_session_factory, "9780441172719", AvailabilityStatus.BORROWED)
    uow = SqlAlchemyUnitOfWork(sqlite_session_factory, publisher_impl=fake_publisher)

    [outcome] = messagebus.handle(
        commands.UpdateBook(book_id=book_id, changes={"availability_status": "Available"}), uow
    )

    assert outcome.updated is True
    assert stored_row(sqlite_session_factory, book_id)["availability_status"] == AvailabilityStatus.AVAILABLE
    [event] = fake_publisher.published
    assert event.book_id == book_id
    assert event.title == "Dune"


def test_publish_failure_leaves_update_committed(sqlite_session_factory, failing_publisher):
    """Test that the stored status is not rolled back when publishing fails."""
    book_id = add_book(sqlite_session_factory, "9780441172719", AvailabilityStatus.BORROWED)
    uow = SqlAlchemyUnitOfWork(sqlite_session_factory, publisher_impl=failing_publisher)

    with pytest.raises(PublishError):
        messagebus.handle(
            commands.UpdateBook(book_id=book_id, changes={"availability_status": "Available"}), uow
        )

    assert stored_row(sqlite_session_factory, book_id)["availability_status"] == AvailabilityStatus.AVAILABLE


def test_uncommitted_work_is_rolled_back(sqlite_session_factory, fake_publisher):
    """Test that leaving the unit of work without commit discards changes."""
    book_id = add_book(sqlite_session_factory, "9780441172719")
    uow = SqlAlchemyUnitOfWork(sqlite_session_factory, publisher_impl=fake_publisher)

    with uow:
        uow.books.get(book_id).update({"title": "Never saved"})

    assert stored_row(sqlite_session_factory, book_id)["title"] == "Dune"


def test_batch_delete_against_store(sqlite_session_factory, fake_publisher):
    """Test the mixed batch scenario on the real store."""
    borrowed = add_book(sqlite_session_factory, "9780441172719", AvailabilityStatus.BORROWED)
    available = add_book(sqlite_session_factory, "0441172717")
    missing = available + 100
    uow = SqlAlchemyUnitOfWork(sqlite_session_factory, publisher_impl=fake_publisher)

    [outcome] = messagebus.handle(commands.DeleteBooks(book_ids=[missing, borrowed, available]), uow)

    assert outcome.deleted_ids == [available]
    assert outcome.reasons == {missing: "does not exist", borrowed: "currently borrowed"}
    assert stored_row(sqlite_session_factory, available)["is_deleted"] is True
    assert stored_row(sqlite_session_factory, borrowed)["is_deleted"] is False


def test_delete_borrowed_book_is_conflict(sqlite_session_factory, fake_publisher):
    """Test that a borrowed book survives a delete request unchanged."""
    book_id = add_book(sqlite_session_factory, "9780441172719", AvailabilityStatus.BORROWED)
    uow = SqlAlchemyUnitOfWork(sqlite_session_factory, publisher_impl=fake_publisher)

    with pytest.raises(ConflictError):
        messagebus.handle(commands.DeleteBook(book_id=book_id), uow)

    row = stored_row(sqlite_session_factory, book_id)
    assert row["is_deleted"] is False
    assert row["availability_status"] == AvailabilityStatus.BORROWED


def test_concurrent_update_is_conflict(sqlite_file_session_factory, fake_publisher):
    """Test that a write based on a stale read is rejected."""
    book_id = add_book(sqlite_file_session_factory, "9780441172719")
    slow = SqlAlchemyUnitOfWork(sqlite_file_session_factory, publisher_impl=fake_publisher)

    with slow:
        stale = slow.books.get(book_id)

        messagebus.handle(
            commands.UpdateBook(book_id=book_id, changes={"title": "Dune Messiah"}),
            SqlAlchemyUnitOfWork(sqlite_file_session_factory, publisher_impl=fake_publisher),
        )

        stale.update({"title": "Children of Dune"})
        with pytest.raises(ConflictError):
            slow.commit()

    assert stored_row(sqlite_file_session_factory, book_id)["title"] == "Dune Messiah"
