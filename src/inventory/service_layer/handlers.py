import logging
from typing import Dict

from sqlalchemy.exc import IntegrityError

from inventory.domain import model
from inventory.domain.commands import CreateBook, UpdateBook, DeleteBook, DeleteBooks
from inventory.domain.errors import ValidationError, DuplicateError, NotFoundError, ConflictError
from inventory.domain.events import BookBecameAvailable
from inventory.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

MAX_BATCH_DELETE = 100
REASON_DOES_NOT_EXIST = "does not exist"
REASON_CURRENTLY_BORROWED = "currently borrowed"


def create_book(
    command: CreateBook,
    uow: AbstractUnitOfWork
) -> int:
    """
    Add a new book to the inventory.

    Args:
        command: CreateBook command with the book fields
        uow: Unit of work for transaction management

    Returns:
        book_id: The id assigned by the store

    Raises:
        ValidationError: If a field is malformed or the year is out of range
        DuplicateError: If a non-deleted book already has the ISBN
    """
    fields = model.validate_book_fields(
        dict(
            title=command.title,
            author=command.author,
            isbn=command.isbn,
            published_year=command.published_year,
            availability_status=command.availability_status,
        )
    )
    logger.info(f"Processing CreateBook command for ISBN {command.isbn}")

    with uow:
        if uow.books.isbn_exists(fields["isbn"]):
            raise DuplicateError(fields["isbn"])

        book_id = uow.books.add(model.Book(**fields))
        uow.commit()

    logger.info(f"Created book {book_id}")
    return book_id


def update_book(
    command: UpdateBook,
    uow: AbstractUnitOfWork
) -> model.UpdateOutcome:
    """
    Patch an existing book.

    Only the fields present in the command are compared with the stored row.
    When none of them differs nothing is written and the outcome reports
    ``updated=False``. A Borrowed -> Available transition records an event
    which the message bus publishes after the commit.

    Raises:
        ValidationError: If a supplied field is invalid
        NotFoundError: If no non-deleted book has the id
        DuplicateError: If the new ISBN belongs to another book
        ConflictError: If the book was changed concurrently
    """
    changes = model.validate_book_fields(command.changes)
    logger.info(f"Processing UpdateBook command for book {command.book_id}: {sorted(changes)}")

    with uow:
        book = uow.books.get(command.book_id)
        if book is None:
            raise NotFoundError(command.book_id)

        new_isbn = changes.get("isbn")
        if new_isbn is not None and new_isbn != book.isbn:
            if uow.books.isbn_exists(new_isbn, exclude_id=book.id):
                raise DuplicateError(new_isbn)

        if not book.update(changes):
            logger.info(f"No update required for book {book.id}")
            return model.UpdateOutcome(book_id=book.id, updated=False)

        try:
            uow.commit()
        except IntegrityError as e:
            raise DuplicateError(book.isbn) from e

    logger.info(f"Updated book {command.book_id}")
    return model.UpdateOutcome(book_id=command.book_id, updated=True)


def delete_book(
    command: DeleteBook,
    uow: AbstractUnitOfWork
) -> int:
    """Soft delete one book. Borrowed books cannot be deleted."""
    logger.info(f"Processing DeleteBook command for book {command.book_id}")

    with uow:
        book = uow.books.get(command.book_id)
        if book is None:
            raise NotFoundError(command.book_id)
        if book.is_borrowed:
            raise ConflictError("Book is borrowed", bookId=command.book_id)

        # the store re-checks the status, a concurrent borrow makes this fail
        if not uow.books.soft_delete(command.book_id):
            raise ConflictError("Book changed while deleting", bookId=command.book_id)
        uow.commit()

    logger.info(f"Deleted book {command.book_id}")
    return command.book_id


def delete_books(
    command: DeleteBooks,
    uow: AbstractUnitOfWork
) -> model.BatchDeleteOutcome:
    """
    Soft delete many books in one pass.

    Flow:
    1. Reject batches over the limit before touching the store
    2. Fetch every requested book with a single read
    3. Classify each id: missing -> "does not exist",
       borrowed -> "currently borrowed", otherwise deletable
    4. Flag all deletable books with one bulk update

    Individual bad ids never raise, they are reported in the outcome.
    """
    book_ids = list(dict.fromkeys(command.book_ids))
    if len(book_ids) > MAX_BATCH_DELETE:
        raise ValidationError(
            f"Cannot delete more than {MAX_BATCH_DELETE} books at once",
            field="bookIds",
            error="too many ids",
        )
    logger.info(f"Processing DeleteBooks command for {len(book_ids)} books")

    outcome = model.BatchDeleteOutcome()
    with uow:
        existing = {book.id: book for book in uow.books.get_many(book_ids)}  # type: Dict[int, model.Book]

        for book_id in book_ids:
            book = existing.get(book_id)
            if book is None:
                outcome.reject(book_id, REASON_DOES_NOT_EXIST)
            elif book.is_borrowed:
                outcome.reject(book_id, REASON_CURRENTLY_BORROWED)
            else:
                outcome.deleted_ids.append(book_id)

        if outcome.deleted_ids:
            uow.books.soft_delete_many(outcome.deleted_ids)
            uow.commit()

    logger.info(
        f"Batch delete finished: deleted={outcome.deleted_ids}, rejected={outcome.reasons}"
    )
    return outcome


def publish_book_status_event(event: BookBecameAvailable, uow: AbstractUnitOfWork) -> str:
    """
    Publish BookBecameAvailable to the notification stream.

    Runs after the update was committed. Failures raise PublishError to the
    caller but leave the committed change in place.
    """
    logger.info(f"Publishing BookBecameAvailable event for book {event.book_id}")
    entry_id = uow.publisher.publish(event)
    logger.info(f"Published BookBecameAvailable event {event.event_id} for book {event.book_id}")
    return entry_id
