"""Exceptions raised by the inventory service layer."""


class InventoryError(Exception):
    """Base class for inventory errors reported to callers."""
    error_code = "INVENTORY_ERROR"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(InventoryError):
    """Input has the wrong shape or is out of range."""
    error_code = "INVALID_BOOK_DATA"


class DuplicateError(InventoryError):
    error_code = "DUPLICATE_BOOK"

    def __init__(self, isbn: str):
        super().__init__(f"Book with ISBN {isbn} already exists", isbn=isbn)
        self.isbn = isbn


class NotFoundError(InventoryError):
    error_code = "BOOK_NOT_FOUND"

    def __init__(self, book_id: int):
        super().__init__(f"Book with id {book_id} not found", bookId=book_id)
        self.book_id = book_id


class ConflictError(InventoryError):
    """A business rule blocks the operation, e.g. deleting a borrowed book."""
    error_code = "CONFLICT"


class StorageError(InventoryError):
    """The underlying store failed. Not actionable by the caller."""
    error_code = "DB_ERROR"
