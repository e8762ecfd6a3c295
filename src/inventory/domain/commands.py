"""Commands for the inventory service."""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from inventory.domain.model import AvailabilityStatus


@dataclass
class Command:
    """Base class for messages that ask the inventory to change."""
    pass


@dataclass
class CreateBook(Command):
    """Command to add a new book to the inventory."""
    title: str
    author: str
    isbn: str
    published_year: int
    availability_status: AvailabilityStatus = AvailabilityStatus.AVAILABLE


@dataclass
class UpdateBook(Command):
    """
    Command to patch an existing book.

    ``changes`` only contains the fields the caller supplied, so a field that
    was left out is distinguishable from one explicitly set to None.
    """
    book_id: int
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DeleteBook(Command):
    """Command to soft delete a single book."""
    book_id: int


@dataclass
class DeleteBooks(Command):
    """Command to soft delete many books in one pass."""
    book_ids: List[int]
