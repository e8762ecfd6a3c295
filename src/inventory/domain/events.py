"""Domain events for the inventory service."""

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass
class Event:
    """Base class for facts recorded by the inventory."""
    pass


@dataclass
class BookBecameAvailable(Event):
    """Event raised when a borrowed book has been made available again."""
    book_id: int
    title: str
    author: str
    timestamp: datetime
    event_id: str

    @classmethod
    def create(cls, book_id: int, title: str, author: str) -> "BookBecameAvailable":
        timestamp = datetime.now(timezone.utc)
        return cls(
            book_id=book_id,
            title=title,
            author=author,
            timestamp=timestamp,
            event_id=make_event_id(book_id, timestamp),
        )


def make_event_id(book_id: int, timestamp: datetime) -> str:
    """Event ids look like ``book-status-<id>-<epoch-millis>``."""
    return f"book-status-{book_id}-{int(timestamp.timestamp() * 1000)}"
