import enum
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from inventory.domain.errors import ValidationError
from inventory.domain.events import BookBecameAvailable

MIN_PUBLISHED_YEAR = 1450
MAX_TEXT_LENGTH = 255
ISBN_PATTERN = re.compile(r"^(?:[0-9]{10}|[0-9]{13})$")

UPDATABLE_FIELDS = ("title", "author", "isbn", "published_year", "availability_status")

NO_UPDATE_REQUIRED = "No update required"
UPDATE_SUCCESSFUL = "Update successful"


class AvailabilityStatus(str, enum.Enum):
    AVAILABLE = "Available"
    BORROWED = "Borrowed"


@dataclass(eq=False)
class Book:
    title: str
    author: str
    isbn: str
    published_year: int
    availability_status: AvailabilityStatus = AvailabilityStatus.AVAILABLE
    is_deleted: bool = False
    id: Optional[int] = None
    version_number: int = 0
    events: List = field(default_factory=list, compare=False, repr=False)

    @property
    def is_borrowed(self) -> bool:
        return self.availability_status == AvailabilityStatus.BORROWED

    def update(self, changes: Dict[str, Any]) -> bool:
        """
        Apply a partial patch and report whether anything actually changed.

        A transition from Borrowed to Available records a BookBecameAvailable
        event carrying the title and author as they were before the patch.
        """
        diff = {
            name: value
            for name, value in changes.items()
            if getattr(self, name) != value
        }
        if not diff:
            return False

        old_status = self.availability_status
        old_title, old_author = self.title, self.author

        for name, value in diff.items():
            setattr(self, name, value)

        if (
            old_status == AvailabilityStatus.BORROWED
            and self.availability_status == AvailabilityStatus.AVAILABLE
        ):
            self.events.append(BookBecameAvailable.create(self.id, old_title, old_author))
        return True


@dataclass
class UpdateOutcome:
    """Result of an update; ``updated`` is False when the patch changed nothing."""
    book_id: int
    updated: bool

    @property
    def message(self) -> str:
        return UPDATE_SUCCESSFUL if self.updated else NO_UPDATE_REQUIRED


@dataclass
class BatchDeleteOutcome:
    deleted_ids: List[int] = field(default_factory=list)
    not_deleted_ids: List[int] = field(default_factory=list)
    reasons: Dict[int, str] = field(default_factory=dict)

    def reject(self, book_id: int, reason: str) -> None:
        self.not_deleted_ids.append(book_id)
        self.reasons[book_id] = reason


def validate_book_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate the supplied book fields and return them normalised.

    Only the keys present in ``fields`` are checked, which makes the same
    function usable for full creates and partial patches. None is rejected
    for every field since none of them is nullable.

    Raises:
        ValidationError: on the first invalid field
    """
    cleaned = {}
    for name, value in fields.items():
        if name not in UPDATABLE_FIELDS:
            raise ValidationError(f"Unknown field {name}", field=name, error="unknown field")
        if value is None:
            raise ValidationError(f"{name} must not be null", field=name, error="must not be null")
        cleaned[name] = _VALIDATORS[name](value)
    return cleaned


def _validate_text(name):
    def validate(value):
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{name} must not be blank", field=name, error="must not be blank")
        if len(value) > MAX_TEXT_LENGTH:
            raise ValidationError(
                f"{name} must be at most {MAX_TEXT_LENGTH} characters",
                field=name,
                error="too long",
            )
        return value
    return validate


def _validate_isbn(value):
    if not isinstance(value, str) or not ISBN_PATTERN.fullmatch(value):
        raise ValidationError(
            "ISBN must consist of exactly 10 or 13 digits", field="isbn", error="invalid isbn"
        )
    return value


def validate_published_year(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            "published year must be an integer", field="published_year", error="invalid year"
        )
    if value < MIN_PUBLISHED_YEAR or value > datetime.now().year:
        raise ValidationError(str(value), field="published_year", error="invalid year")
    return value


def _validate_status(value):
    try:
        return AvailabilityStatus(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown availability status {value}",
            field="availability_status",
            error="invalid status",
        ) from e


_VALIDATORS = {
    "title": _validate_text("title"),
    "author": _validate_text("author"),
    "isbn": _validate_isbn,
    "published_year": validate_published_year,
    "availability_status": _validate_status,
}
