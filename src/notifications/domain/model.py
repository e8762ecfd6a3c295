from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class MalformedEventError(Exception):
    """A stream entry could not be turned into a BookBecameAvailable event."""

    def __init__(self, message: str, fields: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.fields = fields or {}


@dataclass
class NotificationReport:
    """What happened while notifying the users interested in one book."""
    book_id: int
    event_id: str
    notified: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
