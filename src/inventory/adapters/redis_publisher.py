"""Redis Streams adapter for publishing book events following Cosmic Python pattern."""

import abc
import logging
from typing import Dict, Optional

import redis

import config
from inventory.domain.events import BookBecameAvailable

logger = logging.getLogger(__name__)


class PublishError(Exception):
    """
    Appending an event to the stream failed.

    The inventory change that produced the event has already been committed
    when this is raised, so callers must not treat it as a failed write.
    """

    committed = True

    def __init__(self, book_id: int, event_id: str, reason: str):
        super().__init__(f"Failed to publish event {event_id} for book {book_id}: {reason}")
        self.book_id = book_id
        self.event_id = event_id


def serialize_event(event: BookBecameAvailable) -> Dict[str, str]:
    """Flatten the event into the stream's field map."""
    return {
        "bookId": str(event.book_id),
        "title": event.title,
        "author": event.author,
        "timestamp": event.timestamp.isoformat(),
        "eventId": event.event_id,
    }


class AbstractEventPublisher(abc.ABC):

    @abc.abstractmethod
    def publish(self, event: BookBecameAvailable) -> str:
        """
        Append the event to the log.

        Returns:
            The id the log assigned to the entry

        Raises:
            PublishError: If the log is unreachable or rejects the append
        """
        raise NotImplementedError


class RedisStreamPublisher(AbstractEventPublisher):
    """Appends events to a Redis Stream with XADD. No retries."""

    def __init__(self, client: Optional[redis.Redis] = None, stream: Optional[str] = None):
        self.client = client or redis.Redis(**config.get_redis_host_and_port(), decode_responses=True)
        self.stream = stream or config.get_book_status_stream()

    def publish(self, event: BookBecameAvailable) -> str:
        logger.info("publishing: stream=%s, event=%s", self.stream, event)
        fields = serialize_event(event)
        try:
            entry_id = self.client.xadd(self.stream, fields)
        except redis.RedisError as e:
            logger.error(f"Failed to publish event {event.event_id} for book {event.book_id}: {e}")
            raise PublishError(event.book_id, event.event_id, str(e)) from e

        if isinstance(entry_id, bytes):
            entry_id = entry_id.decode()
        logger.info(f"Published event {event.event_id} as stream entry {entry_id}")
        return entry_id
