"""Redis Streams consumer for wishlist notifications - listens to BookBecameAvailable events."""

import logging
import signal
import threading
import time
from datetime import datetime
from typing import Any, Dict, Optional

import redis
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from tenacity import retry, retry_if_exception_type, stop_after_delay, wait_fixed

import config
from inventory.adapters import orm
from inventory.domain.events import BookBecameAvailable
from notifications.adapters.notifier import AbstractNotifier, LoggingNotifier
from notifications.adapters.wishlist import (
    AbstractWishlistResolver,
    PlaceholderWishlistResolver,
    SqlAlchemyWishlistResolver,
)
from notifications.domain.model import MalformedEventError
from notifications.service_layer import handlers

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("bookId", "title", "author", "timestamp", "eventId")
RECONNECT_DELAY_SECONDS = 5


def _decode(value):
    return value.decode("utf-8") if isinstance(value, bytes) else value


def parse_book_status_entry(fields: Optional[Dict[Any, Any]]) -> BookBecameAvailable:
    """
    Turn a stream entry's field map back into a BookBecameAvailable event.

    Raises:
        MalformedEventError: If a field is missing or cannot be parsed
    """
    data = {_decode(key): _decode(value) for key, value in (fields or {}).items()}

    missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
    if missing:
        raise MalformedEventError(f"Missing fields {missing}", fields=data)

    try:
        book_id = int(data["bookId"])
        timestamp = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
    except ValueError as e:
        raise MalformedEventError(f"Unparseable field: {e}", fields=data) from e

    return BookBecameAvailable(
        book_id=book_id,
        title=data["title"],
        author=data["author"],
        timestamp=timestamp,
        event_id=data["eventId"],
    )


class BookStatusConsumer:
    """
    One member of the wishlist notification consumer group.

    Entries are acknowledged only after every interested user was attempted.
    Malformed entries are logged and acknowledged so they cannot block the
    group; there is no dead-letter stream. An entry whose processing fails or
    whose consumer dies stays pending and is claimed again later, so delivery
    is at least once.
    """

    def __init__(
        self,
        client: redis.Redis,
        resolver: AbstractWishlistResolver,
        notifier: AbstractNotifier,
        stream: str,
        group: str,
        consumer_name: str,
        block_ms: int = 1000,
        batch_size: int = 10,
        claim_min_idle_ms: int = 60000,
        claim_interval_seconds: float = 30,
    ):
        self.client = client
        self.resolver = resolver
        self.notifier = notifier
        self.stream = stream
        self.group = group
        self.consumer_name = consumer_name
        self.block_ms = block_ms
        self.batch_size = batch_size
        self.claim_min_idle_ms = claim_min_idle_ms
        self.claim_interval_seconds = claim_interval_seconds

        self._stop = threading.Event()
        # start by re-reading entries this member was given but never acked
        self._backlog_id = "0"
        self._claim_cursor = "0-0"
        self._last_claim = 0.0

    def ensure_group(self):
        """Create the consumer group (and the stream) unless it exists."""
        try:
            self.client.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info(f"Created consumer group {self.group} on stream {self.stream}")
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            logger.debug(f"Consumer group {self.group} already exists")

    @retry(
        stop=stop_after_delay(60),
        wait=wait_fixed(1),
        retry=retry_if_exception_type(redis.ConnectionError),
        reraise=True,
    )
    def wait_for_group(self):
        self.ensure_group()

    def handle_entry(self, entry_id: str, fields: Optional[Dict[Any, Any]]) -> bool:
        """
        Process one entry.

        Returns:
            True if the entry was acknowledged, False if it was left pending
        """
        logger.info("Received entry %s: %s", entry_id, fields)

        try:
            event = parse_book_status_entry(fields)
        except MalformedEventError as e:
            logger.error(f"Acknowledging malformed entry {entry_id} without processing: {e} {e.fields}")
            self._ack(entry_id)
            return True

        try:
            report = handlers.notify_wishlisted_users(event, self.resolver, self.notifier)
        except Exception as e:
            logger.error(f"Error processing entry {entry_id}, leaving it pending: {e}", exc_info=True)
            return False

        self._ack(entry_id)
        logger.info(f"Acknowledged entry {entry_id} for event {report.event_id}")
        return True

    def poll_once(self) -> int:
        """Read one batch and process it. Returns the number of entries read."""
        if self._backlog_id is not None:
            response = self.client.xreadgroup(
                self.group,
                self.consumer_name,
                {self.stream: self._backlog_id},
                count=self.batch_size,
            )
        else:
            response = self.client.xreadgroup(
                self.group,
                self.consumer_name,
                {self.stream: ">"},
                count=self.batch_size,
                block=self.block_ms,
            )

        entries = [entry for _stream, stream_entries in (response or []) for entry in stream_entries]

        if self._backlog_id is not None:
            if entries:
                self._backlog_id = _decode(entries[-1][0])
            else:
                logger.info("Pending backlog drained, reading new entries")
                self._backlog_id = None

        for entry_id, fields in entries:
            self.handle_entry(_decode(entry_id), fields)
        return len(entries)

    def claim_stale(self) -> int:
        """Take over entries that another member received but never acknowledged."""
        result = self.client.xautoclaim(
            self.stream,
            self.group,
            self.consumer_name,
            min_idle_time=self.claim_min_idle_ms,
            start_id=self._claim_cursor,
            count=self.batch_size,
        )
        self._claim_cursor = _decode(result[0])
        entries = result[1]
        if entries:
            logger.info(f"Claimed {len(entries)} stale entries")
        for entry_id, fields in entries:
            self.handle_entry(_decode(entry_id), fields)
        return len(entries)

    def run(self):
        """Consume until stop() is called, then leave the group."""
        self.wait_for_group()
        logger.info(
            f"Consumer {self.consumer_name} of group {self.group} reading stream {self.stream}"
        )

        group_missing = False
        while not self._stop.is_set():
            try:
                if group_missing:
                    self.ensure_group()
                    group_missing = False
                    self._backlog_id = "0"
                    self._claim_cursor = "0-0"
                if time.monotonic() - self._last_claim >= self.claim_interval_seconds:
                    self._last_claim = time.monotonic()
                    self.claim_stale()
                self.poll_once()
            except redis.ResponseError as e:
                if "NOGROUP" in str(e):
                    # stream or group was deleted under us
                    logger.warning(f"Consumer group {self.group} is gone, recreating it: {e}")
                    group_missing = True
                else:
                    logger.error(f"Redis rejected a command: {e}")
                    self._stop.wait(RECONNECT_DELAY_SECONDS)
            except redis.RedisError as e:
                logger.error(f"Lost connection to Redis: {e}")
                self._stop.wait(RECONNECT_DELAY_SECONDS)

        self.release_membership()
        logger.info(f"Consumer {self.consumer_name} stopped")

    def stop(self):
        """Stop after the batch currently being processed."""
        logger.info(f"Stopping consumer {self.consumer_name}")
        self._stop.set()

    def release_membership(self):
        """
        Remove this member from the group.

        Deleting a consumer drops its pending entries, so a member that still
        owns some stays registered and leaves them for another member to claim.
        """
        try:
            pending = self.client.xpending_range(
                self.stream,
                self.group,
                min="-",
                max="+",
                count=1,
                consumername=self.consumer_name,
            )
            if pending:
                logger.warning(
                    f"Consumer {self.consumer_name} still owns pending entries, leaving them to be claimed"
                )
                return
            self.client.xgroup_delconsumer(self.stream, self.group, self.consumer_name)
            logger.info(f"Consumer {self.consumer_name} left group {self.group}")
        except redis.RedisError as e:
            logger.error(f"Could not release group membership: {e}")

    def _ack(self, entry_id: str):
        self.client.xack(self.stream, self.group, entry_id)


def build_resolver() -> AbstractWishlistResolver:
    if config.get_wishlist_source() == "placeholder":
        logger.info("Using placeholder wishlist resolver")
        return PlaceholderWishlistResolver()

    engine = create_engine(config.get_postgres_uri())
    orm.metadata.create_all(engine)
    return SqlAlchemyWishlistResolver(sessionmaker(bind=engine))


def main():
    """Main entry point for the wishlist notification consumer."""
    logging.basicConfig(
        level=getattr(logging, config.get_log_level()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info("Wishlist notification consumer starting")

    client = redis.Redis(**config.get_redis_host_and_port(), decode_responses=True)
    consumer = BookStatusConsumer(
        client,
        build_resolver(),
        LoggingNotifier(),
        stream=config.get_book_status_stream(),
        **config.get_consumer_config(),
    )

    signal.signal(signal.SIGTERM, lambda *_: consumer.stop())
    signal.signal(signal.SIGINT, lambda *_: consumer.stop())

    consumer.run()


if __name__ == "__main__":
    main()
