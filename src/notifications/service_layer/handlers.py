import logging

from inventory.domain.events import BookBecameAvailable
from notifications.adapters.notifier import AbstractNotifier
from notifications.adapters.wishlist import AbstractWishlistResolver
from notifications.domain.model import NotificationReport

logger = logging.getLogger(__name__)


def notify_wishlisted_users(
    event: BookBecameAvailable,
    resolver: AbstractWishlistResolver,
    notifier: AbstractNotifier,
) -> NotificationReport:
    """
    Tell every user who wishlisted the book that it is available again.

    A failing notification for one user is logged and recorded in the report
    but does not stop the others. Resolver failures are not caught: the
    caller must leave the entry unacknowledged so it gets delivered again.

    Args:
        event: BookBecameAvailable event read from the stream
        resolver: Looks up the interested users
        notifier: Delivers one notification

    Returns:
        NotificationReport listing notified and failed users
    """
    logger.info(f"Processing wishlist notifications for book {event.title} (ID: {event.book_id})")

    user_ids = resolver.interested_users(event.book_id)
    report = NotificationReport(book_id=event.book_id, event_id=event.event_id)

    for user_id in sorted(user_ids):
        try:
            notifier.notify(user_id, event)
            report.notified.append(user_id)
        except Exception as e:
            logger.error(f"Failed to notify user {user_id} about book {event.book_id}: {e}", exc_info=True)
            report.failed[user_id] = str(e)

    logger.info(
        f"Processed wishlist notifications for book {event.book_id} (event {event.event_id}): "
        f"{len(report.notified)} notified, {len(report.failed)} failed"
    )
    return report
