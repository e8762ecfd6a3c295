import abc
import logging

from inventory.domain.events import BookBecameAvailable

logger = logging.getLogger(__name__)


class AbstractNotifier(abc.ABC):

    @abc.abstractmethod
    def notify(self, user_id: int, event: BookBecameAvailable) -> None:
        raise NotImplementedError


class LoggingNotifier(AbstractNotifier):
    """Writes the notification to the log instead of delivering it."""

    def notify(self, user_id: int, event: BookBecameAvailable) -> None:
        logger.info(
            "Notification prepared for user_id: %s - Book [%s] is now available.",
            user_id,
            event.title,
        )
