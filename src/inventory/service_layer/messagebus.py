# pylint: disable=broad-except
"""Message bus dispatching inventory commands and the events they raise."""

from __future__ import annotations
import logging
from typing import Any, List, Dict, Callable, Type, Union, TYPE_CHECKING

from inventory.adapters.redis_publisher import PublishError
from inventory.domain.commands import Command, CreateBook, UpdateBook, DeleteBook, DeleteBooks
from inventory.domain.events import Event, BookBecameAvailable
from inventory.service_layer import handlers

if TYPE_CHECKING:
    from inventory.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

Message = Union[CreateBook, UpdateBook, DeleteBook, DeleteBooks, BookBecameAvailable]

# Event handler failures the caller of the originating command must see
PROPAGATED_EVENT_ERRORS = (PublishError,)


def handle(
    message: Message,
    uow: AbstractUnitOfWork,
) -> List[Any]:
    """
    Dispatch a command and then every event it raised.

    Returns the command handler results in dispatch order. Events raised
    while handling are processed after the command has finished, which for
    the SQLAlchemy unit of work means after the commit.
    """
    results = []
    queue = [message]

    while queue:
        message = queue.pop(0)

        if isinstance(message, Command):
            results.append(handle_command(message, queue, uow))
        elif isinstance(message, Event):
            handle_event(message, queue, uow)
        else:
            raise Exception(f"{message} was not an Event or Command")

    return results


def handle_event(
    event: Event,
    queue: List[Message],
    uow: AbstractUnitOfWork,
):
    for handler in EVENT_HANDLERS[type(event)]:
        logger.debug("handling event %s with handler %s", event, handler.__name__)
        try:
            handler(event, uow=uow)
        except PROPAGATED_EVENT_ERRORS:
            logger.error("Handler %s failed for event %s", handler.__name__, event)
            raise
        except Exception:
            logger.exception("Exception handling event %s", event)
            continue
        queue.extend(uow.collect_new_events())


def handle_command(
    command: Command,
    queue: List[Message],
    uow: AbstractUnitOfWork,
):
    logger.debug("handling command %s", command)
    handler = COMMAND_HANDLERS[type(command)]
    try:
        result = handler(command, uow=uow)
    except Exception:
        logger.exception("Exception handling command %s", command)
        raise
    queue.extend(uow.collect_new_events())
    return result


EVENT_HANDLERS = {
    BookBecameAvailable: [
        handlers.publish_book_status_event,
    ],
}  # type: Dict[Type[Event], List[Callable]]

COMMAND_HANDLERS = {
    CreateBook: handlers.create_book,
    UpdateBook: handlers.update_book,
    DeleteBook: handlers.delete_book,
    DeleteBooks: handlers.delete_books,
}  # type: Dict[Type[Command], Callable]
