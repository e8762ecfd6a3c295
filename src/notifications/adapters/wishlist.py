"""Adapters resolving which users are waiting for a book."""

import abc
import logging
from typing import Set

from sqlalchemy import create_engine, select, true
from sqlalchemy.orm import sessionmaker

import config
from inventory.adapters import orm

logger = logging.getLogger(__name__)


class AbstractWishlistResolver(abc.ABC):

    @abc.abstractmethod
    def interested_users(self, book_id: int) -> Set[int]:
        """Return the ids of users who wishlisted the book."""
        raise NotImplementedError


class PlaceholderWishlistResolver(AbstractWishlistResolver):
    """Fixed set of users, for running the pipeline without wishlist data."""

    PLACEHOLDER_USER_IDS = frozenset({1001, 1002, 1003})

    def interested_users(self, book_id: int) -> Set[int]:
        return set(self.PLACEHOLDER_USER_IDS)


class SqlAlchemyWishlistResolver(AbstractWishlistResolver):
    """Reads active wishlist entries for the book from the inventory database."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or sessionmaker(
            bind=create_engine(config.get_postgres_uri())
        )

    def interested_users(self, book_id: int) -> Set[int]:
        query = (
            select(orm.wishlists.c.user_id)
            .where(orm.wishlists.c.book_id == book_id)
            .where(orm.wishlists.c.active == true())
        )
        with self.session_factory() as session:
            user_ids = set(session.execute(query).scalars().all())

        logger.info(f"Found {len(user_ids)} users with book {book_id} on their wishlist")
        return user_ids
