"""
Views for read operations - separate from command/write path.
Following Cosmic Python CQRS pattern: views query the books table directly.
"""
import logging
from functools import reduce
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import ColumnElement, false, func, or_, select

from inventory.adapters import orm
from inventory.domain.errors import ValidationError
from inventory.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

MIN_SEARCH_TEXT = 3
MAX_SEARCH_TEXT = 255
MAX_LIMIT = 100


def validate_search_inputs(search_text: Optional[str], limit: int, offset: int) -> str:
    """
    Check search parameters and return the trimmed search text.

    Empty text means "no text filter" and is allowed; one or two characters
    are not.
    """
    text = (search_text or "").strip()
    if 0 < len(text) < MIN_SEARCH_TEXT:
        raise ValidationError(
            f"Search text must be at least {MIN_SEARCH_TEXT} characters",
            field="searchText",
            error="too short",
        )
    if len(text) > MAX_SEARCH_TEXT:
        raise ValidationError(
            f"Search text must be at most {MAX_SEARCH_TEXT} characters",
            field="searchText",
            error="too long",
        )
    if not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(
            f"limit must be between 1 and {MAX_LIMIT}", field="limit", error="out of range"
        )
    if offset < 0:
        raise ValidationError("offset must not be negative", field="offset", error="out of range")
    return text


def full_text_match(text: str) -> Tuple[ColumnElement, ColumnElement]:
    """
    PostgreSQL full-text condition and rank over title and author.

    A book matches when it contains any of the terms; books containing more
    of them rank higher. Each term goes through plainto_tsquery on its own so
    user input never reaches the tsquery syntax.
    """
    books = orm.books
    document = func.to_tsvector(orm.SEARCH_CONFIG, books.c.title + " " + books.c.author)
    ts_query = reduce(
        lambda left, right: left.op("||")(right),
        [func.plainto_tsquery(orm.SEARCH_CONFIG, term) for term in text.split()],
    )
    return document.op("@@")(ts_query), func.ts_rank(document, ts_query)


def search_books(
    search_text: Optional[str],
    published_year: Optional[int],
    limit: int,
    offset: int,
    uow: AbstractUnitOfWork,
) -> Dict[str, Any]:
    """
    Search non-deleted books by relevance over title and author.

    Text and year filters are ANDed when both are given. The year is matched
    exactly and not checked for plausibility. ``total_count`` is the size of
    the returned page, not a count over all matches.
    """
    text = validate_search_inputs(search_text, limit, offset)
    books = orm.books

    query = select(
        books.c.id,
        books.c.title,
        books.c.author,
        books.c.isbn,
        books.c.published_year,
        books.c.availability_status,
    ).where(books.c.is_deleted == false())

    if published_year is not None:
        query = query.where(books.c.published_year == published_year)

    with uow:
        session = uow.session
        dialect = session.get_bind().dialect.name

        if text and dialect == "postgresql":
            condition, rank = full_text_match(text)
            query = query.where(condition).order_by(rank.desc(), books.c.id)
        elif text:
            # No full-text engine, match any term as a substring
            terms = text.split()
            query = query.where(
                or_(
                    *[books.c.title.icontains(term, autoescape=True) for term in terms],
                    *[books.c.author.icontains(term, autoescape=True) for term in terms],
                )
            ).order_by(books.c.id)
        else:
            query = query.order_by(books.c.id)

        rows = session.execute(query.limit(limit).offset(offset)).mappings().all()
        results = [dict(row) for row in rows]

    logger.info(f"Search text={text!r} year={published_year} returned {len(results)} books")
    return {
        "total_count": len(results),
        "books": results,
    }
