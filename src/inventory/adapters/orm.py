import logging
from sqlalchemy import (
    Table,
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    UniqueConstraint,
    event,
    false,
    func,
    literal_column,
    true,
)
from sqlalchemy.orm import registry
from inventory.domain import model

logger = logging.getLogger(__name__)

# SQLAlchemy 2.0 pattern: use registry
mapper_registry = registry()
metadata = mapper_registry.metadata

SEARCH_CONFIG = literal_column("'english'::regconfig")

books = Table(
    "books",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("author", String(255), nullable=False),
    Column("isbn", String(20), nullable=False),
    Column("published_year", Integer, nullable=False),
    Column(
        "availability_status",
        Enum(
            model.AvailabilityStatus,
            name="availability_status",
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        server_default=model.AvailabilityStatus.AVAILABLE.value,
    ),
    Column("is_deleted", Boolean, nullable=False, server_default=false()),
    Column("version_number", Integer, nullable=False, server_default="0"),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
)

# ISBN is only unique among books that have not been soft deleted
Index(
    "uq_books_isbn_active",
    books.c.isbn,
    unique=True,
    postgresql_where=books.c.is_deleted == false(),
    sqlite_where=books.c.is_deleted == false(),
)

Index(
    "ix_books_title_author_search",
    func.to_tsvector(SEARCH_CONFIG, books.c.title + " " + books.c.author),
    postgresql_using="gin",
).ddl_if(dialect="postgresql")

# Read-side tables for wishlist resolution - not mapped to domain entities
users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), unique=True, nullable=False),
    Column("created_at", DateTime, server_default=func.now()),
)

wishlists = Table(
    "wishlists",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("book_id", Integer, ForeignKey("books.id"), nullable=False),
    Column("active", Boolean, nullable=False, server_default=true()),
    Column("created_at", DateTime, server_default=func.now()),
    UniqueConstraint("user_id", "book_id", name="uq_wishlists_user_book"),
)


def start_mappers():
    logger.info("Starting mappers")
    mapper_registry.map_imperatively(
        model.Book,
        books,
        version_id_col=books.c.version_number,
    )


@event.listens_for(model.Book, "load")
def receive_load(book, _):
    book.events = []
