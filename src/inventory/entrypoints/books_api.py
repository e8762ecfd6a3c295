"""
Books API Entrypoint - Thin API with Command Dispatch
API receives payloads and dispatches commands through message bus
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError

import config
from inventory import views
from inventory.adapters import orm
from inventory.adapters.redis_publisher import PublishError
from inventory.domain import commands
from inventory.domain.errors import (
    InventoryError,
    ValidationError,
    DuplicateError,
    NotFoundError,
    ConflictError,
    StorageError,
)
from inventory.domain.model import AvailabilityStatus, ISBN_PATTERN
from inventory.service_layer import messagebus
from inventory.service_layer.unit_of_work import AbstractUnitOfWork, SqlAlchemyUnitOfWork

logging.basicConfig(
    level=getattr(logging, config.get_log_level()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SAVE_SUCCESSFUL = "Save successful"
DELETE_SUCCESSFUL = "Delete successful"

STATUS_CODES = {
    ValidationError: 400,
    DuplicateError: 409,
    NotFoundError: 404,
    ConflictError: 409,
    StorageError: 500,
}

app = FastAPI(
    title="Library Inventory API",
    description="Book inventory with search, soft delete and availability notifications",
    version="1.0.0"
)


# Initialize database and ORM mappers (Cosmic Python pattern)
@app.on_event("startup")
async def startup_event():
    engine = create_engine(config.get_postgres_uri())
    orm.metadata.create_all(engine)
    orm.start_mappers()
    logger.info("✓ Inventory database initialized")


def get_uow() -> AbstractUnitOfWork:
    return SqlAlchemyUnitOfWork()


# ---------- Request/Response models ----------

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookRequest(CamelModel):
    title: str = Field(min_length=1, max_length=255)
    author: str = Field(min_length=1, max_length=255)
    isbn: str = Field(pattern=ISBN_PATTERN.pattern)
    published_year: int
    availability_status: AvailabilityStatus = AvailabilityStatus.AVAILABLE


class BookPatchRequest(CamelModel):
    """Partial update. Fields left out of the body are not touched."""
    id: int
    title: Optional[str] = Field(default=None, max_length=255)
    author: Optional[str] = Field(default=None, max_length=255)
    isbn: Optional[str] = Field(default=None, pattern=ISBN_PATTERN.pattern)
    published_year: Optional[int] = None
    availability_status: Optional[AvailabilityStatus] = None

    def changes(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set if name != "id"}


class MessageResponse(CamelModel):
    id: int
    message: str


class BookView(CamelModel):
    id: int
    title: str
    author: str
    isbn: str
    published_year: int
    availability_status: AvailabilityStatus


class SearchResponse(CamelModel):
    total_count: int
    books: List[BookView]


class BatchDeleteResponse(CamelModel):
    deleted_ids: List[int]
    not_deleted_ids: List[int]
    reasons: Dict[int, str]


def error_body(error_code: str, message: str, details: Optional[Dict[str, Any]] = None):
    return {"errorCode": error_code, "message": message, "details": details or {}}


# ---------- Error handlers ----------

@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    status_code = STATUS_CODES.get(type(exc), 500)
    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.error_code, exc.message, exc.details),
    )


@app.exception_handler(PublishError)
async def publish_error_handler(request: Request, exc: PublishError):
    # The update itself is committed, only the notification event is missing
    return JSONResponse(
        status_code=503,
        content=error_body(
            "EVENT_PUBLISH_FAILED",
            str(exc),
            {"bookId": exc.book_id, "eventId": exc.event_id, "updated": exc.committed},
        ),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    violations = {
        ".".join(str(part) for part in error["loc"]): error["msg"]
        for error in exc.errors()
    }
    return JSONResponse(
        status_code=400,
        content=error_body("VALIDATION_FAILED", "Validation failed for request", {"violations": violations}),
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error: {exc}")
    return JSONResponse(
        status_code=500,
        content=error_body("DB_ERROR", "Database operation failed"),
    )


# ---------- Endpoints ----------

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "library-inventory-api",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.post("/books", response_model=MessageResponse)
def add_book(book: BookRequest, uow: AbstractUnitOfWork = Depends(get_uow)):
    cmd = commands.CreateBook(
        title=book.title,
        author=book.author,
        isbn=book.isbn,
        published_year=book.published_year,
        availability_status=book.availability_status,
    )
    [book_id] = messagebus.handle(cmd, uow)
    return MessageResponse(id=book_id, message=SAVE_SUCCESSFUL)


@app.patch("/books", response_model=MessageResponse)
def update_book(book: BookPatchRequest, uow: AbstractUnitOfWork = Depends(get_uow)):
    """
    Patch a book. Making a borrowed book available publishes a notification
    event; if that fails the response is 503 although the update is stored.
    """
    cmd = commands.UpdateBook(book_id=book.id, changes=book.changes())
    [outcome] = messagebus.handle(cmd, uow)
    return MessageResponse(id=outcome.book_id, message=outcome.message)


@app.get("/books/search", response_model=SearchResponse)
def search_books(
    searchText: Optional[str] = None,
    publishedYear: Optional[int] = None,
    limit: int = Query(default=25, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return views.search_books(searchText, publishedYear, limit, offset, uow)


# Must be registered before /books/{book_id}
@app.delete("/books/delete-batch", response_model=BatchDeleteResponse)
def delete_books_in_batch(
    book_ids: List[int] = Body(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    [outcome] = messagebus.handle(commands.DeleteBooks(book_ids=book_ids), uow)
    return BatchDeleteResponse(
        deleted_ids=outcome.deleted_ids,
        not_deleted_ids=outcome.not_deleted_ids,
        reasons=outcome.reasons,
    )


@app.delete("/books/{book_id}", response_model=MessageResponse)
def delete_book(book_id: int, uow: AbstractUnitOfWork = Depends(get_uow)):
    [deleted_id] = messagebus.handle(commands.DeleteBook(book_id=book_id), uow)
    return MessageResponse(id=deleted_id, message=DELETE_SUCCESSFUL)


def main():
    """Run the books API with uvicorn."""
    uvicorn.run(app, **config.get_api_host_and_port())


if __name__ == "__main__":
    main()
