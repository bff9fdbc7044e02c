from typing import Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)


class LibraryException(Exception):
    """Base exception for library-related errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def to_content(self) -> dict:
        return {"message": self.message}


# Auth Exceptions
class NotAuthenticatedError(LibraryException):
    """Raised when no usable credential accompanies the request."""


class PermissionDeniedError(LibraryException):
    """Raised when a credential is invalid or its role is not allowed."""

    def __init__(
        self,
        message: str,
        error: Optional[str] = None,
        required: Optional[Iterable[str]] = None,
    ):
        self.error = error
        self.required = list(required) if required is not None else None
        super().__init__(message)

    def to_content(self) -> dict:
        content = {"message": self.message}
        if self.error is not None:
            content["error"] = self.error
        if self.required is not None:
            content["required"] = self.required
        return content


# Store and domain exceptions
class RecordNotFoundError(LibraryException):
    """Raised when no row exists for the given id."""

    def __init__(self, entity: str, record_id):
        self.record_id = record_id
        super().__init__(f"{entity} not found")


class BookNotFoundError(RecordNotFoundError):
    def __init__(self, book_id: int):
        super().__init__("Book", book_id)


class StudentNotFoundError(RecordNotFoundError):
    def __init__(self, student_id: int):
        super().__init__("Student", student_id)


class BadRequestError(LibraryException):
    """Raised for missing parameters, empty updates and similar caller mistakes."""


class BookOutOfStockError(BadRequestError):
    """Raised when a book has no copies left to borrow."""

    def __init__(self, book_id: int):
        self.book_id = book_id
        super().__init__("Book is out of stock")


class BorrowNotActiveError(BadRequestError):
    """Raised when returning a borrow that does not exist or was already returned."""

    def __init__(self, borrow_id: int):
        self.borrow_id = borrow_id
        super().__init__("Borrow record not found or already returned")


class InvalidRecordError(BadRequestError):
    """Raised when the store rejects a write, or a referenced row is missing."""


class DatabaseError(LibraryException):
    def __init__(self, operation: str, details: str):
        self.operation = operation
        self.details = details
        super().__init__(f"Database error during {operation}: {details}")


# API exception handlers

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.error(f"HTTP error {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Request validation error: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request parameters. Please check your input."},
    )


async def response_validation_exception_handler(
    request: Request, exc: ResponseValidationError
):
    logger.error(f"Response validation error: {exc.errors()}")
    return JSONResponse(
        status_code=500,
        content={
            "message": "The server encountered an unexpected error. Please contact support."
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"message": "An unexpected error occurred. Please contact support."},
    )


async def not_authenticated_exception_handler(
    request: Request, exc: NotAuthenticatedError
):
    logger.warning(f"Unauthenticated request to {request.url.path}: {exc}")
    return JSONResponse(status_code=401, content=exc.to_content())


async def permission_denied_exception_handler(
    request: Request, exc: PermissionDeniedError
):
    logger.warning(f"Forbidden request to {request.url.path}: {exc}")
    return JSONResponse(status_code=403, content=exc.to_content())


async def record_not_found_exception_handler(
    request: Request, exc: RecordNotFoundError
):
    logger.error(f"Record not found: {exc} (id={exc.record_id})")
    return JSONResponse(status_code=404, content=exc.to_content())


async def bad_request_exception_handler(request: Request, exc: BadRequestError):
    logger.error(f"Bad request: {exc}")
    return JSONResponse(status_code=400, content=exc.to_content())


async def database_exception_handler(request: Request, exc: DatabaseError):
    logger.error(f"Store failure: {exc}")
    return JSONResponse(status_code=500, content={"error": exc.message})


def add_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(
        ResponseValidationError, response_validation_exception_handler
    )
    app.add_exception_handler(Exception, general_exception_handler)
    app.add_exception_handler(NotAuthenticatedError, not_authenticated_exception_handler)
    app.add_exception_handler(PermissionDeniedError, permission_denied_exception_handler)
    app.add_exception_handler(RecordNotFoundError, record_not_found_exception_handler)
    app.add_exception_handler(BadRequestError, bad_request_exception_handler)
    app.add_exception_handler(DatabaseError, database_exception_handler)
