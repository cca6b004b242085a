# This project was developed with assistance from AI tools.
"""FastAPI application entry point."""

import logging
import uuid
from contextlib import asynccontextmanager

from db import DatabaseError, DatabaseService
from db.config import db_settings
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .core.config import settings
from .observability import configure_logging, log_payment_status
from .routes import admin, applications, auth, health, payments
from .schemas.error import ErrorResponse, FieldError
from .services.application import InvalidTransitionError
from .services.storage import FileSystemError, init_storage_service

logger = logging.getLogger(__name__)

_UNIQUE_VIOLATION = "23505"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the connection pool and storage client; tear the pool down on exit."""
    configure_logging(settings.LOG_LEVEL)
    log_payment_status()
    app.state.db_service = DatabaseService.from_settings(db_settings)
    init_storage_service(settings)
    try:
        yield
    finally:
        await app.state.db_service.dispose()


app = FastAPI(
    title="Permisos Digitales API",
    description="Online vehicle circulation permits: applications, payments and admin portal",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

_HTTP_STATUS_TITLES: dict[int, str] = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    413: "Payload Too Large",
    422: "Unprocessable Entity",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id", str(uuid.uuid4()))


def _build_error(
    status_code: int,
    detail: str,
    request_id: str,
    errors: list[FieldError] | None = None,
) -> ErrorResponse:
    return ErrorResponse(
        type="about:blank",
        title=_HTTP_STATUS_TITLES.get(status_code, "Error"),
        status=status_code,
        detail=detail,
        request_id=request_id,
        errors=errors or [],
    )


def _problem(status_code: int, body: ErrorResponse, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(),
        media_type="application/problem+json",
        headers=headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Convert HTTPException to RFC 7807 Problem Details."""
    body = _build_error(exc.status_code, str(exc.detail), _request_id(request))
    return _problem(exc.status_code, body, getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert Pydantic validation errors to Problem Details with per-field messages."""
    errors = [
        FieldError(
            field=".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            message=err.get("msg", "Invalid value"),
        )
        for err in exc.errors()
    ]
    body = _build_error(422, "Request validation failed.", _request_id(request), errors)
    return _problem(422, body)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    body = _build_error(409, str(exc), _request_id(request))
    return _problem(409, body)


@app.exception_handler(DatabaseError)
async def database_error_handler(request: Request, exc: DatabaseError):
    """Unique violations are conflicts; every other database failure is a generic 500."""
    request_id = _request_id(request)
    if exc.code == _UNIQUE_VIOLATION:
        body = _build_error(409, "The record already exists.", request_id)
        return _problem(409, body)
    logger.error(
        "Database error (request_id=%s, code=%s, context=%s): %s",
        request_id,
        exc.code,
        exc.context,
        exc,
    )
    body = _build_error(500, "An unexpected error occurred.", request_id)
    return _problem(500, body)


@app.exception_handler(FileSystemError)
async def storage_error_handler(request: Request, exc: FileSystemError):
    request_id = _request_id(request)
    logger.error(
        "Storage error (request_id=%s, operation=%s, key=%s): %s",
        request_id,
        exc.operation,
        exc.key,
        exc,
    )
    body = _build_error(500, "An unexpected error occurred.", request_id)
    return _problem(500, body)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all for unhandled exceptions -- log and return 500."""
    request_id = _request_id(request)
    logger.exception("Unhandled exception (request_id=%s)", request_id)
    body = _build_error(500, "An unexpected error occurred.", request_id)
    return _problem(500, body)


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(applications.router, prefix="/api/applications", tags=["applications"])
app.include_router(payments.router, prefix="/api/payments", tags=["payments"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Welcome to Permisos Digitales API"}
