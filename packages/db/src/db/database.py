# This project was developed with assistance from AI tools.
"""Connection pool wrapper.

``DatabaseService`` owns the async engine (and therefore the pooled
connections). It is built once in the API lifespan, parked on
``app.state`` and handed to request handlers through ``get_db_service`` /
``get_db``. Nothing in this module holds a process-wide pool.

Failed statements are logged and re-raised immediately -- no retries.
"""

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from starlette.requests import Request

from .config import DatabaseSettings, db_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SENSITIVE_PARAMS = ("password", "token", "secret")
_MAX_LOGGED_SQL = 200


class Base(DeclarativeBase):
    # Fetch server-generated timestamps with RETURNING so async code never lazy-loads them.
    __mapper_args__ = {"eager_defaults": True}


class DatabaseError(Exception):
    """A database operation failed. ``code`` is the SQLSTATE when the driver reports one."""

    def __init__(self, message: str, *, code: str | None = None, context: str | None = None):
        super().__init__(message)
        self.code = code
        self.context = context


def _sqlstate(exc: BaseException) -> str | None:
    """Dig the SQLSTATE out of a SQLAlchemy-wrapped driver error."""
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        for attr in ("sqlstate", "pgcode"):
            value = getattr(candidate, attr, None)
            if isinstance(value, str) and value:
                return value
    return None


def _shorten(sql: str) -> str:
    flat = " ".join(sql.split())
    return flat if len(flat) <= _MAX_LOGGED_SQL else flat[:_MAX_LOGGED_SQL] + "..."


def _redact(params: Mapping[str, Any] | None) -> dict[str, Any]:
    if not params:
        return {}
    return {
        key: "***" if any(s in key.lower() for s in _SENSITIVE_PARAMS) else value
        for key, value in params.items()
    }


class DatabaseService:
    """Thin wrapper around an ``AsyncEngine`` with query and transaction helpers."""

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        slow_query_ms: int = 500,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.engine = engine
        self.slow_query_ms = slow_query_ms
        self.session_factory = session_factory or async_sessionmaker(
            engine, expire_on_commit=False, autoflush=False
        )

    @classmethod
    def from_settings(cls, settings: DatabaseSettings = db_settings) -> "DatabaseService":
        """Build the engine and pool from settings (called from the app lifespan)."""
        engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_CONNECT_TIMEOUT,
            pool_pre_ping=True,
            echo=settings.SQL_ECHO,
        )
        logger.info(
            "Database pool created (pool_size=%d, max_overflow=%d, timeout=%ds)",
            settings.DB_POOL_SIZE,
            settings.DB_MAX_OVERFLOW,
            settings.DB_CONNECT_TIMEOUT,
        )
        return cls(engine, slow_query_ms=settings.SLOW_QUERY_MS)

    # ------------------------------------------------------------------
    # Plain queries
    # ------------------------------------------------------------------

    async def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list:
        """Execute one statement on a pooled connection and return its rows as mappings.

        The statement runs in its own short transaction (committed on exit).
        Statements that return no rows yield an empty list.
        """
        start = time.perf_counter()
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql), dict(params or {}))
                rows = list(result.mappings().all()) if result.returns_rows else []
        except SQLAlchemyError as exc:
            code = _sqlstate(exc)
            logger.error(
                "Query failed (code=%s, %.1f ms): %s params=%s error=%s",
                code,
                (time.perf_counter() - start) * 1000,
                _shorten(sql),
                _redact(params),
                exc,
            )
            raise DatabaseError("Database query failed", code=code) from exc

        elapsed_ms = (time.perf_counter() - start) * 1000
        if elapsed_ms > self.slow_query_ms:
            logger.warning("Slow query (%.1f ms): %s", elapsed_ms, _shorten(sql))
        else:
            logger.debug("Query executed (%.1f ms, rows=%d): %s", elapsed_ms, len(rows), _shorten(sql))
        return rows

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self, *, read_only: bool = False) -> AsyncIterator[AsyncSession]:
        """Yield a session inside one transaction.

        Commits when the block exits cleanly, rolls back on any exception,
        and always closes the session (returning its connection to the pool).
        """
        session = self.session_factory()
        try:
            if read_only:
                await session.execute(text("SET TRANSACTION READ ONLY"))
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            logger.warning("Transaction rolled back (read_only=%s)", read_only)
            raise
        finally:
            await session.close()

    async def with_transaction(
        self,
        callback: Callable[[AsyncSession], Awaitable[T]],
        *,
        read_only: bool = False,
        context: str | None = None,
    ) -> T:
        """Run ``callback(session)`` in a transaction and return its result.

        Driver/ORM failures are wrapped in ``DatabaseError``; any other
        exception raised by the callback propagates unchanged after rollback.
        """
        try:
            async with self.transaction(read_only=read_only) as session:
                return await callback(session)
        except SQLAlchemyError as exc:
            code = _sqlstate(exc)
            logger.error("Transaction failed (context=%s, code=%s): %s", context, code, exc)
            raise DatabaseError(
                f"Transaction failed: {context or 'unnamed'}", code=code, context=context
            ) from exc

    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a request-scoped session; callers commit explicitly."""
        async with self.session_factory() as session:
            yield session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def health_check(self) -> bool:
        """Return True if a trivial query succeeds. Never raises."""
        try:
            await self.query("SELECT 1")
        except (DatabaseError, OSError) as exc:
            logger.warning("Database health check failed: %s", exc)
            return False
        return True

    async def dispose(self) -> None:
        """Close every pooled connection (called on shutdown)."""
        await self.engine.dispose()
        logger.info("Database pool disposed")


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_db_service(request: Request) -> DatabaseService:
    """Return the DatabaseService the app lifespan attached to ``app.state``."""
    service = getattr(request.app.state, "db_service", None)
    if service is None:
        raise RuntimeError("DatabaseService not initialised -- is the app lifespan running?")
    return service


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Request-scoped session. Handlers commit explicitly."""
    async for session in get_db_service(request).session():
        yield session
