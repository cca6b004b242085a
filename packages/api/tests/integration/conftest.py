# This project was developed with assistance from AI tools.
"""Integration test fixtures -- real PostgreSQL, no database mocks.

A session-scoped container provides PostgreSQL with the Alembic schema
applied. Each test gets one connection with an outer transaction that is
rolled back at the end; both the request-scoped session and the
``DatabaseService`` used by write routes are bound to that connection with
``create_savepoint``, so route commits and rollbacks behave like the real
thing without leaking state between tests.
"""

import os
from collections import namedtuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool
from testcontainers.postgres import PostgresContainer

# ---------------------------------------------------------------------------
# Mark all tests in this directory as integration
# ---------------------------------------------------------------------------
pytestmark = pytest.mark.integration

_DB_DIR = os.path.join(os.path.dirname(__file__), "..", "..", "..", "db")


# ---------------------------------------------------------------------------
# Session-scoped: container + engine + migrations
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_container():
    """Start postgres:16 via testcontainers."""
    with PostgresContainer(
        image="postgres:16",
        username="test",
        password="test",
        dbname="test",
    ) as pg:
        yield pg


@pytest.fixture(scope="session")
def db_url(pg_container):
    """Async DB URL for asyncpg."""
    host = pg_container.get_container_host_ip()
    port = pg_container.get_exposed_port(5432)
    return f"postgresql+asyncpg://test:test@{host}:{port}/test"


@pytest.fixture(scope="session")
def sync_db_url(pg_container):
    """Sync DB URL for Alembic (psycopg2)."""
    host = pg_container.get_container_host_ip()
    port = pg_container.get_exposed_port(5432)
    return f"postgresql://test:test@{host}:{port}/test"


@pytest.fixture(scope="session", autouse=True)
def _run_migrations(sync_db_url):
    """Run alembic upgrade head against the container."""
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(os.path.join(_DB_DIR, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(_DB_DIR, "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", sync_db_url)
    command.upgrade(alembic_cfg, "head")


@pytest.fixture(scope="session")
def async_engine(db_url, _run_migrations):
    """Create an async engine pointing at the test container."""
    engine = create_async_engine(db_url, echo=False, poolclass=NullPool)
    yield engine


# ---------------------------------------------------------------------------
# Function-scoped: one connection, savepoint-bound sessions
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_conn(async_engine):
    """Connection with an outer transaction rolled back after the test."""
    conn = await async_engine.connect()
    txn = await conn.begin()
    yield conn
    await txn.rollback()
    await conn.close()


@pytest_asyncio.fixture
async def db_session(db_conn):
    """Per-test DB session with savepoint rollback."""
    session = AsyncSession(
        bind=db_conn, join_transaction_mode="create_savepoint", expire_on_commit=False
    )
    yield session
    await session.close()


@pytest.fixture
def db_service(async_engine, db_conn):
    """Real DatabaseService whose transactions are savepoints on the test connection."""
    from db import DatabaseService

    return DatabaseService(
        async_engine,
        session_factory=lambda: AsyncSession(
            bind=db_conn, join_transaction_mode="create_savepoint", expire_on_commit=False
        ),
    )


@pytest.fixture
def client_factory(db_session, db_service):
    """Factory returning an async httpx client with dependency overrides."""
    from db import get_db, get_db_service

    from src.main import app
    from src.middleware.auth import get_current_user

    async def _make(user=None):
        async def _get_db():
            yield db_session

        async def _get_current_user():
            return user

        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_db_service] = lambda: db_service
        if user is not None:
            app.dependency_overrides[get_current_user] = _get_current_user
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        return httpx.AsyncClient(transport=transport, base_url="http://test")

    yield _make

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seed data helper
# ---------------------------------------------------------------------------


SeedData = namedtuple("SeedData", ["maria", "jose", "admin", "maria_app", "jose_app"])


@pytest_asyncio.fixture
async def seed_data(db_session):
    """Two clients, one admin and one unpaid application per client."""
    from db import PermitApplication, User
    from db.enums import PermitStatus, UserRole

    from tests.factories import VALID_PERMIT_FIELDS

    def _user(email, first, last, role=UserRole.CLIENT):
        return User(
            email=email,
            password_hash="$2b$12$" + "x" * 53,
            first_name=first,
            last_name=last,
            role=role,
            account_type=role.value,
            is_admin_portal=role == UserRole.ADMIN,
            is_active=True,
        )

    maria = _user("maria@example.mx", "María", "López")
    jose = _user("jose@example.mx", "José", "Hernández")
    admin = _user("admin@permisos.mx", "Admin", "Staff", UserRole.ADMIN)
    db_session.add_all([maria, jose, admin])
    await db_session.flush()

    maria_app = PermitApplication(
        user_id=maria.id,
        status=PermitStatus.AWAITING_PAYMENT,
        importe=150,
        **VALID_PERMIT_FIELDS,
    )
    jose_app = PermitApplication(
        user_id=jose.id,
        status=PermitStatus.AWAITING_OXXO_PAYMENT,
        importe=150,
        **{**VALID_PERMIT_FIELDS, "nombre_completo": "José Hernández Cruz"},
    )
    db_session.add_all([maria_app, jose_app])
    await db_session.flush()
    await db_session.commit()

    return SeedData(maria=maria, jose=jose, admin=admin, maria_app=maria_app, jose_app=jose_app)
