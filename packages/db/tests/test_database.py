# This project was developed with assistance from AI tools.
"""Tests for the DatabaseService pool wrapper (no database required)."""

import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from db.database import DatabaseError, DatabaseService, get_db_service


class _DriverError(Exception):
    def __init__(self, message: str, sqlstate: str):
        super().__init__(message)
        self.sqlstate = sqlstate


def _engine_with_result(result=None, error=None):
    """MagicMock engine whose ``begin()`` yields a connection returning ``result``."""
    conn = AsyncMock()
    if error is not None:
        conn.execute = AsyncMock(side_effect=error)
    else:
        conn.execute = AsyncMock(return_value=result)
    engine = MagicMock()
    engine.begin.return_value.__aenter__.return_value = conn
    engine.begin.return_value.__aexit__.return_value = False
    engine.dispose = AsyncMock()
    return engine, conn


def _rows_result(rows):
    result = MagicMock()
    result.returns_rows = True
    result.mappings.return_value.all.return_value = rows
    return result


def _service_with_session(events: list | None = None):
    """DatabaseService whose session factory hands out one tracked AsyncMock session."""
    session = AsyncMock()
    if events is not None:
        session.commit = AsyncMock(side_effect=lambda: events.append("commit"))
        session.rollback = AsyncMock(side_effect=lambda: events.append("rollback"))
        session.close = AsyncMock(side_effect=lambda: events.append("close"))
    service = DatabaseService(MagicMock(), session_factory=MagicMock(return_value=session))
    return service, session


# ---------------------------------------------------------------------------
# query()
# ---------------------------------------------------------------------------


async def test_query_returns_rows():
    engine, conn = _engine_with_result(_rows_result([{"id": 1}, {"id": 2}]))
    service = DatabaseService(engine)

    rows = await service.query("SELECT id FROM users WHERE email = :email", {"email": "a@b.mx"})

    assert rows == [{"id": 1}, {"id": 2}]
    sql, params = conn.execute.await_args.args
    assert "SELECT id FROM users" in str(sql)
    assert params == {"email": "a@b.mx"}


async def test_query_without_rows_returns_empty_list():
    result = MagicMock()
    result.returns_rows = False
    engine, _ = _engine_with_result(result)

    assert await DatabaseService(engine).query("UPDATE users SET is_active = true") == []


async def test_query_failure_raises_database_error_with_sqlstate(caplog):
    driver_error = _DriverError("duplicate key", "23505")
    engine, _ = _engine_with_result(error=IntegrityError("INSERT ...", {}, driver_error))
    service = DatabaseService(engine)

    with caplog.at_level(logging.ERROR, logger="db.database"):
        with pytest.raises(DatabaseError) as exc_info:
            await service.query("INSERT INTO users (email) VALUES (:email)", {"email": "x"})

    assert exc_info.value.code == "23505"
    assert isinstance(exc_info.value.__cause__, IntegrityError)
    assert "code=23505" in caplog.text


async def test_query_failure_redacts_sensitive_params(caplog):
    engine, _ = _engine_with_result(
        error=OperationalError("UPDATE ...", {}, _DriverError("boom", "08006"))
    )

    with caplog.at_level(logging.ERROR, logger="db.database"):
        with pytest.raises(DatabaseError):
            await DatabaseService(engine).query(
                "UPDATE users SET password_hash = :password_hash",
                {"password_hash": "$2b$12$secret"},
            )

    assert "$2b$12$secret" not in caplog.text
    assert "***" in caplog.text


async def test_slow_query_logs_warning(caplog):
    engine, _ = _engine_with_result(_rows_result([]))
    service = DatabaseService(engine, slow_query_ms=500)

    with patch("db.database.time.perf_counter", side_effect=[0.0, 0.75]):
        with caplog.at_level(logging.WARNING, logger="db.database"):
            await service.query("SELECT * FROM permit_applications")

    assert "Slow query" in caplog.text
    assert "permit_applications" in caplog.text


async def test_fast_query_does_not_warn(caplog):
    engine, _ = _engine_with_result(_rows_result([]))
    service = DatabaseService(engine, slow_query_ms=500)

    with patch("db.database.time.perf_counter", side_effect=[0.0, 0.01]):
        with caplog.at_level(logging.WARNING, logger="db.database"):
            await service.query("SELECT 1")

    assert "Slow query" not in caplog.text


# ---------------------------------------------------------------------------
# transaction() / with_transaction()
# ---------------------------------------------------------------------------


async def test_with_transaction_commits_and_returns_callback_result():
    events: list[str] = []
    service, session = _service_with_session(events)

    async def callback(s):
        assert s is session
        return 42

    assert await service.with_transaction(callback) == 42
    assert events == ["commit", "close"]


async def test_callback_failure_rolls_back_before_propagating_and_never_commits():
    events: list[str] = []
    service, session = _service_with_session(events)

    async def callback(_s):
        events.append("callback")
        raise ValueError("not allowed")

    with pytest.raises(ValueError, match="not allowed"):
        await service.with_transaction(callback)

    assert events == ["callback", "rollback", "close"]
    session.commit.assert_not_awaited()


async def test_session_is_closed_even_when_rollback_fails():
    service, session = _service_with_session()
    session.rollback = AsyncMock(side_effect=OperationalError("ROLLBACK", {}, Exception("gone")))

    async def callback(_s):
        raise RuntimeError("boom")

    with pytest.raises(DatabaseError):
        await service.with_transaction(callback)

    session.close.assert_awaited_once()


async def test_sqlalchemy_error_in_callback_is_wrapped():
    service, session = _service_with_session()

    async def callback(_s):
        raise IntegrityError("INSERT ...", {}, _DriverError("dup", "23505"))

    with pytest.raises(DatabaseError) as exc_info:
        await service.with_transaction(callback, context="create application")

    assert exc_info.value.code == "23505"
    assert exc_info.value.context == "create application"
    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()
    session.close.assert_awaited_once()


async def test_commit_failure_rolls_back_and_wraps():
    service, session = _service_with_session()
    session.commit = AsyncMock(side_effect=OperationalError("COMMIT", {}, _DriverError("x", "40001")))

    async def callback(_s):
        return "ok"

    with pytest.raises(DatabaseError) as exc_info:
        await service.with_transaction(callback)

    assert exc_info.value.code == "40001"
    session.rollback.assert_awaited_once()
    session.close.assert_awaited_once()


async def test_read_only_transaction_sets_transaction_mode():
    service, session = _service_with_session()

    async with service.transaction(read_only=True) as s:
        assert s is session

    statement = session.execute.await_args.args[0]
    assert str(statement) == "SET TRANSACTION READ ONLY"
    session.commit.assert_awaited_once()


# ---------------------------------------------------------------------------
# Lifecycle & dependencies
# ---------------------------------------------------------------------------


async def test_health_check_true_on_success():
    engine, _ = _engine_with_result(_rows_result([{"?column?": 1}]))
    assert await DatabaseService(engine).health_check() is True


async def test_health_check_false_on_failure():
    engine, _ = _engine_with_result(
        error=OperationalError("SELECT 1", {}, _DriverError("refused", "08001"))
    )
    assert await DatabaseService(engine).health_check() is False


async def test_dispose_disposes_engine():
    engine, _ = _engine_with_result()
    await DatabaseService(engine).dispose()
    engine.dispose.assert_awaited_once()


def test_get_db_service_reads_app_state():
    service = DatabaseService(MagicMock())
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(db_service=service)))
    assert get_db_service(request) is service


def test_get_db_service_without_lifespan_raises():
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))
    with pytest.raises(RuntimeError, match="not initialised"):
        get_db_service(request)
