"""
Тесты для run_in_transaction — коммит, откат и повтор при конфликте сериализации.
"""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import DBAPIError

from streakbet.core.database import is_retryable, run_in_transaction
from streakbet.core.errors import LimitExceeded, TransientConflict


# ── Helpers ───────────────────────────────────────────────────────────────────

class _PgError(Exception):
    def __init__(self, sqlstate: str):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def db_error(sqlstate: str) -> DBAPIError:
    return DBAPIError("UPDATE challenges ...", {}, _PgError(sqlstate))


def make_factory():
    sessions = []

    def factory():
        session = AsyncMock()
        session.__aenter__.return_value = session
        session.__aexit__.return_value = False
        sessions.append(session)
        return session

    return factory, sessions


class TestIsRetryable:
    def test_serialization_failure(self):
        assert is_retryable(db_error("40001"))

    def test_deadlock(self):
        assert is_retryable(db_error("40P01"))

    def test_unique_violation_is_not_retryable(self):
        assert not is_retryable(db_error("23505"))

    def test_other_exception(self):
        assert not is_retryable(RuntimeError("boom"))


class TestRunInTransaction:
    @pytest.mark.asyncio
    async def test_commits_on_success(self):
        factory, sessions = make_factory()
        work = AsyncMock(return_value="ok")

        assert await run_in_transaction(factory, work, retries=1) == "ok"
        sessions[0].commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_business_error_rolls_back_without_retry(self):
        factory, sessions = make_factory()
        work = AsyncMock(side_effect=LimitExceeded())

        with pytest.raises(LimitExceeded):
            await run_in_transaction(factory, work, retries=1)
        assert len(sessions) == 1
        sessions[0].rollback.assert_awaited_once()
        sessions[0].commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_retries_once_then_succeeds(self):
        factory, sessions = make_factory()
        work = AsyncMock(side_effect=[db_error("40001"), "ok"])

        assert await run_in_transaction(factory, work, retries=1) == "ok"
        assert len(sessions) == 2
        sessions[0].rollback.assert_awaited_once()
        sessions[1].commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gives_up_with_transient_conflict(self):
        factory, sessions = make_factory()
        work = AsyncMock(side_effect=[db_error("40P01"), db_error("40001")])

        with pytest.raises(TransientConflict):
            await run_in_transaction(factory, work, retries=1)
        assert len(sessions) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_db_error_propagates(self):
        factory, sessions = make_factory()
        work = AsyncMock(side_effect=db_error("23505"))

        with pytest.raises(DBAPIError):
            await run_in_transaction(factory, work, retries=1)
        assert len(sessions) == 1
