from typing import AsyncGenerator, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as aioredis
from loguru import logger
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from streakbet.core.errors import EngineError, TransientConflict

T = TypeVar("T")

# SQLSTATE: serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


class Base(DeclarativeBase):
    pass


_engine = None
_session_factory = None
_redis_client = None


def get_engine(database_url: str):
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            database_url,
            echo=False,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    return _engine


def get_session_factory(engine=None) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        if engine is None:
            from streakbet.core.config import settings
            engine = get_engine(settings.database_url_async)
        _session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
            autocommit=False,
        )
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_redis() -> aioredis.Redis:
    global _redis_client
    if _redis_client is None:
        from streakbet.core.config import settings
        _redis_client = aioredis.from_url(
            settings.redis_connection_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=30,
        )
    return _redis_client


async def close_db():
    global _engine, _session_factory, _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


# ─── Транзакции с повтором ────────────────────────────────────────────────────

def is_retryable(exc: BaseException) -> bool:
    """Конфликт сериализации или дедлок — единицу работы можно повторить."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in RETRYABLE_SQLSTATES


async def run_in_transaction(
    factory: async_sessionmaker[AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
    retries: Optional[int] = None,
    label: str = "unit",
) -> T:
    """
    Выполняет `work` в новой сессии и коммитит.

    Бизнес-ошибки (EngineError) откатывают транзакцию и пробрасываются как есть.
    При конфликте сериализации вся единица работы повторяется `retries` раз,
    после чего поднимается TransientConflict.
    """
    if retries is None:
        from streakbet.core.config import settings
        retries = settings.transaction_retries

    attempt = 0
    while True:
        attempt += 1
        async with factory() as session:
            try:
                result = await work(session)
                await session.commit()
                return result
            except EngineError:
                await session.rollback()
                raise
            except DBAPIError as e:
                await session.rollback()
                if not is_retryable(e):
                    raise
                if attempt > retries:
                    logger.warning(f"{label}: serialization conflict, giving up after {attempt} attempts")
                    raise TransientConflict() from e
                logger.info(f"{label}: serialization conflict, retrying (attempt {attempt})")
