"""
FastAPI зависимости: аутентификация, авторизация, rate limiting, транзакции.
"""
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streakbet.core.config import settings
from streakbet.core.database import get_db, get_redis, get_session_factory
from streakbet.core.security import check_rate_limit, decode_token
from streakbet.models.user import User, UserRole
from streakbet.services.payments import HttpPaymentGateway, PaymentGateway

# ─── Получение текущего пользователя ──────────────────────────────────────────

async def get_current_user(
    authorization: Annotated[Optional[str], Header()] = None,
    session: AsyncSession = Depends(get_db),
) -> User:
    """Извлекает пользователя из JWT токена."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing or invalid",
        )
    token = authorization.removeprefix("Bearer ").strip()
    try:
        payload = decode_token(token)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")

    result = await session.execute(select(User).where(User.id == int(user_id)))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if user.is_blocked:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is blocked")

    return user


# ─── Ограничение доступа по ролям ─────────────────────────────────────────────

def require_role(*roles: UserRole):
    """Фабрика зависимостей для проверки ролей."""
    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {[r.value for r in roles]}",
            )
        return user
    return _check


def require_admin():
    return require_role(UserRole.admin, UserRole.super_admin)


# ─── Rate limiting ────────────────────────────────────────────────────────────

async def rate_limit_standard(user: User = Depends(get_current_user)) -> None:
    """settings.rate_limit_per_minute запросов в минуту на пользователя."""
    redis = await get_redis()
    allowed = await check_rate_limit(redis, f"rate:std:{user.id}", limit=settings.rate_limit_per_minute)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Try again in a minute.",
        )


# ─── Транзакции и внешние сервисы ─────────────────────────────────────────────

def get_transaction_factory() -> async_sessionmaker[AsyncSession]:
    """Фабрика сессий для run_in_transaction в изменяющих эндпоинтах."""
    return get_session_factory()


_gateway: Optional[HttpPaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = HttpPaymentGateway()
    return _gateway


async def close_payment_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.close()
        _gateway = None
