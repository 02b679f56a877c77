"""
/challenges — каталог, активные испытания, детали, покупка и сброс.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streakbet.api.dependencies import (
    get_current_user, get_payment_gateway, get_transaction_factory, rate_limit_standard, require_admin,
)
from streakbet.core.database import get_db, run_in_transaction
from streakbet.models.challenge import Difficulty
from streakbet.models.user import User
from streakbet.schemas.challenge import ChallengeOut, ChallengeWithLevelsOut
from streakbet.schemas.common import APIResponse
from streakbet.services import catalog
from streakbet.services.challenge_manager import ChallengeManager, days_remaining
from streakbet.services.payments import PaymentGateway

router = APIRouter(prefix="/challenges", tags=["challenges"])


# ─── Схемы ────────────────────────────────────────────────────────────────────

class ChallengeListOut(BaseModel):
    challenges: list[ChallengeWithLevelsOut]
    can_create_more: bool
    current_count: int
    max_allowed: int


class CatalogLevelOut(BaseModel):
    level: int
    name: str
    streak_required: int
    reward: float


class CatalogItemOut(BaseModel):
    tier: int
    label: str
    cost: float
    reset_fee: float
    difficulty: str
    min_odds: float
    levels: list[CatalogLevelOut]


class BetLinkOut(BaseModel):
    bet_id: int
    matchup: str
    selection: str
    odds_decimal: float
    min_odds: float
    streak_before: int
    level_before: int
    result: Optional[str]
    streak_after: Optional[int]
    level_after: Optional[int]
    level_completed: Optional[int]
    skipped_reason: Optional[str]
    settled_at: Optional[datetime]


class RewardOut(BaseModel):
    id: int
    level: int
    amount: float
    status: str
    unlocked_at: datetime
    paid_at: Optional[datetime]

    model_config = {"from_attributes": True}


class ChallengeDetailOut(ChallengeWithLevelsOut):
    rewards: list[RewardOut]
    bets: list[BetLinkOut]


class PurchaseRequest(BaseModel):
    user_id: int
    tier: int
    difficulty: Difficulty
    payment_reference: Optional[str] = None


# ─── Эндпоинты ────────────────────────────────────────────────────────────────

@router.get("", response_model=APIResponse[ChallengeListOut])
async def list_challenges(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
) -> APIResponse[ChallengeListOut]:
    """Активные испытания пользователя и лимит на новые."""
    listing = await ChallengeManager(session).list(user.id)
    return APIResponse(data=ChallengeListOut(
        challenges=[ChallengeWithLevelsOut.build(v.challenge, v.days_remaining) for v in listing.challenges],
        can_create_more=listing.can_create_more,
        current_count=listing.current_count,
        max_allowed=listing.max_allowed,
    ))


@router.get("/catalog", response_model=APIResponse[list[CatalogItemOut]])
async def get_catalog() -> APIResponse[list[CatalogItemOut]]:
    """Размеры счетов, цены и лестницы наград. Без авторизации."""
    return APIResponse(data=[CatalogItemOut(**item) for item in catalog.catalog_snapshot()])


@router.get("/history", response_model=APIResponse[list[ChallengeOut]])
async def challenge_history(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
) -> APIResponse[list[ChallengeOut]]:
    """Все испытания пользователя, включая истёкшие и отменённые."""
    challenges = await ChallengeManager(session).history(user.id)
    return APIResponse(data=[ChallengeOut.model_validate(c) for c in challenges])


@router.get("/{challenge_id}", response_model=APIResponse[ChallengeDetailOut])
async def get_challenge(
    challenge_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
) -> APIResponse[ChallengeDetailOut]:
    """Испытание с состояниями уровней, наградами и привязанными ставками."""
    challenge = await ChallengeManager(session).get(challenge_id, user_id=user.id)
    base = ChallengeWithLevelsOut.build(
        challenge, days_remaining(challenge.expires_at, datetime.now(timezone.utc))
    )
    bets = [
        BetLinkOut(
            bet_id=link.bet_id,
            matchup=link.bet.matchup,
            selection=link.bet.selection,
            odds_decimal=float(link.bet.odds_decimal),
            min_odds=float(link.min_odds),
            streak_before=link.streak_before,
            level_before=link.level_before,
            result=link.result,
            streak_after=link.streak_after,
            level_after=link.level_after,
            level_completed=link.level_completed,
            skipped_reason=link.skipped_reason,
            settled_at=link.settled_at,
        )
        for link in sorted(challenge.bet_links, key=lambda l: l.bet_id)
    ]
    return APIResponse(data=ChallengeDetailOut(
        **base.model_dump(),
        rewards=[RewardOut.model_validate(r) for r in challenge.rewards],
        bets=bets,
    ))


@router.post("/purchase", response_model=APIResponse[ChallengeOut])
async def purchase_challenge(
    body: PurchaseRequest,
    admin: User = Depends(require_admin()),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[ChallengeOut]:
    """
    Создание испытания после оплаты вне платформы (внутренний вызов).
    Клиентский поток идёт через вебхук /webhooks/challenge-purchased.
    """
    challenge = await run_in_transaction(
        factory,
        lambda s: ChallengeManager(s).purchase(
            body.user_id, body.tier, body.difficulty, payment_reference=body.payment_reference
        ),
        label="purchase",
    )
    return APIResponse(data=ChallengeOut.model_validate(challenge), message="Challenge created")


@router.post(
    "/{challenge_id}/reset",
    response_model=APIResponse[ChallengeOut],
    dependencies=[Depends(rate_limit_standard)],
)
async def reset_challenge(
    challenge_id: int,
    user: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[ChallengeOut]:
    """Платный перезапуск истёкшего испытания."""
    challenge = await run_in_transaction(
        factory,
        lambda s: ChallengeManager(s).reset(challenge_id, user.id, gateway),
        label="reset",
    )
    return APIResponse(
        data=ChallengeOut.model_validate(challenge),
        message=f"Challenge reset for €{challenge.cost}",
    )
