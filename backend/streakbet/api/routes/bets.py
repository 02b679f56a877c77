"""
/bets — размещение ставок и история ставок пользователя.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from streakbet.api.dependencies import get_current_user, get_transaction_factory, rate_limit_standard
from streakbet.core.database import get_db, run_in_transaction
from streakbet.models.bet import Bet, BetResult
from streakbet.models.user import User
from streakbet.schemas.common import APIResponse
from streakbet.services.settlement import BetSettlementCoordinator

router = APIRouter(prefix="/bets", tags=["bets"])


class BetOut(BaseModel):
    id: int
    sport: str
    league: Optional[str]
    matchup: str
    bet_type: str
    selection: str
    event_id: Optional[str]
    odds: str
    odds_decimal: float
    stake: float
    result: str
    profit_loss: Optional[float]
    settled_at: Optional[datetime]
    created_at: datetime
    challenge_ids: list[int]

    model_config = {"from_attributes": True}


class PlaceBetRequest(BaseModel):
    sport: str = Field(min_length=1, max_length=64)
    league: Optional[str] = Field(None, max_length=128)
    matchup: str = Field(min_length=1, max_length=256)
    bet_type: str = Field(min_length=1, max_length=64)
    selection: str = Field(min_length=1, max_length=256)
    odds: str
    stake: Decimal = Field(gt=0)
    event_id: Optional[str] = None
    notes: Optional[str] = None
    # None: все подходящие активные испытания; []: без привязки
    challenge_ids: Optional[list[int]] = None

    @field_validator("odds", mode="before")
    @classmethod
    def odds_to_str(cls, v) -> str:
        return str(v).strip()


@router.post("", response_model=APIResponse[BetOut], dependencies=[Depends(rate_limit_standard)])
async def place_bet(
    body: PlaceBetRequest,
    user: User = Depends(get_current_user),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[BetOut]:
    """Регистрирует ставку; каждое указанное испытание должно пропускать её коэффициент."""
    bet = await run_in_transaction(
        factory,
        lambda s: BetSettlementCoordinator(s).place_bet(
            user.id,
            sport=body.sport,
            league=body.league,
            matchup=body.matchup,
            bet_type=body.bet_type,
            selection=body.selection,
            odds=body.odds,
            stake=body.stake,
            event_id=body.event_id,
            notes=body.notes,
            challenge_ids=body.challenge_ids,
        ),
        label="place_bet",
    )
    return APIResponse(data=BetOut.model_validate(bet), message="Bet placed")


@router.get("", response_model=APIResponse[list[BetOut]])
async def list_bets(
    result: Optional[BetResult] = Query(None),
    limit: int = Query(50, le=200),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
) -> APIResponse[list[BetOut]]:
    """Ставки пользователя, новые первыми."""
    stmt = (
        select(Bet)
        .where(Bet.user_id == user.id)
        .options(selectinload(Bet.challenge_links))
        .order_by(Bet.created_at.desc())
        .limit(limit)
    )
    if result is not None:
        stmt = stmt.where(Bet.result == result)
    bets = (await session.execute(stmt)).scalars().all()
    return APIResponse(data=[BetOut.model_validate(b) for b in bets])
