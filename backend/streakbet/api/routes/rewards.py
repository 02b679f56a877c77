"""
/rewards — история наград и перевод открытых наград в доступный баланс.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streakbet.api.dependencies import get_current_user, get_transaction_factory, rate_limit_standard
from streakbet.core.database import get_db, run_in_transaction
from streakbet.models.reward import RewardStatus
from streakbet.models.user import User
from streakbet.schemas.common import APIResponse
from streakbet.services.reward_ledger import RewardLedger

router = APIRouter(prefix="/rewards", tags=["rewards"])


class RewardHistoryOut(BaseModel):
    id: int
    challenge_id: int
    level: int
    amount: float
    status: str
    unlocked_at: datetime
    paid_at: Optional[datetime]

    model_config = {"from_attributes": True}


class RewardsOut(BaseModel):
    rewards: list[RewardHistoryOut]
    pending_amount: float
    available_balance: float


class ClaimRequest(BaseModel):
    challenge_id: Optional[int] = None


class ClaimOut(BaseModel):
    claimed_amount: float
    new_available_balance: float
    reward_ids: list[int]


@router.get("", response_model=APIResponse[RewardsOut])
async def list_rewards(
    status: Optional[RewardStatus] = Query(None),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
) -> APIResponse[RewardsOut]:
    ledger = RewardLedger(session)
    rewards = await ledger.list_rewards(user.id, status=status)
    return APIResponse(data=RewardsOut(
        rewards=[RewardHistoryOut.model_validate(r) for r in rewards],
        pending_amount=float(await ledger.pending_total(user.id)),
        available_balance=float(await ledger.available_balance(user.id)),
    ))


@router.post("/claim", response_model=APIResponse[ClaimOut], dependencies=[Depends(rate_limit_standard)])
async def claim_rewards(
    body: Optional[ClaimRequest] = None,
    user: User = Depends(get_current_user),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[ClaimOut]:
    """Забирает все открытые награды (или награды одного испытания)."""
    challenge_id = body.challenge_id if body else None
    result = await run_in_transaction(
        factory,
        lambda s: RewardLedger(s).claim(user.id, challenge_id=challenge_id),
        label="claim",
    )
    message = f"Claimed €{result.claimed_amount}" if result.claimed_amount else "No pending rewards to claim"
    return APIResponse(
        data=ClaimOut(
            claimed_amount=float(result.claimed_amount),
            new_available_balance=float(result.new_available_balance),
            reward_ids=result.reward_ids,
        ),
        message=message,
    )
