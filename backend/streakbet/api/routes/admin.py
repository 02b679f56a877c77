"""
/admin — расчёт ставок, отмена испытаний, ручной прогон истечения и
обработка выплат (только admin/super_admin).
"""
from typing import Optional

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streakbet.api.dependencies import get_transaction_factory, require_admin
from streakbet.api.routes.payouts import PayoutOut
from streakbet.core.database import get_db, run_in_transaction
from streakbet.models.payout import PayoutStatus
from streakbet.models.user import User
from streakbet.schemas.challenge import ChallengeOut
from streakbet.schemas.common import APIResponse
from streakbet.services.challenge_manager import ChallengeManager
from streakbet.services.payout_processor import PayoutProcessor
from streakbet.services.settlement import BetSettlementCoordinator

router = APIRouter(prefix="/admin", tags=["admin"])


# ─── Схемы ────────────────────────────────────────────────────────────────────

class SettleRequest(BaseModel):
    result: str = Field(pattern="^(won|lost|push|void)$")


class UnlockedRewardOut(BaseModel):
    level: int
    amount: float


class ChallengeOutcomeOut(BaseModel):
    challenge_id: int
    counted: bool
    streak_after: int
    level_after: int
    unlocked: list[UnlockedRewardOut]
    skipped_reason: Optional[str]


class SettlementOut(BaseModel):
    bet_id: int
    result: str
    already_applied: bool
    outcomes: list[ChallengeOutcomeOut]


class CancelOut(BaseModel):
    challenge: ChallengeOut
    forfeited_amount: float


class ExpireOut(BaseModel):
    expired_count: int
    challenge_ids: list[int]


class CompletePayoutRequest(BaseModel):
    external_reference: Optional[str] = Field(None, max_length=128)


class RejectPayoutRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


# ─── Ставки ───────────────────────────────────────────────────────────────────

@router.patch("/bets/{bet_id}/settle", response_model=APIResponse[SettlementOut])
async def settle_bet(
    bet_id: int,
    body: SettleRequest,
    admin: User = Depends(require_admin()),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[SettlementOut]:
    """Фиксирует исход ставки и применяет его ко всем привязанным испытаниям."""
    report = await run_in_transaction(
        factory,
        lambda s: BetSettlementCoordinator(s).settle_bet(bet_id, body.result),
        label=f"settle_bet:{bet_id}",
    )
    logger.info(f"Admin {admin.id} settled bet {bet_id} as {body.result}")
    return APIResponse(data=SettlementOut(
        bet_id=report.bet_id,
        result=report.result.value,
        already_applied=report.already_applied,
        outcomes=[
            ChallengeOutcomeOut(
                challenge_id=o.challenge_id,
                counted=o.counted,
                streak_after=o.streak_after,
                level_after=o.level_after,
                unlocked=[UnlockedRewardOut(level=u.level, amount=float(u.amount)) for u in o.unlocked],
                skipped_reason=o.skipped_reason,
            )
            for o in report.outcomes
        ],
    ))


# ─── Испытания ────────────────────────────────────────────────────────────────

@router.post("/challenges/{challenge_id}/cancel", response_model=APIResponse[CancelOut])
async def cancel_challenge(
    challenge_id: int,
    admin: User = Depends(require_admin()),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[CancelOut]:
    challenge, forfeited = await run_in_transaction(
        factory,
        lambda s: ChallengeManager(s).cancel(challenge_id),
        label=f"cancel:{challenge_id}",
    )
    logger.warning(f"Admin {admin.id} cancelled challenge {challenge_id}")
    return APIResponse(data=CancelOut(
        challenge=ChallengeOut.model_validate(challenge),
        forfeited_amount=float(forfeited),
    ))


@router.post("/challenges/expire", response_model=APIResponse[ExpireOut])
async def expire_challenges(
    admin: User = Depends(require_admin()),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[ExpireOut]:
    """Внеочередной прогон того же истечения, что делает планировщик."""
    expired_ids = await run_in_transaction(
        factory, lambda s: ChallengeManager(s).expire(), label="expire"
    )
    return APIResponse(data=ExpireOut(expired_count=len(expired_ids), challenge_ids=expired_ids))


# ─── Выплаты ──────────────────────────────────────────────────────────────────

@router.get("/payouts", response_model=APIResponse[list[PayoutOut]])
async def list_payouts(
    status: PayoutStatus = PayoutStatus.pending,
    admin: User = Depends(require_admin()),
    session: AsyncSession = Depends(get_db),
) -> APIResponse[list[PayoutOut]]:
    payouts = await PayoutProcessor(session).list_by_status(status)
    return APIResponse(data=[PayoutOut.from_payout(p) for p in payouts])


@router.post("/payouts/{payout_id}/processing", response_model=APIResponse[PayoutOut])
async def mark_payout_processing(
    payout_id: int,
    admin: User = Depends(require_admin()),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[PayoutOut]:
    payout = await run_in_transaction(
        factory, lambda s: PayoutProcessor(s).mark_processing(payout_id), label="payout_processing"
    )
    return APIResponse(data=PayoutOut.from_payout(payout))


@router.post("/payouts/{payout_id}/completed", response_model=APIResponse[PayoutOut])
async def mark_payout_completed(
    payout_id: int,
    body: Optional[CompletePayoutRequest] = None,
    admin: User = Depends(require_admin()),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[PayoutOut]:
    reference = body.external_reference if body else None
    payout = await run_in_transaction(
        factory,
        lambda s: PayoutProcessor(s).mark_completed(payout_id, external_reference=reference),
        label="payout_completed",
    )
    return APIResponse(data=PayoutOut.from_payout(payout))


@router.post("/payouts/{payout_id}/rejected", response_model=APIResponse[PayoutOut])
async def reject_payout(
    payout_id: int,
    body: RejectPayoutRequest,
    admin: User = Depends(require_admin()),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[PayoutOut]:
    payout = await run_in_transaction(
        factory, lambda s: PayoutProcessor(s).reject(payout_id, body.reason), label="payout_rejected"
    )
    return APIResponse(data=PayoutOut.from_payout(payout), message="Payout rejected, amount returned to balance")
