"""
/payouts — выплаты заработанных наград.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streakbet.api.dependencies import get_current_user, get_transaction_factory, rate_limit_standard
from streakbet.core.config import settings
from streakbet.core.database import get_db, run_in_transaction
from streakbet.core.security import decrypt_json, mask_payment_details
from streakbet.models.payout import PaymentMethod, Payout
from streakbet.models.user import User
from streakbet.schemas.common import APIResponse
from streakbet.services.payout_processor import PayoutProcessor
from streakbet.services.reward_ledger import RewardLedger

router = APIRouter(prefix="/payouts", tags=["payouts"])


class PayoutOut(BaseModel):
    id: int
    user_id: int
    amount: float
    payment_method: str
    payment_details: dict[str, Any]
    status: str
    created_at: datetime
    processed_at: Optional[datetime]
    completed_at: Optional[datetime]
    external_reference: Optional[str]
    reject_reason: Optional[str]

    @classmethod
    def from_payout(cls, payout: Payout) -> "PayoutOut":
        """Реквизиты расшифровываются и сразу маскируются."""
        details = decrypt_json(payout.payment_details_enc)
        return cls(
            id=payout.id,
            user_id=payout.user_id,
            amount=float(payout.amount),
            payment_method=payout.payment_method,
            payment_details=mask_payment_details(details, payout.payment_method),
            status=payout.status,
            created_at=payout.created_at,
            processed_at=payout.processed_at,
            completed_at=payout.completed_at,
            external_reference=payout.external_reference,
            reject_reason=payout.reject_reason,
        )


class PayoutListOut(BaseModel):
    payouts: list[PayoutOut]
    available_balance: float
    min_payout: float


class PayoutRequest(BaseModel):
    amount: Decimal
    payment_method: PaymentMethod
    payment_details: dict[str, Any] = Field(default_factory=dict)


@router.get("", response_model=APIResponse[PayoutListOut])
async def get_payouts(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
) -> APIResponse[PayoutListOut]:
    """История выплат и доступный баланс."""
    payouts = await PayoutProcessor(session).list_payouts(user.id)
    balance = await RewardLedger(session).available_balance(user.id)
    return APIResponse(data=PayoutListOut(
        payouts=[PayoutOut.from_payout(p) for p in payouts],
        available_balance=float(balance),
        min_payout=float(settings.min_payout_amount),
    ))


@router.post("/request", response_model=APIResponse[PayoutOut], dependencies=[Depends(rate_limit_standard)])
async def request_payout(
    body: PayoutRequest,
    user: User = Depends(get_current_user),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[PayoutOut]:
    """Создаёт заявку на вывод; сумма сразу резервируется."""
    payout = await run_in_transaction(
        factory,
        lambda s: PayoutProcessor(s).request_payout(
            user.id, body.amount, body.payment_method, body.payment_details
        ),
        label="request_payout",
    )
    return APIResponse(data=PayoutOut.from_payout(payout), message="Payout request submitted")
