"""
/webhooks — события внешних сервисов.

Подпись: HMAC-SHA256 от сырого тела с settings.webhook_secret, hex в X-Signature.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from loguru import logger
from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streakbet.api.dependencies import get_transaction_factory
from streakbet.core.config import settings
from streakbet.core.database import run_in_transaction
from streakbet.core.errors import ValidationError, describe_validation_errors
from streakbet.core.security import verify_webhook_signature
from streakbet.models.challenge import Difficulty
from streakbet.schemas.challenge import ChallengeOut
from streakbet.schemas.common import APIResponse
from streakbet.services.challenge_manager import ChallengeManager

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class ChallengePurchasedEvent(BaseModel):
    user_id: int
    tier: int
    difficulty: Difficulty
    payment_reference: str


@router.post("/challenge-purchased", response_model=APIResponse[ChallengeOut])
async def challenge_purchased(
    request: Request,
    x_signature: Optional[str] = Header(None),
    factory: async_sessionmaker[AsyncSession] = Depends(get_transaction_factory),
) -> APIResponse[ChallengeOut]:
    """Оплата подтверждена — создаём испытание. Повторная доставка возвращает то же испытание."""
    body = await request.body()
    if not verify_webhook_signature(body, x_signature or "", settings.webhook_secret):
        logger.warning("Rejected challenge-purchased webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        event = ChallengePurchasedEvent.model_validate_json(body)
    except PydanticValidationError as e:
        raise ValidationError(describe_validation_errors(e.errors(include_url=False))) from None

    challenge = await run_in_transaction(
        factory,
        lambda s: ChallengeManager(s).purchase(
            event.user_id, event.tier, event.difficulty, payment_reference=event.payment_reference
        ),
        label=f"purchase_webhook:{event.payment_reference}",
    )
    return APIResponse(data=ChallengeOut.model_validate(challenge))
