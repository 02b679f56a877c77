"""
PayoutProcessor — запросы на вывод и их административные переходы.

    pending → processing → completed
    pending | processing → rejected

Запрос сразу резервирует сумму: выплаты в pending/processing/completed
вычитаются из доступного баланса, rejected возвращает её обратно.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from streakbet.core.config import Settings, settings as default_settings
from streakbet.core.errors import (
    BelowMinimum, InsufficientBalance, InvalidDetails, InvalidTransition, NotFound,
    PayoutAlreadyPending, ValidationError,
)
from streakbet.core.security import encrypt_json
from streakbet.models.payout import CryptoNetwork, PaymentMethod, Payout, PayoutStatus
from streakbet.models.user import User
from streakbet.services.reward_ledger import RewardLedger

REQUIRED_FIELDS = {
    PaymentMethod.bank: ("iban", "account_name"),
    PaymentMethod.paypal: ("email",),
    PaymentMethod.crypto: ("wallet_address", "network"),
}

OPTIONAL_FIELDS = {
    PaymentMethod.bank: ("bank_name", "swift"),
    PaymentMethod.paypal: (),
    PaymentMethod.crypto: (),
}

# Допустимые административные переходы
TRANSITIONS = {
    PayoutStatus.pending: {PayoutStatus.processing, PayoutStatus.rejected},
    PayoutStatus.processing: {PayoutStatus.completed, PayoutStatus.rejected},
    PayoutStatus.completed: set(),
    PayoutStatus.rejected: set(),
}


def validate_payment_details(method: PaymentMethod | str, details: Optional[dict[str, Any]]) -> dict[str, str]:
    """Проверяет обязательные поля и возвращает очищенные реквизиты."""
    try:
        method = PaymentMethod(method)
    except ValueError:
        raise ValidationError(f"Invalid payment method: {method}") from None

    details = details or {}
    clean: dict[str, str] = {}
    missing = []
    for key in REQUIRED_FIELDS[method]:
        value = str(details.get(key) or "").strip()
        if not value:
            missing.append(key)
        clean[key] = value
    if missing:
        raise InvalidDetails(
            f"Missing payment details for {method.value}: {', '.join(missing)}",
            missing=missing,
        )

    for key in OPTIONAL_FIELDS[method]:
        value = str(details.get(key) or "").strip()
        if value:
            clean[key] = value

    if method == PaymentMethod.bank:
        clean["iban"] = clean["iban"].replace(" ", "").upper()
    elif method == PaymentMethod.paypal:
        local, _, domain = clean["email"].partition("@")
        if not local or "." not in domain:
            raise InvalidDetails(f"Invalid PayPal email: {clean['email']}")
    elif method == PaymentMethod.crypto:
        allowed = [n.value for n in CryptoNetwork]
        if clean["network"] not in allowed:
            raise InvalidDetails(f"Network must be one of: {allowed}")
    return clean


class PayoutProcessor:

    def __init__(self, session: AsyncSession, config: Optional[Settings] = None):
        self.session = session
        self.config = config or default_settings
        self.ledger = RewardLedger(session)

    async def request_payout(
        self,
        user_id: int,
        amount: Decimal | str | float,
        method: PaymentMethod | str,
        details: Optional[dict[str, Any]],
    ) -> Payout:
        """
        Порядок проверок: минимум → реквизиты → открытая заявка → баланс.
        Баланс считается под блокировкой строки пользователя, поэтому две
        параллельные заявки не смогут вместе превысить его.
        """
        try:
            amount = Decimal(str(amount))
        except InvalidOperation:
            raise ValidationError(f"Invalid amount: {amount}") from None
        if not amount.is_finite():
            raise ValidationError(f"Invalid amount: {amount}")
        # Любая сумма ниже минимума, включая 0 и отрицательные, это BelowMinimum
        if amount < self.config.min_payout_amount:
            raise BelowMinimum(
                f"Minimum payout is €{self.config.min_payout_amount}",
                min_payout=str(self.config.min_payout_amount),
            )
        if amount != amount.quantize(Decimal("0.01")):
            raise ValidationError("Amount must have at most 2 decimals")

        clean = validate_payment_details(method, details)
        method = PaymentMethod(method)

        user = (await self.session.execute(
            select(User).where(User.id == user_id).with_for_update()
        )).scalar_one_or_none()
        if user is None:
            raise NotFound("User not found")

        if self.config.single_pending_payout:
            pending = await self.session.execute(
                select(Payout.id).where(
                    Payout.user_id == user_id, Payout.status == PayoutStatus.pending
                ).limit(1)
            )
            if pending.scalar_one_or_none() is not None:
                raise PayoutAlreadyPending()

        available = await self.ledger.available_balance(user_id)
        if amount > available:
            raise InsufficientBalance(
                f"Requested €{amount} exceeds available balance €{available}",
                available_balance=str(available),
            )

        payout = Payout(
            user_id=user_id,
            amount=amount,
            payment_method=method,
            payment_details_enc=encrypt_json(clean),
            status=PayoutStatus.pending,
        )
        self.session.add(payout)
        await self.session.flush()

        logger.info(f"Payout {payout.id} requested: user={user_id} amount=€{amount} method={method.value}")
        return payout

    async def list_payouts(self, user_id: int) -> list[Payout]:
        result = await self.session.execute(
            select(Payout).where(Payout.user_id == user_id).order_by(Payout.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_by_status(self, status: PayoutStatus = PayoutStatus.pending) -> list[Payout]:
        result = await self.session.execute(
            select(Payout).where(Payout.status == status).order_by(Payout.created_at)
        )
        return list(result.scalars().all())

    # ─── Административные переходы ────────────────────────────────────────────

    async def mark_processing(self, payout_id: int, now: Optional[datetime] = None) -> Payout:
        payout = await self._transition(payout_id, PayoutStatus.processing)
        payout.processed_at = now or datetime.now(timezone.utc)
        await self.session.flush()
        logger.info(f"Payout {payout.id} → processing")
        return payout

    async def mark_completed(
        self,
        payout_id: int,
        external_reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Payout:
        payout = await self._transition(payout_id, PayoutStatus.completed)
        payout.completed_at = now or datetime.now(timezone.utc)
        if external_reference:
            payout.external_reference = external_reference
        await self.session.flush()
        logger.info(f"Payout {payout.id} → completed (ref={external_reference})")
        return payout

    async def reject(self, payout_id: int, reason: Optional[str] = None, now: Optional[datetime] = None) -> Payout:
        payout = await self._transition(payout_id, PayoutStatus.rejected)
        payout.processed_at = payout.processed_at or now or datetime.now(timezone.utc)
        payout.reject_reason = reason
        await self.session.flush()
        logger.warning(f"Payout {payout.id} rejected: {reason}. €{payout.amount} returned to balance")
        return payout

    async def _transition(self, payout_id: int, target: PayoutStatus) -> Payout:
        payout = (await self.session.execute(
            select(Payout).where(Payout.id == payout_id).with_for_update()
        )).scalar_one_or_none()
        if payout is None:
            raise NotFound("Payout not found")
        current = PayoutStatus(payout.status)
        if target not in TRANSITIONS[current]:
            raise InvalidTransition(f"Payout {payout_id} cannot move from {current.value} to {target.value}")
        payout.status = target
        return payout
