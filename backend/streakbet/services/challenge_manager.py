"""
ChallengeManager — жизненный цикл испытаний: покупка, список, истечение,
сброс и отмена.

Сервис работает внутри переданной сессии и ничего не коммитит сам: границу
транзакции (и повтор при конфликте) задаёт вызывающий через
run_in_transaction.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from streakbet.core.config import Settings, settings as default_settings
from streakbet.core.errors import (
    InvalidTransition, LimitExceeded, NotExpired, NotFound, PaymentNotConfirmed, ValidationError,
)
from streakbet.models.bet import ChallengeBet
from streakbet.models.challenge import Challenge, ChallengeStatus, Difficulty
from streakbet.models.reward import ChallengeReward, RewardStatus
from streakbet.models.user import User
from streakbet.services import catalog
from streakbet.services.payments import PaymentGateway

SECONDS_PER_DAY = 86400


@dataclass
class ChallengeView:
    challenge: Challenge
    days_remaining: int


@dataclass
class ChallengeListing:
    challenges: list[ChallengeView]
    current_count: int
    max_allowed: int

    @property
    def can_create_more(self) -> bool:
        return self.current_count < self.max_allowed


def days_remaining(expires_at: datetime, now: datetime) -> int:
    """ceil((expires_at - now) / 1 день), не меньше нуля."""
    seconds = (expires_at - now).total_seconds()
    return max(0, math.ceil(seconds / SECONDS_PER_DAY))


class ChallengeManager:

    def __init__(self, session: AsyncSession, config: Optional[Settings] = None):
        self.session = session
        self.config = config or default_settings

    # ─── Покупка ──────────────────────────────────────────────────────────────

    async def purchase(
        self,
        user_id: int,
        tier: int,
        difficulty: Difficulty | str,
        payment_reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Challenge:
        """
        Создаёт испытание после подтверждённой оплаты.

        Лимит активных испытаний проверяется под блокировкой строки
        пользователя, в той же транзакции, что и вставка: две параллельные
        покупки при 4 активных не проскочат обе.
        """
        try:
            tier_cfg = catalog.get_tier(tier)
            catalog.get_difficulty(difficulty)
        except catalog.CatalogError as e:
            raise ValidationError(str(e))

        await self._lock_user(user_id)

        # Под блокировкой пользователя: повторная доставка вебхука увидит уже созданное испытание
        if payment_reference:
            existing = await self._by_payment_reference(payment_reference)
            if existing is not None:
                if existing.user_id != user_id:
                    raise ValidationError(f"Payment reference {payment_reference} belongs to another user")
                logger.info(f"Purchase {payment_reference} already applied → challenge {existing.id}")
                return existing

        await self._ensure_capacity(user_id)

        challenge = self._new_challenge(
            user_id=user_id,
            tier=tier_cfg.size,
            difficulty=Difficulty(difficulty),
            cost=tier_cfg.cost,
            reset_fee=catalog.reset_fee_for(tier_cfg.cost, self.config.reset_fee_pct),
            now=now,
            payment_reference=payment_reference,
        )
        self.session.add(challenge)
        await self.session.flush()

        logger.info(
            f"Challenge {challenge.id} purchased: user={user_id} tier={challenge.tier} "
            f"difficulty={challenge.difficulty} expires_at={challenge.expires_at:%Y-%m-%d}"
        )
        return challenge

    # ─── Список ───────────────────────────────────────────────────────────────

    async def list(self, user_id: int, now: Optional[datetime] = None) -> ChallengeListing:
        """Активные испытания пользователя. Чтение ничего не переводит в expired."""
        now = now or datetime.now(timezone.utc)
        result = await self.session.execute(
            select(Challenge)
            .where(Challenge.user_id == user_id, Challenge.status == ChallengeStatus.active)
            .options(selectinload(Challenge.rewards))
            .order_by(Challenge.purchased_at.desc())
        )
        challenges = result.scalars().all()
        return ChallengeListing(
            challenges=[ChallengeView(c, days_remaining(c.expires_at, now)) for c in challenges],
            current_count=len(challenges),
            max_allowed=self.config.max_active_challenges,
        )

    async def history(self, user_id: int, limit: int = 20) -> list[Challenge]:
        result = await self.session.execute(
            select(Challenge)
            .where(Challenge.user_id == user_id)
            .options(selectinload(Challenge.rewards))
            .order_by(Challenge.purchased_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get(self, challenge_id: int, user_id: Optional[int] = None) -> Challenge:
        stmt = (
            select(Challenge)
            .where(Challenge.id == challenge_id)
            .options(
                selectinload(Challenge.rewards),
                selectinload(Challenge.bet_links).selectinload(ChallengeBet.bet),
            )
        )
        if user_id is not None:
            stmt = stmt.where(Challenge.user_id == user_id)
        challenge = (await self.session.execute(stmt)).scalar_one_or_none()
        if challenge is None:
            raise NotFound("Challenge not found")
        return challenge

    async def count_active(self, user_id: int) -> int:
        result = await self.session.execute(
            select(func.count(Challenge.id)).where(
                Challenge.user_id == user_id,
                Challenge.status == ChallengeStatus.active,
            )
        )
        return result.scalar() or 0

    # ─── Истечение ────────────────────────────────────────────────────────────

    async def expire(self, now: Optional[datetime] = None) -> list[int]:
        """Переводит просроченные активные испытания в expired. Возвращает их id."""
        now = now or datetime.now(timezone.utc)
        result = await self.session.execute(
            update(Challenge)
            .where(Challenge.status == ChallengeStatus.active, Challenge.expires_at < now)
            .values(status=ChallengeStatus.expired, expired_at=now, updated_at=now)
            .returning(Challenge.id)
            .execution_options(synchronize_session=False)
        )
        expired_ids = list(result.scalars().all())
        if expired_ids:
            logger.info(f"Expired {len(expired_ids)} challenges: {expired_ids}")
        return expired_ids

    # ─── Сброс ────────────────────────────────────────────────────────────────

    async def reset(
        self,
        challenge_id: int,
        user_id: int,
        gateway: PaymentGateway,
        now: Optional[datetime] = None,
    ) -> Challenge:
        """
        Платный перезапуск истёкшего испытания.

        Старая запись не меняется (история и выплаченные награды остаются
        на ней); после подтверждения оплаты создаётся новая с тем же
        tier/difficulty и новым окном.
        """
        # Порядок блокировок: пользователь, затем испытания
        await self._lock_user(user_id)
        old = await self._lock_challenge(challenge_id, user_id)
        if old.status != ChallengeStatus.expired:
            raise NotExpired(
                f"Challenge {challenge_id} is {ChallengeStatus(old.status).value}, "
                "only expired challenges can be reset"
            )

        already = await self.session.execute(
            select(Challenge.id).where(Challenge.reset_from_id == old.id)
        )
        if already.scalar_one_or_none() is not None:
            raise InvalidTransition(f"Challenge {challenge_id} has already been reset")

        await self._ensure_capacity(user_id)

        receipt = await gateway.charge(
            user_id=user_id,
            amount=old.reset_fee,
            description=f"Reset of challenge {old.id} (€{old.tier} {Difficulty(old.difficulty).value})",
            idempotency_key=f"reset:{old.id}",
        )
        if not receipt.confirmed:
            raise PaymentNotConfirmed(receipt.message or "Reset fee payment was not confirmed")

        challenge = self._new_challenge(
            user_id=user_id,
            tier=old.tier,
            difficulty=Difficulty(old.difficulty),
            cost=old.reset_fee,
            reset_fee=old.reset_fee,
            now=now,
            payment_reference=receipt.reference,
            reset_from_id=old.id,
        )
        self.session.add(challenge)
        await self.session.flush()

        logger.info(f"Challenge {old.id} reset → new challenge {challenge.id} (fee €{old.reset_fee})")
        return challenge

    # ─── Отмена ───────────────────────────────────────────────────────────────

    async def cancel(self, challenge_id: int, now: Optional[datetime] = None) -> tuple[Challenge, Decimal]:
        """
        Административная отмена. Возвращает (испытание, сумма сгоревших наград).
        Уже выплаченные (paid) награды не трогаются.
        """
        now = now or datetime.now(timezone.utc)
        challenge = await self._lock_challenge(challenge_id)
        if challenge.status == ChallengeStatus.cancelled:
            raise InvalidTransition(f"Challenge {challenge_id} is already cancelled")

        challenge.status = ChallengeStatus.cancelled
        challenge.cancelled_at = now

        forfeited = Decimal("0")
        if self.config.cancel_forfeits_pending_rewards:
            result = await self.session.execute(
                update(ChallengeReward)
                .where(
                    ChallengeReward.challenge_id == challenge.id,
                    ChallengeReward.status == RewardStatus.pending,
                )
                .values(status=RewardStatus.forfeited, updated_at=now)
                .returning(ChallengeReward.amount)
                .execution_options(synchronize_session=False)
            )
            forfeited = sum(result.scalars().all(), Decimal("0"))
            challenge.total_pending_amount = challenge.total_pending_amount - forfeited

        await self.session.flush()
        logger.warning(f"Challenge {challenge.id} cancelled, forfeited pending rewards €{forfeited}")
        return challenge, forfeited

    # ─── Вспомогательные ──────────────────────────────────────────────────────

    def _new_challenge(
        self,
        user_id: int,
        tier: int,
        difficulty: Difficulty,
        cost: Decimal,
        reset_fee: Decimal,
        now: Optional[datetime],
        payment_reference: Optional[str] = None,
        reset_from_id: Optional[int] = None,
    ) -> Challenge:
        now = now or datetime.now(timezone.utc)
        return Challenge(
            user_id=user_id,
            tier=tier,
            difficulty=difficulty,
            min_odds=catalog.min_odds_for(difficulty),
            cost=cost,
            reset_fee=reset_fee,
            status=ChallengeStatus.active,
            current_level=1,
            current_streak=0,
            level1_completed=False,
            level2_completed=False,
            level3_completed=False,
            level4_completed=False,
            total_rewards_earned=Decimal("0"),
            total_pending_amount=Decimal("0"),
            purchased_at=now,
            expires_at=now + timedelta(days=self.config.challenge_duration_days),
            payment_reference=payment_reference,
            reset_from_id=reset_from_id,
        )

    async def _ensure_capacity(self, user_id: int) -> None:
        active = await self.count_active(user_id)
        if active >= self.config.max_active_challenges:
            raise LimitExceeded(
                f"Maximum {self.config.max_active_challenges} active challenges allowed. "
                f"You currently have {active}."
            )

    async def _lock_user(self, user_id: int) -> User:
        result = await self.session.execute(
            select(User).where(User.id == user_id).with_for_update()
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFound("User not found")
        return user

    async def _lock_challenge(self, challenge_id: int, user_id: Optional[int] = None) -> Challenge:
        stmt = select(Challenge).where(Challenge.id == challenge_id).with_for_update()
        if user_id is not None:
            stmt = stmt.where(Challenge.user_id == user_id)
        challenge = (await self.session.execute(stmt)).scalar_one_or_none()
        if challenge is None:
            raise NotFound("Challenge not found")
        return challenge

    async def _by_payment_reference(self, reference: str) -> Optional[Challenge]:
        result = await self.session.execute(
            select(Challenge).where(Challenge.payment_reference == reference)
        )
        return result.scalar_one_or_none()
