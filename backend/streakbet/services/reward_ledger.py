"""
RewardLedger — перевод наград pending → paid и доступный баланс пользователя.

Баланс не хранится отдельной колонкой, он выводится из строк:

    available = Σ paid наград − Σ выплат в статусах pending/processing/completed

поэтому не может разойтись с историей наград и выплат.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from streakbet.core.errors import NotFound
from streakbet.models.challenge import Challenge
from streakbet.models.payout import RESERVING_STATUSES, Payout
from streakbet.models.reward import ChallengeReward, RewardStatus
from streakbet.services import catalog


@dataclass
class ClaimResult:
    claimed_amount: Decimal
    new_available_balance: Decimal
    reward_ids: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class LevelState:
    """
    Состояние уровня испытания:
      locked     — порог ещё не достигнут;
      unlocked   — награда открыта и ждёт получения (reward_id);
      claimed    — награда переведена в баланс;
      forfeited  — награда сгорела при отмене испытания.
    """
    level: int
    name: str
    streak_required: int
    reward: Decimal
    state: str
    reward_id: Optional[int] = None


def level_states(challenge: Challenge) -> list[LevelState]:
    """Строит состояния уровней по строкам наград (challenge.rewards должен быть загружен)."""
    by_level = {r.level: r for r in challenge.rewards}
    states = []
    for level in catalog.LEVELS:
        row = by_level.get(level)
        if row is None:
            state, reward_id = "locked", None
        elif row.status == RewardStatus.pending:
            state, reward_id = "unlocked", row.id
        elif row.status == RewardStatus.paid:
            state, reward_id = "claimed", row.id
        else:
            state, reward_id = "forfeited", row.id
        states.append(LevelState(
            level=level,
            name=catalog.LEVEL_NAMES[level],
            streak_required=catalog.threshold_for(challenge.difficulty, level),
            reward=catalog.reward_for(challenge.tier, challenge.difficulty, level),
            state=state,
            reward_id=reward_id,
        ))
    return states


class RewardLedger:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def claim(
        self,
        user_id: int,
        challenge_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ClaimResult:
        """
        Переводит все pending-награды пользователя (или одного испытания) в paid.

        Переход делается одним UPDATE ... WHERE status = 'pending' RETURNING:
        строку, которую уже забрал параллельный claim, этот запрос просто не
        увидит, поэтому одна награда не может быть зачислена дважды.
        """
        now = now or datetime.now(timezone.utc)

        # Испытания блокируются до наград, в том же порядке, что при отмене и расчёте
        stmt = select(Challenge).where(Challenge.user_id == user_id)
        if challenge_id is not None:
            stmt = stmt.where(Challenge.id == challenge_id)
        locked = await self.session.execute(stmt.order_by(Challenge.id).with_for_update())
        challenges = {c.id: c for c in locked.scalars().all()}

        if challenge_id is not None and challenge_id not in challenges:
            raise NotFound("Challenge not found")
        if not challenges:
            return ClaimResult(Decimal("0"), await self.available_balance(user_id))

        result = await self.session.execute(
            update(ChallengeReward)
            .where(
                ChallengeReward.challenge_id.in_(list(challenges)),
                ChallengeReward.status == RewardStatus.pending,
            )
            .values(status=RewardStatus.paid, paid_at=now, updated_at=now)
            .returning(ChallengeReward.id, ChallengeReward.challenge_id, ChallengeReward.amount)
            .execution_options(synchronize_session=False)
        )
        rows = result.all()

        per_challenge: dict[int, Decimal] = defaultdict(lambda: Decimal("0"))
        for _, owner_id, amount in rows:
            per_challenge[owner_id] += amount
        for owner_id, amount in per_challenge.items():
            challenge = challenges[owner_id]
            challenge.total_pending_amount = challenge.total_pending_amount - amount

        await self.session.flush()

        claimed = sum(per_challenge.values(), Decimal("0"))
        balance = await self.available_balance(user_id)
        if rows:
            logger.info(
                f"User {user_id} claimed €{claimed} from {len(rows)} rewards, "
                f"available balance €{balance}"
            )
        return ClaimResult(
            claimed_amount=claimed,
            new_available_balance=balance,
            reward_ids=[row[0] for row in rows],
        )

    async def paid_total(self, user_id: int) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(ChallengeReward.amount), 0))
            .join(Challenge, Challenge.id == ChallengeReward.challenge_id)
            .where(Challenge.user_id == user_id, ChallengeReward.status == RewardStatus.paid)
        )
        return Decimal(result.scalar() or 0)

    async def reserved_total(self, user_id: int) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(Payout.amount), 0))
            .where(Payout.user_id == user_id, Payout.status.in_(RESERVING_STATUSES))
        )
        return Decimal(result.scalar() or 0)

    async def available_balance(self, user_id: int) -> Decimal:
        return await self.paid_total(user_id) - await self.reserved_total(user_id)

    async def pending_total(self, user_id: int) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(ChallengeReward.amount), 0))
            .join(Challenge, Challenge.id == ChallengeReward.challenge_id)
            .where(Challenge.user_id == user_id, ChallengeReward.status == RewardStatus.pending)
        )
        return Decimal(result.scalar() or 0)

    async def list_rewards(
        self, user_id: int, status: Optional[RewardStatus] = None, limit: int = 50
    ) -> list[ChallengeReward]:
        stmt = (
            select(ChallengeReward)
            .join(Challenge, Challenge.id == ChallengeReward.challenge_id)
            .where(Challenge.user_id == user_id)
        )
        if status is not None:
            stmt = stmt.where(ChallengeReward.status == status)
        result = await self.session.execute(
            stmt.order_by(ChallengeReward.unlocked_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
