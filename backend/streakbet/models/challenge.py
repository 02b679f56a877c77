import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Index,
    Integer, Numeric, String
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from streakbet.core.database import Base
from streakbet.models.base import TimestampMixin


class Difficulty(str, enum.Enum):
    beginner = "beginner"
    pro = "pro"


class ChallengeStatus(str, enum.Enum):
    active = "active"
    expired = "expired"
    cancelled = "cancelled"


class Challenge(Base, TimestampMixin):
    """Купленное испытание: прогресс серии, уровни и накопленные награды."""
    __tablename__ = "challenges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Параметры покупки
    tier: Mapped[int] = mapped_column(Integer, nullable=False)
    difficulty: Mapped[Difficulty] = mapped_column(
        String(16), nullable=False, default=Difficulty.beginner
    )
    # Снимок на момент покупки: изменения лестницы не трогают открытые испытания
    min_odds: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    cost: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    reset_fee: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    # Статус
    status: Mapped[ChallengeStatus] = mapped_column(
        String(16), nullable=False, default=ChallengeStatus.active
    )

    # Прогресс
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level1_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    level2_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    level3_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    level4_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Награды
    total_rewards_earned: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0.00")
    )
    total_pending_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0.00")
    )

    # Даты
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Откуда взялся: внешний платёж или сброс старого испытания
    payment_reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)
    reset_from_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("challenges.id"), nullable=True
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="challenges")
    rewards: Mapped[list["ChallengeReward"]] = relationship(
        "ChallengeReward", back_populates="challenge", cascade="all, delete-orphan",
        order_by="ChallengeReward.level",
    )
    bet_links: Mapped[list["ChallengeBet"]] = relationship(
        "ChallengeBet", back_populates="challenge", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_challenges_user_status", "user_id", "status"),
        Index("ix_challenges_status_expires", "status", "expires_at"),
        CheckConstraint("current_streak >= 0", name="ck_challenges_streak_non_negative"),
        CheckConstraint("current_level BETWEEN 1 AND 4", name="ck_challenges_level_range"),
        CheckConstraint("total_pending_amount >= 0", name="ck_challenges_pending_non_negative"),
    )

    def is_level_completed(self, level: int) -> bool:
        return bool(getattr(self, f"level{level}_completed"))

    def completed_levels(self) -> frozenset[int]:
        return frozenset(lvl for lvl in range(1, 5) if self.is_level_completed(lvl))

    def __repr__(self) -> str:
        return (
            f"<Challenge id={self.id} user_id={self.user_id} tier={self.tier} "
            f"difficulty={self.difficulty} status={self.status}>"
        )
