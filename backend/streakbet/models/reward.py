import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from streakbet.core.database import Base
from streakbet.models.base import TimestampMixin


class RewardStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    forfeited = "forfeited"


class ChallengeReward(Base, TimestampMixin):
    """Награда за открытый уровень. Одна строка на пару (испытание, уровень)."""
    __tablename__ = "challenge_rewards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False, index=True
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    # pending → paid только через compare-and-set по status (RewardLedger.claim)
    status: Mapped[RewardStatus] = mapped_column(
        String(16), nullable=False, default=RewardStatus.pending
    )
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    challenge: Mapped["Challenge"] = relationship("Challenge", back_populates="rewards")

    __table_args__ = (
        UniqueConstraint("challenge_id", "level", name="uq_challenge_rewards_challenge_level"),
        Index("ix_challenge_rewards_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChallengeReward id={self.id} challenge_id={self.challenge_id} "
            f"level={self.level} amount={self.amount} status={self.status}>"
        )
