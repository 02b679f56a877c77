import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from streakbet.core.database import Base
from streakbet.models.base import TimestampMixin


class BetResult(str, enum.Enum):
    pending = "pending"
    won = "won"
    lost = "lost"
    push = "push"


class Bet(Base, TimestampMixin):
    """Ставка пользователя. Привязки к испытаниям фиксируются при размещении."""
    __tablename__ = "bets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Событие
    sport: Mapped[str] = mapped_column(String(64), nullable=False)
    league: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    matchup: Mapped[str] = mapped_column(String(256), nullable=False)
    bet_type: Mapped[str] = mapped_column(String(64), nullable=False)
    selection: Mapped[str] = mapped_column(String(256), nullable=False)
    event_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Коэффициент и ставка
    odds: Mapped[str] = mapped_column(String(16), nullable=False)
    odds_decimal: Mapped[Decimal] = mapped_column(Numeric(8, 3), nullable=False)
    stake: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    # Результат
    result: Mapped[BetResult] = mapped_column(String(16), nullable=False, default=BetResult.pending)
    profit_loss: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Маркер идемпотентности: исход уже разнесён по испытаниям
    settlement_applied_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="bets")
    challenge_links: Mapped[list["ChallengeBet"]] = relationship(
        "ChallengeBet", back_populates="bet", cascade="all, delete-orphan",
        order_by="ChallengeBet.challenge_id",
    )

    __table_args__ = (
        Index("ix_bets_user_result", "user_id", "result"),
    )

    @property
    def challenge_ids(self) -> list[int]:
        return [link.challenge_id for link in self.challenge_links]

    def __repr__(self) -> str:
        return f"<Bet id={self.id} user_id={self.user_id} odds={self.odds_decimal} result={self.result}>"


class ChallengeBet(Base, TimestampMixin):
    """
    Привязка ставки к испытанию.

    Хранит снимок min_odds и difficulty на момент размещения, чтобы позднее
    изменение лестницы или истечение испытания не меняло задним числом то,
    квалифицировалась ли историческая ставка.
    """
    __tablename__ = "challenge_bets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False, index=True
    )
    bet_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bets.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Снимок при размещении
    min_odds: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    streak_before: Mapped[int] = mapped_column(Integer, nullable=False)
    level_before: Mapped[int] = mapped_column(Integer, nullable=False)

    # Заполняется при расчёте
    result: Mapped[Optional[BetResult]] = mapped_column(String(16), nullable=True)
    streak_after: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    level_after: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    level_completed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    skipped_reason: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    challenge: Mapped["Challenge"] = relationship("Challenge", back_populates="bet_links")
    bet: Mapped["Bet"] = relationship("Bet", back_populates="challenge_links")

    __table_args__ = (
        UniqueConstraint("challenge_id", "bet_id", name="uq_challenge_bets_challenge_bet"),
    )

    def __repr__(self) -> str:
        return f"<ChallengeBet challenge_id={self.challenge_id} bet_id={self.bet_id} result={self.result}>"
