import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from streakbet.core.database import Base
from streakbet.models.base import TimestampMixin


class PayoutStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    rejected = "rejected"


class PaymentMethod(str, enum.Enum):
    bank = "bank"
    paypal = "paypal"
    crypto = "crypto"


class CryptoNetwork(str, enum.Enum):
    bitcoin = "bitcoin"
    ethereum = "ethereum"
    usdt_trc20 = "usdt-trc20"
    usdt_erc20 = "usdt-erc20"


# Статусы, которые держат средства (rejected возвращает их в доступный баланс)
RESERVING_STATUSES = (PayoutStatus.pending, PayoutStatus.processing, PayoutStatus.completed)


class Payout(Base, TimestampMixin):
    """Запросы на вывод заработанных наград."""
    __tablename__ = "payouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    # Реквизиты (зашифрованы AES-256)
    payment_method: Mapped[PaymentMethod] = mapped_column(String(16), nullable=False)
    payment_details_enc: Mapped[str] = mapped_column(Text, nullable=False)

    # Статус
    status: Mapped[PayoutStatus] = mapped_column(
        String(16), nullable=False, default=PayoutStatus.pending
    )

    # Временные метки
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    external_reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Причина отклонения
    reject_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="payouts")

    __table_args__ = (
        Index("ix_payouts_user_status", "user_id", "status"),
        Index("ix_payouts_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Payout id={self.id} amount={self.amount} status={self.status}>"
