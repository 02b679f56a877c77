import enum
from typing import Optional

from sqlalchemy import BigInteger, Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from streakbet.core.database import Base
from streakbet.models.base import TimestampMixin


class UserRole(str, enum.Enum):
    user = "user"
    admin = "admin"
    super_admin = "super_admin"


class User(Base, TimestampMixin):
    """
    Владелец испытаний. Регистрацию и сессии ведёт внешний auth-сервис,
    здесь хранится только то, что нужно движку (роль, блокировка) —
    и строка, которую блокируют FOR UPDATE при покупке и выплате.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    role: Mapped[UserRole] = mapped_column(String(32), nullable=False, default=UserRole.user)
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    challenges: Mapped[list["Challenge"]] = relationship(
        "Challenge", back_populates="user", cascade="all, delete-orphan"
    )
    bets: Mapped[list["Bet"]] = relationship("Bet", back_populates="user")
    payouts: Mapped[list["Payout"]] = relationship("Payout", back_populates="user")

    __table_args__ = (
        Index("ix_users_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"
