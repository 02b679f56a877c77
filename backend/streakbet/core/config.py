from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_env: str = "dev"
    app_debug: bool = True
    app_name: str = "STREAKBET"
    app_version: str = "1.0.0"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = "password"
    db_name: str = "streakbet"
    database_url: Optional[str] = None  # Может быть задан напрямую (Railway, Supabase)

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_url: Optional[str] = None

    # JWT (токены выдаёт внешний auth-сервис, здесь только проверка)
    jwt_secret: str = "change-me-jwt-secret-256-bit"
    jwt_algorithm: str = "HS256"

    # AES Encryption (для платёжных реквизитов)
    aes_encryption_key: str = "0123456789abcdef0123456789abcdef"  # 32 байта

    # Правила испытаний
    max_active_challenges: int = 5
    challenge_duration_days: int = 45
    reset_fee_pct: Decimal = Decimal("50")
    cancel_forfeits_pending_rewards: bool = True

    # Выплаты
    min_payout_amount: Decimal = Decimal("10")
    single_pending_payout: bool = True

    # Транзакции: сколько раз повторять единицу работы при конфликте сериализации
    transaction_retries: int = 1

    # Внешний платёжный шлюз (списание платы за сброс)
    payments_base_url: str = "http://localhost:8081"
    payments_api_key: str = ""
    payments_timeout_seconds: float = 10.0

    # Вебхук "испытание оплачено"
    webhook_secret: str = "change-me-webhook-secret"

    # Rate limiting
    rate_limit_per_minute: int = 100

    # Планировщик
    expiry_sweep_interval_seconds: int = 300

    @property
    def database_url_async(self) -> str:
        if self.database_url:
            url = self.database_url
            url = url.replace("postgres://", "postgresql+asyncpg://")
            if url.startswith("postgresql://") and "+asyncpg" not in url:
                url = url.replace("postgresql://", "postgresql+asyncpg://")
            return url
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Синхронный URL для Alembic."""
        if self.database_url:
            url = self.database_url
            url = url.replace("postgres://", "postgresql://")
            url = url.replace("postgresql+asyncpg://", "postgresql://")
            return url
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def redis_connection_url(self) -> str:
        if self.redis_url:
            return self.redis_url
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @field_validator("transaction_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("transaction_retries must be >= 0")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
