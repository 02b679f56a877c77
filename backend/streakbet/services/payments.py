"""
Клиент внешнего платёжного шлюза.

Движок сам деньги не двигает: для сброса испытания он просит шлюз списать
плату и продолжает только после подтверждения. Повторный запрос с тем же
idempotency_key шлюз обязан вернуть без второго списания — это делает
безопасным повтор транзакции при конфликте сериализации.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Protocol

import httpx
from loguru import logger

from streakbet.core.config import settings


@dataclass(frozen=True)
class PaymentReceipt:
    confirmed: bool
    reference: Optional[str] = None
    message: Optional[str] = None


class PaymentGateway(Protocol):
    async def charge(
        self, user_id: int, amount: Decimal, description: str, idempotency_key: str
    ) -> PaymentReceipt:
        ...


class PaymentGatewayError(Exception):
    def __init__(self, status_code: int, message: str, raw: Any = None):
        self.status_code = status_code
        self.raw = raw
        super().__init__(f"Payment gateway error {status_code}: {message}")


class HttpPaymentGateway:
    """Списание сохранённым способом оплаты через HTTP API шлюза."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.payments_base_url,
            timeout=timeout or settings.payments_timeout_seconds,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key or settings.payments_api_key}",
            },
        )

    async def charge(
        self, user_id: int, amount: Decimal, description: str, idempotency_key: str
    ) -> PaymentReceipt:
        body = {
            "user_id": user_id,
            "amount": str(amount),
            "currency": "EUR",
            "description": description,
        }
        try:
            resp = await self._client.post(
                "/v1/charges", json=body, headers={"Idempotency-Key": idempotency_key}
            )
        except httpx.HTTPError as e:
            logger.error(f"Payment gateway POST /v1/charges HTTP error: {e}")
            raise
        if resp.status_code >= 500:
            raise PaymentGatewayError(resp.status_code, resp.text)

        try:
            data = resp.json()
        except ValueError:
            data = {"message": resp.text or f"HTTP {resp.status_code}"}
        confirmed = resp.status_code < 400 and data.get("status") == "succeeded"
        if not confirmed:
            logger.warning(
                f"Charge not confirmed for user={user_id} amount={amount}: {data.get('message')}"
            )
        return PaymentReceipt(
            confirmed=confirmed,
            reference=data.get("id"),
            message=data.get("message"),
        )

    async def close(self) -> None:
        await self._client.aclose()
