"""
Тесты для core.security — маскирование реквизитов, AES, подпись вебхуков, rate limit.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from streakbet.core.security import (
    check_rate_limit, decrypt_json, encrypt_json, mask_payment_details, sign_payload,
    verify_webhook_signature,
)


class TestMasking:
    def test_bank_shows_last_four(self):
        masked = mask_payment_details(
            {"iban": "DE89370400440532013000", "account_name": "Alex Doe", "bank_name": "Commerzbank"},
            "bank",
        )
        assert masked == {"iban": "****3000", "account_name": "Alex Doe", "bank_name": "Commerzbank"}

    def test_paypal_shows_first_two(self):
        assert mask_payment_details({"email": "alex.doe@example.com"}, "paypal") == {
            "email": "al****@example.com"
        }

    def test_crypto_shows_prefix_and_suffix(self):
        masked = mask_payment_details(
            {"wallet_address": "TXyz1234567890abcd", "network": "usdt-trc20"}, "crypto"
        )
        assert masked == {"wallet_address": "TXyz12...abcd", "network": "usdt-trc20"}

    def test_empty_details(self):
        assert mask_payment_details({}, "bank") == {}


class TestEncryption:
    def test_details_survive_encryption(self):
        details = {"wallet_address": "TXyz1234567890abcd", "network": "usdt-trc20"}
        token = encrypt_json(details)
        assert "TXyz" not in token
        assert decrypt_json(token) == details

    def test_fresh_iv_each_time(self):
        assert encrypt_json({"a": "b"}) != encrypt_json({"a": "b"})


class TestWebhookSignature:
    def test_valid(self):
        body = b'{"user_id": 1}'
        assert verify_webhook_signature(body, sign_payload(body, "s3cret"), "s3cret")

    def test_tampered_body(self):
        signature = sign_payload(b'{"user_id": 1}', "s3cret")
        assert not verify_webhook_signature(b'{"user_id": 2}', signature, "s3cret")

    def test_missing_signature(self):
        assert not verify_webhook_signature(b"{}", "", "s3cret")


class TestRateLimit:
    def _redis(self, count: int) -> MagicMock:
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[count, True])
        redis = MagicMock()
        redis.pipeline.return_value = pipe
        return redis

    @pytest.mark.asyncio
    async def test_within_limit(self):
        assert await check_rate_limit(self._redis(100), "rate:std:1", limit=100)

    @pytest.mark.asyncio
    async def test_over_limit(self):
        assert not await check_rate_limit(self._redis(101), "rate:std:1", limit=100)
