"""
Тесты для PayoutProcessor — проверки заявки на вывод и переходы статусов.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from streakbet.core.errors import (
    BelowMinimum, InsufficientBalance, InvalidDetails, InvalidTransition, NotFound,
    PayoutAlreadyPending, ValidationError,
)
from streakbet.core.security import decrypt_json
from streakbet.models.payout import RESERVING_STATUSES, PaymentMethod, Payout, PayoutStatus
from streakbet.services.payout_processor import PayoutProcessor, validate_payment_details
from streakbet.services.reward_ledger import RewardLedger

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

BANK = {"iban": "DE89 3704 0044 0532 0130 00", "account_name": "Alex Doe", "bank_name": "Commerzbank"}
USER = SimpleNamespace(id=42)


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_result(scalar=None) -> MagicMock:
    r = MagicMock()
    r.scalar_one_or_none.return_value = scalar
    r.scalar.return_value = scalar
    return r


def make_processor(*results) -> PayoutProcessor:
    session = AsyncMock()
    session.add = MagicMock()
    session.execute.side_effect = list(results)
    return PayoutProcessor(session)


def balance_results(paid: str, reserved: str = "0") -> list[MagicMock]:
    return [make_result(scalar=Decimal(paid)), make_result(scalar=Decimal(reserved))]


def make_payout(status: PayoutStatus) -> Payout:
    return Payout(
        id=5,
        user_id=42,
        amount=Decimal("50"),
        payment_method=PaymentMethod.bank,
        payment_details_enc="x",
        status=status,
    )


# ── Реквизиты ─────────────────────────────────────────────────────────────────

class TestPaymentDetails:
    def test_bank_requires_iban_and_name(self):
        with pytest.raises(InvalidDetails):
            validate_payment_details("bank", {"account_name": "Alex"})

    def test_bank_normalises_iban(self):
        clean = validate_payment_details("bank", BANK)
        assert clean["iban"] == "DE89370400440532013000"
        assert clean["bank_name"] == "Commerzbank"

    def test_paypal_requires_email(self):
        with pytest.raises(InvalidDetails):
            validate_payment_details("paypal", {})

    def test_paypal_rejects_malformed_email(self):
        with pytest.raises(InvalidDetails):
            validate_payment_details("paypal", {"email": "not-an-email"})

    def test_crypto_requires_wallet_and_network(self):
        with pytest.raises(InvalidDetails):
            validate_payment_details("crypto", {"wallet_address": "TXyz1234567890"})

    def test_crypto_unknown_network(self):
        with pytest.raises(InvalidDetails):
            validate_payment_details("crypto", {"wallet_address": "TXyz1234567890", "network": "dogecoin"})

    def test_crypto_ok(self):
        clean = validate_payment_details(
            PaymentMethod.crypto, {"wallet_address": " TXyz1234567890 ", "network": "usdt-trc20"}
        )
        assert clean == {"wallet_address": "TXyz1234567890", "network": "usdt-trc20"}

    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            validate_payment_details("cash", {})


# ── Заявка ────────────────────────────────────────────────────────────────────

class TestRequestPayout:
    @pytest.mark.asyncio
    async def test_below_minimum(self):
        processor = make_processor()
        with pytest.raises(BelowMinimum):
            await processor.request_payout(42, Decimal("5"), "bank", BANK)
        processor.session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_below_minimum_checked_before_details(self):
        processor = make_processor()
        with pytest.raises(BelowMinimum):
            await processor.request_payout(42, "5", "bank", {})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-5", "9.999"])
    async def test_any_amount_under_minimum_is_below_minimum(self, amount):
        processor = make_processor()
        with pytest.raises(BelowMinimum):
            await processor.request_payout(42, amount, "bank", BANK)
        processor.session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_amount(self):
        with pytest.raises(ValidationError) as exc_info:
            await make_processor().request_payout(42, "12.345", "bank", BANK)
        assert not isinstance(exc_info.value, BelowMinimum)

    @pytest.mark.asyncio
    async def test_non_numeric_amount(self):
        with pytest.raises(ValidationError):
            await make_processor().request_payout(42, "ten", "bank", BANK)

    @pytest.mark.asyncio
    async def test_invalid_details(self):
        processor = make_processor()
        with pytest.raises(InvalidDetails):
            await processor.request_payout(42, Decimal("20"), "paypal", {})

    @pytest.mark.asyncio
    async def test_pending_payout_exists(self):
        processor = make_processor(make_result(scalar=USER), make_result(scalar=9))
        with pytest.raises(PayoutAlreadyPending):
            await processor.request_payout(42, Decimal("20"), "bank", BANK)

    @pytest.mark.asyncio
    async def test_insufficient_balance(self):
        processor = make_processor(
            make_result(scalar=USER), make_result(scalar=None), *balance_results("50", "45"),
        )
        with pytest.raises(InsufficientBalance):
            await processor.request_payout(42, Decimal("20"), "bank", BANK)
        processor.session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_user(self):
        processor = make_processor(make_result(scalar=None))
        with pytest.raises(NotFound):
            await processor.request_payout(42, Decimal("20"), "bank", BANK)

    @pytest.mark.asyncio
    async def test_creates_pending_payout_with_encrypted_details(self):
        processor = make_processor(
            make_result(scalar=USER), make_result(scalar=None), *balance_results("100", "0"),
        )

        payout = await processor.request_payout(42, Decimal("100"), "bank", BANK)

        processor.session.add.assert_called_once_with(payout)
        assert payout.status == PayoutStatus.pending
        assert payout.amount == Decimal("100")
        assert payout.payment_method == PaymentMethod.bank
        assert "DE89" not in payout.payment_details_enc
        details = decrypt_json(payout.payment_details_enc)
        assert details["iban"] == "DE89370400440532013000"
        assert details["account_name"] == "Alex Doe"


# ── Переходы ──────────────────────────────────────────────────────────────────

class TestTransitions:
    @pytest.mark.asyncio
    async def test_pending_to_processing(self):
        payout = make_payout(PayoutStatus.pending)
        processor = make_processor(make_result(scalar=payout))
        result = await processor.mark_processing(5, now=NOW)
        assert result.status == PayoutStatus.processing
        assert result.processed_at == NOW

    @pytest.mark.asyncio
    async def test_processing_to_completed(self):
        payout = make_payout(PayoutStatus.processing)
        processor = make_processor(make_result(scalar=payout))
        result = await processor.mark_completed(5, external_reference="SEPA-77", now=NOW)
        assert result.status == PayoutStatus.completed
        assert result.completed_at == NOW
        assert result.external_reference == "SEPA-77"

    @pytest.mark.asyncio
    async def test_pending_cannot_complete_directly(self):
        processor = make_processor(make_result(scalar=make_payout(PayoutStatus.pending)))
        with pytest.raises(InvalidTransition):
            await processor.mark_completed(5)

    @pytest.mark.asyncio
    async def test_completed_is_terminal(self):
        processor = make_processor(make_result(scalar=make_payout(PayoutStatus.completed)))
        with pytest.raises(InvalidTransition):
            await processor.reject(5, "too late")

    @pytest.mark.asyncio
    async def test_rejected_is_terminal(self):
        processor = make_processor(make_result(scalar=make_payout(PayoutStatus.rejected)))
        with pytest.raises(InvalidTransition):
            await processor.mark_processing(5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [PayoutStatus.pending, PayoutStatus.processing])
    async def test_reject(self, status):
        payout = make_payout(status)
        processor = make_processor(make_result(scalar=payout))
        result = await processor.reject(5, "IBAN mismatch", now=NOW)
        assert result.status == PayoutStatus.rejected
        assert result.reject_reason == "IBAN mismatch"

    @pytest.mark.asyncio
    async def test_missing_payout(self):
        processor = make_processor(make_result(scalar=None))
        with pytest.raises(NotFound):
            await processor.mark_processing(5)


# ── Сохранение баланса ────────────────────────────────────────────────────────

class _BalanceStore:
    def __init__(self, paid: str):
        self.paid = Decimal(paid)
        self.payouts: list[Payout] = []


class _BalanceSession:
    """Отвечает на запросы процессора и реестра по общему списку заявок."""

    def __init__(self, store: _BalanceStore):
        self.store = store

    async def execute(self, stmt):
        sql = str(stmt)
        if "sum(challenge_rewards.amount)" in sql:
            return make_result(scalar=self.store.paid)
        if "sum(payouts.amount)" in sql:
            reserved = sum(
                (p.amount for p in self.store.payouts if p.status in RESERVING_STATUSES), Decimal("0")
            )
            return make_result(scalar=reserved)
        if "FROM users" in sql:
            return make_result(scalar=USER)
        if "FOR UPDATE" in sql:
            payout_id = stmt.whereclause.right.value
            return make_result(scalar=next((p for p in self.store.payouts if p.id == payout_id), None))
        pending = next((p.id for p in self.store.payouts if p.status == PayoutStatus.pending), None)
        return make_result(scalar=pending)

    def add(self, obj):
        obj.id = len(self.store.payouts) + 1
        self.store.payouts.append(obj)

    async def flush(self):
        pass


class TestBalanceConservation:
    @pytest.mark.asyncio
    async def test_rejected_payout_restores_balance(self):
        store = _BalanceStore(paid="100")
        processor = PayoutProcessor(_BalanceSession(store))
        ledger = RewardLedger(_BalanceSession(store))

        first = await processor.request_payout(42, Decimal("60"), "bank", BANK)
        assert await ledger.available_balance(42) == Decimal("40")

        await processor.mark_processing(first.id, now=NOW)
        with pytest.raises(InsufficientBalance):
            await processor.request_payout(42, Decimal("50"), "bank", BANK)
        assert await ledger.available_balance(42) == Decimal("40")

        await processor.reject(first.id, "IBAN mismatch", now=NOW)
        assert await ledger.available_balance(42) == Decimal("100")

    @pytest.mark.asyncio
    async def test_balance_never_goes_negative(self):
        store = _BalanceStore(paid="100")
        processor = PayoutProcessor(_BalanceSession(store))
        ledger = RewardLedger(_BalanceSession(store))

        payout = await processor.request_payout(42, Decimal("100"), "bank", BANK)
        await processor.mark_processing(payout.id, now=NOW)
        await processor.mark_completed(payout.id, now=NOW)
        assert await ledger.available_balance(42) == Decimal("0")

        with pytest.raises(InsufficientBalance):
            await processor.request_payout(42, Decimal("10"), "bank", BANK)
        assert await ledger.available_balance(42) == Decimal("0")
        assert len(store.payouts) == 1
