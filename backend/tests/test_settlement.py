"""
Тесты для BetSettlementCoordinator — размещение ставок и разнос результата.

Покрывает:
- Нормализацию американских и десятичных коэффициентов
- Привязку ставки к испытаниям со снимком min_odds
- Идемпотентный расчёт и запрет смены результата
- Пропуск неактивных испытаний и ставок ниже снимка min_odds
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from streakbet.core.errors import InvalidTransition, NotFound, OddsBelowMinimum, ValidationError
from streakbet.models.bet import Bet, BetResult, ChallengeBet
from streakbet.models.challenge import Challenge, ChallengeStatus, Difficulty
from streakbet.models.reward import ChallengeReward, RewardStatus
from streakbet.services.settlement import BetSettlementCoordinator, parse_odds, profit_loss_for

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_result(scalar=None, scalars=None) -> MagicMock:
    r = MagicMock()
    r.scalar_one_or_none.return_value = scalar
    r.scalars.return_value.all.return_value = scalars or []
    return r


def make_coordinator(*results) -> BetSettlementCoordinator:
    session = AsyncMock()
    session.add = MagicMock()
    session.execute.side_effect = list(results)
    return BetSettlementCoordinator(session)


def make_challenge(
    id: int = 1,
    difficulty: Difficulty = Difficulty.beginner,
    streak: int = 0,
    status: ChallengeStatus = ChallengeStatus.active,
    tier: int = 1000,
) -> Challenge:
    return Challenge(
        id=id,
        user_id=42,
        tier=tier,
        difficulty=difficulty,
        min_odds=Decimal("1.5") if difficulty == Difficulty.beginner else Decimal("2.0"),
        cost=Decimal("20"),
        reset_fee=Decimal("10"),
        status=status,
        current_level=1,
        current_streak=streak,
        level1_completed=False,
        level2_completed=False,
        level3_completed=False,
        level4_completed=False,
        total_rewards_earned=Decimal("0"),
        total_pending_amount=Decimal("0"),
        purchased_at=NOW,
        expires_at=NOW,
    )


def make_bet(odds: str = "1.8", result: BetResult = BetResult.pending, stake: str = "10") -> Bet:
    return Bet(
        id=100,
        user_id=42,
        sport="football",
        matchup="A vs B",
        bet_type="moneyline",
        selection="A",
        odds=odds,
        odds_decimal=Decimal(odds),
        stake=Decimal(stake),
        result=result,
    )


def make_link(challenge: Challenge, min_odds: Decimal | None = None) -> ChallengeBet:
    return ChallengeBet(
        challenge_id=challenge.id,
        bet_id=100,
        min_odds=min_odds if min_odds is not None else challenge.min_odds,
        difficulty=challenge.difficulty,
        streak_before=challenge.current_streak,
        level_before=challenge.current_level,
    )


def added_rewards(coordinator: BetSettlementCoordinator) -> list[ChallengeReward]:
    return [
        call.args[0] for call in coordinator.session.add.call_args_list
        if isinstance(call.args[0], ChallengeReward)
    ]


# ── Коэффициенты ──────────────────────────────────────────────────────────────

class TestParseOdds:
    @pytest.mark.parametrize("raw,expected", [
        ("+150", "2.500"),
        ("-110", "1.909"),
        ("-200", "1.500"),
        ("+100", "2.000"),
        ("1.85", "1.850"),
        ("2", "2.000"),
        (Decimal("3.25"), "3.250"),
    ])
    def test_normalised(self, raw, expected):
        assert parse_odds(raw) == Decimal(expected)

    @pytest.mark.parametrize("raw", ["+50", "-99", "1.0", "0.5", "abc", "", "-1.5"])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError):
            parse_odds(raw)


class TestProfitLoss:
    def test_won(self):
        assert profit_loss_for(BetResult.won, Decimal("10"), Decimal("1.85")) == Decimal("8.50")

    def test_lost(self):
        assert profit_loss_for(BetResult.lost, Decimal("10"), Decimal("1.85")) == Decimal("-10")

    def test_push(self):
        assert profit_loss_for(BetResult.push, Decimal("10"), Decimal("1.85")) == Decimal("0")


# ── Размещение ────────────────────────────────────────────────────────────────

class TestPlaceBet:
    async def _place(self, coordinator, odds="1.8", challenge_ids=None):
        return await coordinator.place_bet(
            42,
            sport="football",
            matchup="A vs B",
            bet_type="moneyline",
            selection="A",
            odds=odds,
            stake=Decimal("10"),
            challenge_ids=challenge_ids,
        )

    @pytest.mark.asyncio
    async def test_explicit_challenge_below_minimum(self):
        pro = make_challenge(id=2, difficulty=Difficulty.pro)
        coordinator = make_coordinator(make_result(scalars=[pro]))
        with pytest.raises(OddsBelowMinimum):
            await self._place(coordinator, odds="1.8", challenge_ids=[2])
        coordinator.session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_explicit_challenge_not_owned(self):
        coordinator = make_coordinator(make_result(scalars=[]))
        with pytest.raises(NotFound):
            await self._place(coordinator, challenge_ids=[5])

    @pytest.mark.asyncio
    async def test_explicit_challenge_not_active(self):
        expired = make_challenge(id=3, status=ChallengeStatus.expired)
        coordinator = make_coordinator(make_result(scalars=[expired]))
        with pytest.raises(ValidationError):
            await self._place(coordinator, challenge_ids=[3])

    @pytest.mark.asyncio
    async def test_explicit_links_snapshot(self):
        beginner = make_challenge(id=1, streak=2)
        coordinator = make_coordinator(make_result(scalars=[beginner]))

        bet = await self._place(coordinator, odds="+120", challenge_ids=[1, 1])

        assert bet.odds_decimal == Decimal("2.200")
        assert bet.odds == "+120"
        assert bet.result == BetResult.pending
        assert bet.challenge_ids == [1]
        link = bet.challenge_links[0]
        assert link.min_odds == Decimal("1.5")
        assert link.difficulty == Difficulty.beginner
        assert link.streak_before == 2
        assert link.level_before == 1

    @pytest.mark.asyncio
    async def test_auto_link_only_qualifying(self):
        beginner = make_challenge(id=1)
        pro = make_challenge(id=2, difficulty=Difficulty.pro)
        coordinator = make_coordinator(make_result(scalars=[beginner, pro]))

        bet = await self._place(coordinator, odds="1.8")

        assert bet.challenge_ids == [1]

    @pytest.mark.asyncio
    async def test_empty_list_links_nothing(self):
        coordinator = make_coordinator()
        bet = await self._place(coordinator, challenge_ids=[])
        assert bet.challenge_ids == []
        coordinator.session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_positive_stake(self):
        coordinator = make_coordinator()
        with pytest.raises(ValidationError):
            await coordinator.place_bet(
                42, sport="x", matchup="x", bet_type="x", selection="x",
                odds="1.8", stake=Decimal("0"),
            )


# ── Расчёт ────────────────────────────────────────────────────────────────────

class TestSettleBet:
    @pytest.mark.asyncio
    async def test_invalid_result(self):
        coordinator = make_coordinator()
        with pytest.raises(ValidationError):
            await coordinator.settle_bet(100, "cancelled")

    @pytest.mark.asyncio
    async def test_missing_bet(self):
        coordinator = make_coordinator(make_result(scalar=None))
        with pytest.raises(NotFound):
            await coordinator.settle_bet(100, "won")

    @pytest.mark.asyncio
    async def test_same_result_is_noop(self):
        bet = make_bet(result=BetResult.won)
        coordinator = make_coordinator(make_result(scalar=bet))
        report = await coordinator.settle_bet(100, "won")
        assert report.already_applied is True
        assert coordinator.session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_different_result_rejected(self):
        bet = make_bet(result=BetResult.won)
        coordinator = make_coordinator(make_result(scalar=bet))
        with pytest.raises(InvalidTransition):
            await coordinator.settle_bet(100, "lost")

    @pytest.mark.asyncio
    async def test_void_stored_as_push(self):
        challenge = make_challenge(streak=2)
        bet = make_bet()
        coordinator = make_coordinator(
            make_result(scalar=bet),
            make_result(scalars=[make_link(challenge)]),
            make_result(scalars=[challenge]),
        )
        report = await coordinator.settle_bet(100, "void", now=NOW)

        assert bet.result == BetResult.push
        assert bet.profit_loss == Decimal("0")
        assert report.outcomes[0].counted is False
        assert report.outcomes[0].skipped_reason == "push"
        assert challenge.current_streak == 2

    @pytest.mark.asyncio
    async def test_won_unlocks_level_and_records_link(self):
        challenge = make_challenge(streak=2)
        link = make_link(challenge)
        bet = make_bet(odds="1.8")
        coordinator = make_coordinator(
            make_result(scalar=bet),
            make_result(scalars=[link]),
            make_result(scalars=[challenge]),
        )

        report = await coordinator.settle_bet(100, "won", now=NOW)

        assert bet.result == BetResult.won
        assert bet.profit_loss == Decimal("8.00")
        assert bet.settled_at == NOW
        assert bet.settlement_applied_at == NOW

        assert challenge.current_streak == 3
        assert challenge.level1_completed is True
        assert challenge.current_level == 2
        assert challenge.total_pending_amount == Decimal("3")

        rewards = added_rewards(coordinator)
        assert len(rewards) == 1
        assert rewards[0].challenge_id == 1
        assert rewards[0].level == 1
        assert rewards[0].amount == Decimal("3")
        assert rewards[0].status == RewardStatus.pending

        assert link.result == BetResult.won
        assert link.streak_after == 3
        assert link.level_after == 2
        assert link.level_completed == 1
        assert link.settled_at == NOW
        assert report.unlocked_total == Decimal("3")


class TestOnBetSettled:
    @pytest.mark.asyncio
    async def test_already_applied_is_noop(self):
        bet = make_bet(result=BetResult.won)
        bet.settlement_applied_at = NOW
        coordinator = make_coordinator()
        report = await coordinator.on_bet_settled(bet)
        assert report.already_applied is True
        coordinator.session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_pending_bet_rejected(self):
        coordinator = make_coordinator()
        with pytest.raises(ValidationError):
            await coordinator.on_bet_settled(make_bet())

    @pytest.mark.asyncio
    async def test_inactive_challenge_skipped_others_processed(self):
        expired = make_challenge(id=1, streak=5, status=ChallengeStatus.expired)
        active = make_challenge(id=2, streak=0)
        bet = make_bet(odds="1.9", result=BetResult.lost)
        coordinator = make_coordinator(
            make_result(scalars=[make_link(expired), make_link(active)]),
            make_result(scalars=[expired, active]),
        )

        report = await coordinator.on_bet_settled(bet, now=NOW)

        assert expired.current_streak == 5
        assert report.outcomes[0].skipped_reason == "challenge_expired"
        assert report.outcomes[1].counted is True
        assert bet.settlement_applied_at == NOW

    @pytest.mark.asyncio
    async def test_gates_on_link_snapshot(self):
        """Снимок min_odds в привязке важнее текущего значения испытания."""
        challenge = make_challenge(streak=1)
        link = make_link(challenge, min_odds=Decimal("2.0"))
        bet = make_bet(odds="1.8", result=BetResult.won)
        coordinator = make_coordinator(
            make_result(scalars=[link]),
            make_result(scalars=[challenge]),
        )

        report = await coordinator.on_bet_settled(bet, now=NOW)

        assert challenge.current_streak == 1
        assert link.skipped_reason == "below_min_odds"
        assert report.outcomes[0].counted is False

    @pytest.mark.asyncio
    async def test_unlinked_bet_only_marks_applied(self):
        bet = make_bet(result=BetResult.won)
        coordinator = make_coordinator(make_result(scalars=[]))
        report = await coordinator.on_bet_settled(bet, now=NOW)
        assert report.outcomes == []
        assert bet.settlement_applied_at == NOW
        assert coordinator.session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_fan_out_unlocks_across_challenges(self):
        beginner = make_challenge(id=1, streak=2)
        pro = make_challenge(id=2, difficulty=Difficulty.pro, streak=3, tier=5000)
        bet = make_bet(odds="2.1", result=BetResult.won)
        coordinator = make_coordinator(
            make_result(scalars=[make_link(beginner), make_link(pro)]),
            make_result(scalars=[beginner, pro]),
        )

        report = await coordinator.on_bet_settled(bet, now=NOW)

        assert beginner.current_streak == 3
        assert pro.current_streak == 4
        # pro: пороги 2 и 4, оба уровня за один расчёт
        assert pro.level1_completed and pro.level2_completed
        levels = sorted((r.challenge_id, r.level) for r in added_rewards(coordinator))
        assert levels == [(1, 1), (2, 1), (2, 2)]
        assert report.unlocked_total == Decimal("3") + Decimal("20") + Decimal("600")
