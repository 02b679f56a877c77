"""
BetSettlementCoordinator — размещение ставок и разнос результата по
привязанным испытаниям.

Расчёт одной ставки — одна транзакция: маркер settlement_applied_at,
обновления всех испытаний и вставка наград коммитятся или откатываются
вместе. Испытания блокируются FOR UPDATE в порядке id, чтобы две
параллельные ставки одного пользователя не ловили дедлок.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from streakbet.core.errors import InvalidTransition, NotFound, OddsBelowMinimum, ValidationError
from streakbet.models.bet import Bet, BetResult, ChallengeBet
from streakbet.models.challenge import Challenge, ChallengeStatus
from streakbet.models.reward import ChallengeReward, RewardStatus
from streakbet.services import streak_engine
from streakbet.services.catalog import LEVEL_NAMES

_AMERICAN_RE = re.compile(r"^[+-]\d+$")
_ODDS_Q = Decimal("0.001")
_MONEY_Q = Decimal("0.01")

# Входные результаты админского расчёта → хранимый результат
SETTLE_RESULTS = {
    "won": BetResult.won,
    "lost": BetResult.lost,
    "push": BetResult.push,
    "void": BetResult.push,
}


# ─── Коэффициенты ─────────────────────────────────────────────────────────────

def parse_odds(odds: str | int | float | Decimal) -> Decimal:
    """
    Нормализует коэффициент к десятичному виду.

    +150 → 2.500, -110 → 1.909, "1.85" → 1.850. Американская запись
    распознаётся по явному знаку; всё остальное трактуется как десятичный
    коэффициент и должен быть больше 1.
    """
    raw = str(odds).strip()
    if _AMERICAN_RE.match(raw):
        value = int(raw)
        if abs(value) < 100:
            raise ValidationError(f"Invalid American odds: {raw}")
        if value > 0:
            decimal_odds = 1 + Decimal(value) / 100
        else:
            decimal_odds = 1 + Decimal(100) / Decimal(-value)
        return decimal_odds.quantize(_ODDS_Q, rounding=ROUND_HALF_UP)

    try:
        decimal_odds = Decimal(raw)
    except InvalidOperation:
        raise ValidationError(f"Invalid odds: {raw}") from None
    if not decimal_odds.is_finite() or decimal_odds <= 1:
        raise ValidationError(f"Decimal odds must be greater than 1.0, got {raw}")
    return decimal_odds.quantize(_ODDS_Q, rounding=ROUND_HALF_UP)


def profit_loss_for(result: BetResult, stake: Decimal, odds_decimal: Decimal) -> Decimal:
    if result == BetResult.won:
        return (stake * (odds_decimal - 1)).quantize(_MONEY_Q, rounding=ROUND_HALF_UP)
    if result == BetResult.lost:
        return -stake
    return Decimal("0.00")


# ─── Результаты расчёта ───────────────────────────────────────────────────────

@dataclass
class ChallengeOutcome:
    challenge_id: int
    counted: bool
    streak_after: int
    level_after: int
    unlocked: list[streak_engine.UnlockedReward] = field(default_factory=list)
    skipped_reason: Optional[str] = None


@dataclass
class SettlementReport:
    bet_id: int
    result: BetResult
    already_applied: bool = False
    outcomes: list[ChallengeOutcome] = field(default_factory=list)

    @property
    def unlocked_total(self) -> Decimal:
        return sum((u.amount for o in self.outcomes for u in o.unlocked), Decimal("0"))


class BetSettlementCoordinator:

    def __init__(self, session: AsyncSession):
        self.session = session

    # ─── Размещение ───────────────────────────────────────────────────────────

    async def place_bet(
        self,
        user_id: int,
        sport: str,
        matchup: str,
        bet_type: str,
        selection: str,
        odds: str,
        stake: Decimal,
        challenge_ids: Optional[list[int]] = None,
        league: Optional[str] = None,
        event_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Bet:
        """
        Регистрирует ставку и привязывает её к испытаниям.

        challenge_ids=None — привязать ко всем активным испытаниям пользователя,
        чей порог коэффициента ставка проходит; [] — ни к одному.
        При явном списке каждое испытание должно принадлежать пользователю,
        быть активным и пропускать коэффициент, иначе ставка не создаётся.
        """
        odds_decimal = parse_odds(odds)
        stake = Decimal(stake)
        if stake <= 0:
            raise ValidationError("Stake must be positive")

        if challenge_ids is None:
            challenges = await self._active_challenges(user_id)
            challenges = [c for c in challenges if odds_decimal >= c.min_odds]
        else:
            challenges = await self._requested_challenges(user_id, challenge_ids, odds_decimal)

        bet = Bet(
            user_id=user_id,
            sport=sport,
            league=league,
            matchup=matchup,
            bet_type=bet_type,
            selection=selection,
            event_id=event_id,
            notes=notes,
            odds=str(odds).strip(),
            odds_decimal=odds_decimal,
            stake=stake,
            result=BetResult.pending,
        )
        for challenge in challenges:
            bet.challenge_links.append(ChallengeBet(
                challenge_id=challenge.id,
                min_odds=challenge.min_odds,
                difficulty=challenge.difficulty,
                streak_before=challenge.current_streak,
                level_before=challenge.current_level,
            ))
        self.session.add(bet)
        await self.session.flush()

        logger.info(
            f"Bet {bet.id} placed: user={user_id} odds={odds_decimal} stake={stake} "
            f"challenges={[c.id for c in challenges]}"
        )
        return bet

    async def _active_challenges(self, user_id: int) -> list[Challenge]:
        result = await self.session.execute(
            select(Challenge)
            .where(Challenge.user_id == user_id, Challenge.status == ChallengeStatus.active)
            .order_by(Challenge.id)
        )
        return list(result.scalars().all())

    async def _requested_challenges(
        self, user_id: int, challenge_ids: list[int], odds_decimal: Decimal
    ) -> list[Challenge]:
        wanted = sorted(set(challenge_ids))
        if not wanted:
            return []
        result = await self.session.execute(
            select(Challenge)
            .where(Challenge.id.in_(wanted), Challenge.user_id == user_id)
            .order_by(Challenge.id)
        )
        challenges = list(result.scalars().all())

        found = {c.id for c in challenges}
        missing = [cid for cid in wanted if cid not in found]
        if missing:
            raise NotFound(f"Challenges not found: {missing}")

        for c in challenges:
            if c.status != ChallengeStatus.active:
                raise ValidationError(f"Challenge {c.id} is {c.status}, bets can only be linked to active challenges")
            if odds_decimal < c.min_odds:
                raise OddsBelowMinimum(
                    f"Odds {odds_decimal} are below the minimum {c.min_odds} for challenge {c.id}",
                    challenge_id=c.id,
                    min_odds=str(c.min_odds),
                )
        return challenges

    # ─── Расчёт ───────────────────────────────────────────────────────────────

    async def settle_bet(
        self, bet_id: int, result: str, now: Optional[datetime] = None
    ) -> SettlementReport:
        """Фиксирует исход ставки и разносит его по испытаниям."""
        stored = SETTLE_RESULTS.get(str(result).lower())
        if stored is None:
            raise ValidationError(f"Invalid result: {result}. Allowed: {sorted(SETTLE_RESULTS)}")
        now = now or datetime.now(timezone.utc)

        bet = (await self.session.execute(
            select(Bet).where(Bet.id == bet_id).with_for_update()
        )).scalar_one_or_none()
        if bet is None:
            raise NotFound("Bet not found")

        if bet.result != BetResult.pending:
            if bet.result != stored:
                raise InvalidTransition(
                    f"Bet {bet_id} is already settled as {bet.result}, cannot change to {stored.value}"
                )
            logger.info(f"Bet {bet_id} already settled as {bet.result}, nothing to do")
            return SettlementReport(bet_id=bet.id, result=stored, already_applied=True)

        bet.result = stored
        bet.profit_loss = profit_loss_for(stored, bet.stake, bet.odds_decimal)
        bet.settled_at = now
        return await self.on_bet_settled(bet, now=now)

    async def on_bet_settled(self, bet: Bet, now: Optional[datetime] = None) -> SettlementReport:
        """
        Применяет исход ставки ко всем привязанным испытаниям.

        Повторная доставка того же события — no-op благодаря маркеру
        settlement_applied_at, который пишется в той же транзакции.
        """
        result = BetResult(bet.result)
        if result == BetResult.pending:
            raise ValidationError(f"Bet {bet.id} is not settled yet")
        if bet.settlement_applied_at is not None:
            logger.info(f"Settlement of bet {bet.id} already applied at {bet.settlement_applied_at}")
            return SettlementReport(bet_id=bet.id, result=result, already_applied=True)

        now = now or datetime.now(timezone.utc)
        report = SettlementReport(bet_id=bet.id, result=result)

        links = list((await self.session.execute(
            select(ChallengeBet).where(ChallengeBet.bet_id == bet.id).order_by(ChallengeBet.challenge_id)
        )).scalars().all())

        challenges: dict[int, Challenge] = {}
        if links:
            locked = await self.session.execute(
                select(Challenge)
                .where(Challenge.id.in_([link.challenge_id for link in links]))
                .order_by(Challenge.id)
                .with_for_update()
            )
            challenges = {c.id: c for c in locked.scalars().all()}

        settled = streak_engine.SettledBet(odds_decimal=Decimal(bet.odds_decimal), result=result)
        for link in links:
            challenge = challenges[link.challenge_id]
            report.outcomes.append(self._apply_to_challenge(challenge, link, settled, now))

        bet.settlement_applied_at = now
        await self.session.flush()

        logger.info(
            f"Bet {bet.id} settled as {result.value}: {len(links)} challenges, "
            f"unlocked €{report.unlocked_total}"
        )
        return report

    def _apply_to_challenge(
        self,
        challenge: Challenge,
        link: ChallengeBet,
        bet: streak_engine.SettledBet,
        now: datetime,
    ) -> ChallengeOutcome:
        link.result = bet.result
        link.settled_at = now

        if challenge.status != ChallengeStatus.active:
            link.skipped_reason = f"challenge_{ChallengeStatus(challenge.status).value}"
            link.streak_after = challenge.current_streak
            link.level_after = challenge.current_level
            logger.info(f"Challenge {challenge.id} is {challenge.status}, bet {link.bet_id} skipped")
            return ChallengeOutcome(
                challenge_id=challenge.id,
                counted=False,
                streak_after=challenge.current_streak,
                level_after=challenge.current_level,
                skipped_reason=link.skipped_reason,
            )

        state = streak_engine.ChallengeState.from_challenge(challenge, min_odds=link.min_odds)
        transition = streak_engine.apply(state, bet)
        transition.state.write_to(challenge)

        if not transition.counted:
            link.skipped_reason = "below_min_odds" if not streak_engine.qualifies(state, bet) else "push"

        for unlocked in transition.unlocked:
            self.session.add(ChallengeReward(
                challenge_id=challenge.id,
                level=unlocked.level,
                amount=unlocked.amount,
                status=RewardStatus.pending,
                unlocked_at=now,
            ))
            logger.info(
                f"Challenge {challenge.id} unlocked level {unlocked.level} "
                f"({LEVEL_NAMES[unlocked.level]}): €{unlocked.amount}"
            )

        link.streak_after = challenge.current_streak
        link.level_after = challenge.current_level
        link.level_completed = transition.level_completed

        return ChallengeOutcome(
            challenge_id=challenge.id,
            counted=transition.counted,
            streak_after=challenge.current_streak,
            level_after=challenge.current_level,
            unlocked=list(transition.unlocked),
            skipped_reason=link.skipped_reason,
        )
